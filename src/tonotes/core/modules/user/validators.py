from tonotes.errors import InvalidInputError, WeakPasswordError

PASSWORD_MIN_LENGTH = 6
PASSWORD_MIN_DIGITS = 2
PASSWORD_MIN_SYMBOLS = 2


def validate_password(password: str) -> None:
    """Validate password meets requirements.

    Requirements:
    - Minimum length of 6 characters
    - At least one uppercase and one lowercase letter
    - At least 2 digits
    - At least 2 symbols (any character that is neither alphanumeric nor whitespace)

    Raises:
        WeakPasswordError: If password doesn't meet requirements
    """
    if len(password) < PASSWORD_MIN_LENGTH:
        raise WeakPasswordError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")

    if not any(char.isupper() for char in password) or not any(char.islower() for char in password):
        raise WeakPasswordError("Password must contain both uppercase and lowercase letters")

    if sum(char.isdigit() for char in password) < PASSWORD_MIN_DIGITS:
        raise WeakPasswordError(f"Password must contain at least {PASSWORD_MIN_DIGITS} digits")

    symbols = sum(not char.isalnum() and not char.isspace() for char in password)
    if symbols < PASSWORD_MIN_SYMBOLS:
        raise WeakPasswordError(f"Password must contain at least {PASSWORD_MIN_SYMBOLS} special characters")


def validate_username(username: str) -> None:
    if not 4 <= len(username) <= 20:
        raise InvalidInputError("Username must be between 4 and 20 characters long")

    if any(char.isspace() for char in username):
        raise InvalidInputError("Username cannot contain whitespace characters")


def validate_email(email: str) -> None:
    local, _, domain = email.partition("@")
    if not local or not domain or any(char.isspace() for char in email):
        raise InvalidInputError("Invalid email address")
