from enum import StrEnum

from pydantic import BaseModel, Field

ISSUER = "toNotes"
ALGORITHM = "HS256"


class TokenKind(StrEnum):
    ACCESS = "access"
    REFRESH = "refresh"


class TokenClaims(BaseModel):
    """Verified claims of an access or refresh token.

    Access tokens carry no ``type`` claim; refresh tokens carry ``type="refresh"``.
    """

    sub: str
    iat: int
    exp: int
    iss: str = ISSUER
    jti: str | None = None
    type: str | None = None

    @property
    def kind(self) -> TokenKind:
        return TokenKind.REFRESH if self.type == TokenKind.REFRESH else TokenKind.ACCESS


class TokenPair(BaseModel):
    access_token: str = Field(..., description="Short-lived bearer token")
    refresh_token: str = Field(..., description="Long-lived token exchanged for a new pair")
