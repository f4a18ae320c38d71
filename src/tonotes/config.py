from pydantic_settings import BaseSettings


class Config(BaseSettings):
    """Application configuration loaded from environment variables."""

    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8080
    debug: bool = False
    cors_origins: list[str] = []

    jwt_secret_key: str
    jwt_expiration_time: int = 900  # Access token lifetime, seconds
    refresh_token_expiration_time: int = 7 * 24 * 60 * 60  # Refresh token lifetime, seconds
    session_duration: int = 24 * 60 * 60  # Session lifetime, seconds
    session_idle_timeout: int = 48 * 60 * 60  # Session ends after this long without activity, seconds
    cookie_secure: bool = True  # Secure flag on the session_id cookie; disable only for local HTTP development

    redis_url: str = "redis://localhost:6379/0"

    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "tonotes"
    mongo_max_pool_size: int = 100
    mongo_min_pool_size: int = 0
    mongo_max_conn_idle_time: int = 60_000  # milliseconds

    geoip_url: str = "https://ipapi.co/{ip}/json/"  # IP geolocation endpoint, {ip} is substituted
    geoip_timeout: float = 2.0  # seconds; lookups that take longer resolve to "Unknown Location"

    model_config = {
        "env_file": [".env"],
        "extra": "ignore",
    }
