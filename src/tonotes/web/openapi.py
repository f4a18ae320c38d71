from typing import Any

from fastapi import FastAPI
from fastapi.openapi.utils import get_openapi
from pydantic import BaseModel, Field

# Operations reachable without an access token
PUBLIC_ENDPOINTS = {
    ("POST", "/api/v1/auth/register"),
    ("POST", "/api/v1/auth/login"),
    ("GET", "/health"),
}


def set_custom_openapi(app: FastAPI) -> None:
    def custom_openapi() -> dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        openapi_schema = get_openapi(
            title="ToNotes API",
            version="0.1.0",
            summary="Authentication, sessions and two-factor login for ToNotes",
            routes=app.routes,
        )

        components = openapi_schema.setdefault("components", {})
        components["securitySchemes"] = {
            "BearerAuth": {
                "type": "http",
                "scheme": "bearer",
                "bearerFormat": "JWT",
                "description": "Access token; the refresh endpoint takes the refresh token instead",
            },
            "SessionCookie": {
                "type": "apiKey",
                "in": "cookie",
                "name": "session_id",
                "description": "Session bound to the access token, set at login",
            },
            "SessionHeader": {
                "type": "apiKey",
                "in": "header",
                "name": "X-Session-ID",
                "description": "Session bound to the access token; takes precedence over the cookie",
            },
        }

        openapi_schema["security"] = [{"BearerAuth": []}]

        for path, path_item in openapi_schema["paths"].items():
            for method, operation in path_item.items():
                if (method.upper(), path) in PUBLIC_ENDPOINTS:
                    operation["security"] = []

        app.openapi_schema = openapi_schema
        return app.openapi_schema

    app.openapi = custom_openapi  # type: ignore[method-assign]


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str = Field(..., description="Human-readable error message")
    type: str = Field(..., description="Machine-readable error kind")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"error": "Invalid username or password", "type": "InvalidCredentials"},
                {"error": "Username already exists", "type": "UsernameTaken"},
                {"error": "Token has expired", "type": "Expired"},
            ]
        }
    }


class RateLimitedResponse(ErrorResponse):
    next_allowed_change: str = Field(..., description="ISO 8601 time when the change is allowed again")
