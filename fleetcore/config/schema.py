"""Configuration schema using Pydantic."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings


class ApiAuthConfig(BaseModel):
    """API auth gate. Only the ``basic`` type is enforced."""

    model_config = ConfigDict(populate_by_name=True)

    type: str = ""  # "" | basic
    user: str = ""
    password: str = Field(default="", alias="pass")

    @property
    def basic_enabled(self) -> bool:
        return self.type.strip().lower() == "basic" and bool(self.user) and bool(self.password)


class ApiConfig(BaseModel):
    """HTTPS control API configuration."""

    model_config = ConfigDict(populate_by_name=True)

    host: str = "127.0.0.1"
    port: int = 3000
    cert: str | None = None  # PEM certificate chain path
    key: str | None = None  # PEM private key path
    auth: ApiAuthConfig = Field(default_factory=ApiAuthConfig)
    cors: str | None = Field(default=None, alias="CORS")
    sse_heartbeat_seconds: float = 15.0
    max_request_body_bytes: int = 1024 * 1024

    @property
    def allowed_origin(self) -> str:
        return self.cors or "*"

    @property
    def basic_auth_enabled(self) -> bool:
        return self.auth.basic_enabled

    def merged(self, updates: dict[str, Any]) -> "ApiConfig":
        """Return a validated copy with only the given top-level fields replaced."""
        data = self.model_dump(by_alias=False)
        for key, value in updates.items():
            if key == "CORS":
                key = "cors"
            if isinstance(value, ApiAuthConfig):
                value = value.model_dump(by_alias=False)
            data[key] = value
        return ApiConfig.model_validate(data)


class Config(BaseSettings):
    """Root configuration for a fleetcore process."""

    api: ApiConfig = Field(default_factory=ApiConfig)
    robots: list[dict[str, Any]] = Field(default_factory=list)

    model_config = ConfigDict(
        env_prefix="FLEETCORE_",
        env_nested_delimiter="__",
    )
