import os
import sys
from typing import Any, Literal

import orjson
from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import (
    BaseSettings,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

CONFIG_PATH = "config/config.yaml"


class HTTPSConfig(BaseModel):
    """HTTPS configuration"""

    enabled: bool = Field(default=False, description="Enable HTTPS")
    key_file: str = Field(default="certs/privkey.pem", description="SSL private key file path")
    cert_file: str = Field(default="certs/fullchain.pem", description="SSL certificate file path")


class ServerConfig(BaseModel):
    """Server configuration"""

    host: str = Field(default="0.0.0.0", description="Server host address")
    port: int = Field(default=3000, ge=1, le=65535, description="Server port number")
    https: HTTPSConfig = Field(default=HTTPSConfig(), description="HTTPS configuration")


class AuthUserSettings(BaseModel):
    """Bearer token accepted for one authenticated user."""

    id: str = Field(..., description="Authentication user id the token resolves to")
    token: str = Field(..., description="Bearer token presented by the client")

    @field_validator("token", mode="before")
    @classmethod
    def _strip_token(cls, value: str) -> str:
        return value.strip() if isinstance(value, str) else value


class AuthConfig(BaseModel):
    """Authentication configuration"""

    users: list[AuthUserSettings] = Field(
        default=[], description="Tokens accepted by the API and the user each maps to"
    )

    @field_validator("users", mode="before")
    @classmethod
    def _parse_users_json(cls, v: Any) -> Any:
        if isinstance(v, str) and v.strip().startswith("["):
            try:
                return orjson.loads(v)
            except orjson.JSONDecodeError as e:
                logger.warning(f"Failed to parse auth users JSON string: {e}")
                return v
        return v


class GeminiConfig(BaseModel):
    """Gemini API configuration"""

    api_key: str | None = Field(
        default=None,
        description="Gemini API key, falls back to GEMINI_API_KEY / GOOGLE_API_KEY when unset",
    )
    default_model: str = Field(
        default="gemini-1.5-flash",
        description="Model used when a request or a new session does not name one",
    )
    timeout: int = Field(default=120, ge=1, description="Model call timeout in seconds")
    number_of_images: int = Field(
        default=1, ge=1, le=4, description="Images requested per image generation call"
    )


class CORSConfig(BaseModel):
    """CORS configuration"""

    enabled: bool = Field(default=True, description="Enable CORS support")
    allow_origins: list[str] = Field(
        default=["*"], description="List of allowed origins for CORS requests"
    )
    allow_credentials: bool = Field(default=True, description="Allow credentials in CORS requests")
    allow_methods: list[str] = Field(
        default=["*"], description="List of allowed HTTP methods for CORS requests"
    )
    allow_headers: list[str] = Field(
        default=["*"], description="List of allowed headers for CORS requests"
    )


class StorageConfig(BaseModel):
    """Record and blob storage configuration"""

    path: str = Field(
        default="data/lmdb",
        description="Path to the LMDB directory holding users, sessions and messages",
    )
    max_size: int = Field(
        default=1024**2 * 256,  # 256 MB
        ge=1,
        description="Maximum size of the record store in bytes",
    )
    blob_path: str = Field(
        default="data/blobs",
        description="Directory where uploaded and generated files are stored",
    )
    base_url: str = Field(
        default="/files",
        description="URL prefix under which stored files are served",
    )
    signing_key: str | None = Field(
        default=None,
        description="Secret for signed file URLs, if unset files are served without a token",
    )
    signed_url_ttl: int = Field(
        default=3600, ge=1, description="Validity of signed file URLs in seconds"
    )
    timeout: int = Field(default=30, ge=1, description="Storage call timeout in seconds")


class UploadConfig(BaseModel):
    """Attachment limits"""

    max_file_size: int = Field(
        default=5 * 1024 * 1024, ge=1, description="Maximum size of one attachment in bytes"
    )
    max_files: int = Field(default=5, ge=1, description="Maximum attachments per chat request")


class LoggingConfig(BaseModel):
    """Logging configuration"""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="DEBUG",
        description="Logging level",
    )


class Config(BaseSettings):
    """Application configuration"""

    # Server configuration
    server: ServerConfig = Field(
        default=ServerConfig(),
        description="Server configuration, including host and port",
    )

    # CORS configuration
    cors: CORSConfig = Field(
        default=CORSConfig(),
        description="CORS configuration, allows cross-origin requests",
    )

    auth: AuthConfig = Field(
        default=AuthConfig(),
        description="Authentication configuration, maps bearer tokens to users",
    )

    # Gemini API configuration
    gemini: GeminiConfig = Field(
        default=GeminiConfig(), description="Gemini API configuration"
    )

    storage: StorageConfig = Field(
        default=StorageConfig(),
        description="Storage configuration, defines where and how data will be stored",
    )

    uploads: UploadConfig = Field(
        default=UploadConfig(),
        description="Limits applied to files attached to chat requests",
    )

    # Logging configuration
    logging: LoggingConfig = Field(
        default=LoggingConfig(),
        description="Logging configuration",
    )

    model_config = SettingsConfigDict(
        env_prefix="CONFIG_",
        env_nested_delimiter="__",
        nested_model_default_partial_update=True,
        yaml_file=os.getenv("CONFIG_PATH", CONFIG_PATH),
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """Read settings: init -> env -> yaml -> default"""
        return (
            init_settings,
            env_settings,
            YamlConfigSettingsSource(settings_cls),
        )


def extract_auth_users_env() -> dict[int, dict[str, str]]:
    """Extract and remove all auth user related environment variables, return a mapping from index to field dict."""
    prefix = "CONFIG_AUTH__USERS__"
    env_overrides: dict[int, dict[str, str]] = {}
    to_delete = []
    for k, v in os.environ.items():
        if k.startswith(prefix):
            parts = k.split("__")
            if len(parts) < 4:
                continue
            index_str, field = parts[2], parts[3].lower()
            if not index_str.isdigit():
                continue
            idx = int(index_str)
            env_overrides.setdefault(idx, {})[field] = v
            to_delete.append(k)
    # Remove these environment variables to avoid Pydantic parsing errors
    for k in to_delete:
        del os.environ[k]
    return env_overrides


def _merge_users_with_env(
    base_users: list[AuthUserSettings] | None,
    env_overrides: dict[int, dict[str, str]],
) -> list[AuthUserSettings]:
    """Override base_users with env_overrides, return the new users list."""
    if not env_overrides:
        return base_users or []
    result_users: list[AuthUserSettings] = []
    if base_users:
        result_users = [user.model_copy() for user in base_users]
    for idx in sorted(env_overrides):
        overrides = env_overrides[idx]
        if idx < len(result_users):
            user_dict = result_users[idx].model_dump()
            user_dict.update(overrides)
            result_users[idx] = AuthUserSettings(**user_dict)
        elif idx == len(result_users):
            result_users.append(AuthUserSettings(**overrides))
        else:
            raise IndexError(
                f"Auth user index {idx} in env is out of range (current count: {len(result_users)}). "
                "User indices must be contiguous starting from 0."
            )
    return result_users


def initialize_config() -> Config:
    """
    Initialize the configuration.

    Returns:
        Config: Configuration object
    """
    try:
        # First, extract and remove auth user related environment variables
        env_users_overrides = extract_auth_users_env()

        # Then, initialize Config with pydantic_settings
        config = Config()  # type: ignore

        # Synthesize users
        config.auth.users = _merge_users_with_env(config.auth.users, env_users_overrides)

        return config
    except (ValidationError, IndexError) as e:
        logger.error(f"Configuration validation failed: {e!s}")
        sys.exit(1)
