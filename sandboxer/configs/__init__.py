from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .database import DatabaseConfig
from .sandbox import SandboxConfig


class AppConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SANDBOXER_",
        env_nested_delimiter="_",
        case_sensitive=False,
        extra="ignore",
    )

    Title: str = Field(default="Sandboxer", description="Service title")
    Environment: str = Field(default="development", description="Deployment environment (development, production)")
    Host: str = Field(default="0.0.0.0", description="HTTP bind host")
    Port: int = Field(default=48300, description="HTTP bind port")
    Debug: bool = Field(default=False, description="Enable debug mode and auto reload")
    LogLevel: str = Field(default="INFO", description="Root log level")

    Database: DatabaseConfig = Field(
        default_factory=lambda: DatabaseConfig(),
        description="Database configuration",
    )

    Sandbox: SandboxConfig = Field(
        default_factory=lambda: SandboxConfig(),
        description="Sandbox lifecycle configuration",
    )


configs = AppConfig()

__all__ = ["AppConfig", "DatabaseConfig", "SandboxConfig", "configs"]
