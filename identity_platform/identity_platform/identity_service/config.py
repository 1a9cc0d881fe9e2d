"""
Configuration management for the identity service
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional


class Settings(BaseSettings):
    """Identity service configuration loaded from environment variables"""

    # Service Configuration
    SERVICE_NAME: str = "Identity Manager"
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Optional[str] = None

    # Database Configuration
    # SQL Server works too, e.g.
    # mssql+pyodbc://localhost/iii?driver=ODBC+Driver+18+for+SQL+Server&trusted_connection=yes&TrustServerCertificate=yes
    DATABASE_URL: str = "sqlite:///./identity.db"
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10

    # CORS Configuration
    CORS_ORIGINS: List[str] = ["*"]

    # Identity endpoints
    IDENTITY_PREFIX: str = "/identity"

    # Tokens
    JWT_SECRET_KEY: str = "change-this-secret-in-prod"
    JWT_ALGORITHM: str = "HS256"
    JWT_ISSUER: str = "identity-manager"
    ACCESS_TOKEN_EXPIRE_SECONDS: int = 3600
    REFRESH_TOKEN_EXPIRE_DAYS: int = 14
    TOKEN_LIFESPAN_HOURS: int = 24

    # Sign-in
    REQUIRE_CONFIRMED_EMAIL: bool = False

    # Password rules
    PASSWORD_REQUIRED_LENGTH: int = 6
    PASSWORD_REQUIRED_UNIQUE_CHARS: int = 1
    PASSWORD_REQUIRE_DIGIT: bool = True
    PASSWORD_REQUIRE_LOWERCASE: bool = True
    PASSWORD_REQUIRE_UPPERCASE: bool = True
    PASSWORD_REQUIRE_NON_ALPHANUMERIC: bool = True

    # Lockout
    LOCKOUT_MAX_FAILED_ACCESS_ATTEMPTS: int = 5
    LOCKOUT_DEFAULT_MINUTES: int = 5

    # Authenticator app
    TOTP_ISSUER: str = "IdentityManager"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )


# Global settings instance
settings = Settings()
