"""
Application settings loaded from environment variables and the .env file.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_url: str = Field(default="http://localhost:8080", description="Public base URL used in QR codes")
    app_port: int = Field(default=8080, description="HTTP port")
    app_env: str = Field(default="development", description="development | production")
    debug: bool = Field(default=False, description="Debug mode")

    # Database
    database_url_override: Optional[str] = Field(
        default=None,
        validation_alias="DATABASE_URL",
        description="Full SQLAlchemy URL, takes precedence over DB_* settings",
    )
    db_host: str = Field(default="localhost", description="Database host")
    db_port: int = Field(default=5432, description="Database port")
    db_name: str = Field(default="skp_db", description="Database name")
    db_user: str = Field(default="skp_user", description="Database user")
    db_password: str = Field(default="", description="Database password")
    db_sslmode: str = Field(default="disable", description="PostgreSQL sslmode")

    # Object storage (S3 compatible, MinIO in deployment)
    minio_endpoint: str = Field(default="localhost:9000", description="Object storage host:port")
    minio_user: str = Field(default="minioadmin", description="Access key")
    minio_password: str = Field(default="minioadmin123", description="Secret key")
    minio_bucket: str = Field(default="skp-attachments", description="Bucket name")
    minio_use_ssl: bool = Field(default=False, description="Use https for the storage endpoint")
    minio_region: str = Field(default="us-east-1", description="Signing region")

    # Authentication
    jwt_secret: str = Field(default="change-this-secret", description="HS256 signing secret")
    jwt_algorithm: str = Field(default="HS256", description="JWT algorithm")

    # School data printed on certificates
    school_name: str = Field(default="SMA Negeri 1", description="School name")
    school_address: str = Field(default="Jl. Pendidikan No. 1", description="School address")
    headmaster_name: str = Field(default="Kepala Sekolah", description="Headmaster name")
    headmaster_nip: str = Field(default="", description="Headmaster NIP")
    certificate_office_code: str = Field(default="421.2", description="Prefix of certificate numbers")

    # Rendering
    render_workers: int = Field(default=2, ge=1, description="Background render threads")
    pdf_download_prefer_stored: bool = Field(
        default=False,
        description="Serve the uploaded PDF on download instead of re-rendering",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Path = Field(default=Path("./logs/api.log"), description="Log file path")

    @property
    def database_url(self) -> str:
        """Returns the SQLAlchemy connection URL."""
        if self.database_url_override:
            return self.database_url_override
        url = URL.create(
            "postgresql",
            username=self.db_user,
            password=self.db_password or None,
            host=self.db_host,
            port=self.db_port,
            database=self.db_name,
            query={"sslmode": self.db_sslmode},
        )
        return url.render_as_string(hide_password=False)

    @property
    def storage_base_url(self) -> str:
        """Returns the public base URL of the storage endpoint."""
        scheme = "https" if self.minio_use_ssl else "http"
        return f"{scheme}://{self.minio_endpoint}"

    @field_validator("app_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validates the logging level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    def create_directories(self):
        """Creates the log directory."""
        self.log_file.parent.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    """Returns the settings object."""
    return Settings()


def load_settings_from_file(env_file: str = ".env") -> Settings:
    """
    Loads settings from the given env file.

    Args:
        env_file: Path to the env file

    Returns:
        Settings: Settings object
    """
    return Settings(_env_file=env_file)


ENV_EXAMPLE = """# Application
APP_URL=http://localhost:8080
APP_PORT=8080
APP_ENV=development

# PostgreSQL
DB_HOST=localhost
DB_PORT=5432
DB_NAME=skp_db
DB_USER=skp_user
DB_PASSWORD=your_password_here
DB_SSLMODE=disable

# Object storage
MINIO_ENDPOINT=localhost:9000
MINIO_USER=minioadmin
MINIO_PASSWORD=minioadmin123
MINIO_BUCKET=skp-attachments
MINIO_USE_SSL=false

# Auth
JWT_SECRET=change-this-secret

# School
SCHOOL_NAME=SMA Negeri 1
SCHOOL_ADDRESS=Jl. Pendidikan No. 1
HEADMASTER_NAME=Kepala Sekolah
HEADMASTER_NIP=
CERTIFICATE_OFFICE_CODE=421.2

# Logging
LOG_LEVEL=INFO
LOG_FILE=./logs/api.log
"""


def create_env_example(path: str = ".env.example"):
    """Writes an example .env file."""
    with open(path, "w", encoding="utf-8") as f:
        f.write(ENV_EXAMPLE)
