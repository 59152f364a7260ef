"""
Application configuration with environment variables.
"""
from pydantic_settings import BaseSettings
from pydantic import ConfigDict, Field, field_validator
from typing import Optional, List


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "HSE Compliance Tracker"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SECRET_KEY: str = "your-secret-key-change-in-production"

    # Database
    POSTGRES_USER: str = "hse"
    POSTGRES_PASSWORD: str = "hse"
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: str = "5432"
    POSTGRES_DB: str = "hse_tracker"
    DATABASE_URL: Optional[str] = Field(default=None, validate_default=True)

    # JWT Settings
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30  # 30 minutes (short-lived access tokens)
    BCRYPT_ROUNDS: int = 12

    # Compliance calendar
    TIMEZONE: str = "Asia/Bangkok"  # "today" for due-date math is computed here
    AMBER_WINDOW_DAYS: int = 7  # early warning window
    URGENT_WINDOW_DAYS: int = 3  # daily follow-up window

    # AI recommendations (OpenAI-compatible chat completions)
    AI_API_URL: str = "https://open.bigmodel.cn/api/paas/v4/chat/completions"
    AI_API_KEY: Optional[str] = None
    AI_MODEL: str = "glm-4.5-flash"
    AI_TIMEOUT_SECONDS: float = 30.0

    # Storage
    UPLOAD_DIR: str = "/code/uploads"
    MAX_UPLOAD_SIZE: int = 20 * 1024 * 1024  # 20MB

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:8080", "http://localhost:3000"]

    # =========================================
    # Account provisioning
    # =========================================

    # Demo seeding - MUST be false in production
    SEED_DEMO: bool = False

    # Protected account that can never be deleted through the API
    SUPER_ADMIN_EMAIL: str = "admin@osh.vn"

    # seed-first-admin function: bearer token and the admin it provisions
    RUN_TOKEN: Optional[str] = None
    ADMIN_EMAIL: str = "admin@osh.vn"
    ADMIN_PASSWORD: Optional[str] = None

    # Admin bootstrap - used to create initial admin on first startup
    # Only used if no users exist in database
    ADMIN_BOOTSTRAP_EMAIL: Optional[str] = None
    ADMIN_BOOTSTRAP_PASSWORD: Optional[str] = None

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def assemble_db_url(cls, v: Optional[str], info) -> str:
        if isinstance(v, str) and v:
            return v

        data = info.data
        user = data.get("POSTGRES_USER", "hse")
        password = data.get("POSTGRES_PASSWORD", "hse")
        host = data.get("POSTGRES_HOST", "postgres")
        port = data.get("POSTGRES_PORT", "5432")
        db = data.get("POSTGRES_DB", "hse_tracker")

        return f"postgresql://{user}:{password}@{host}:{port}/{db}"

    @field_validator('SECRET_KEY')
    @classmethod
    def validate_secret_key(cls, v: str, info) -> str:
        """Reject weak SECRET_KEY in production, warn in development."""
        weak_keys = {
            "your-secret-key-change-in-production",
            "change-me-in-production",
            "secret",
            "changeme",
        }
        is_weak = v in weak_keys or len(v) < 32
        if is_weak:
            debug = info.data.get("DEBUG", False)
            if not debug:
                raise ValueError(
                    "SECRET_KEY is weak or default. "
                    "Generate a strong key with: openssl rand -hex 32"
                )
            import warnings
            warnings.warn(
                "SECRET_KEY is weak or default! Set a strong key before deploying.",
                UserWarning,
                stacklevel=2,
            )
        return v

    @field_validator('SEED_DEMO')
    @classmethod
    def validate_seed_demo(cls, v: bool, info) -> bool:
        """Prevent demo seeding in production."""
        if v and not info.data.get("DEBUG", False):
            raise ValueError(
                "SEED_DEMO=true is not allowed when DEBUG=false. "
                "Demo seeding creates predictable credentials."
            )
        return v

    @field_validator('POSTGRES_PASSWORD')
    @classmethod
    def validate_postgres_password(cls, v: str, info) -> str:
        """Reject default database password in production."""
        weak = {"hse", "postgres", "password", "changeme", ""}
        if v in weak and not info.data.get("DEBUG", False):
            raise ValueError(
                "POSTGRES_PASSWORD is set to a default value. "
                "Set a strong database password for production."
            )
        return v

    @field_validator('URGENT_WINDOW_DAYS')
    @classmethod
    def validate_urgent_window(cls, v: int, info) -> int:
        """The urgent window must sit inside the amber window."""
        amber = info.data.get("AMBER_WINDOW_DAYS", 7)
        if v < 0 or v > amber:
            raise ValueError("URGENT_WINDOW_DAYS must be between 0 and AMBER_WINDOW_DAYS")
        return v


settings = Settings()
