import os
import logging
from pydantic import BaseModel, Field
from typing import List


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Runtime configuration, read from the environment by ``from_env``."""

    storage_dir: str = "storage"
    uploads_dir: str = os.path.join("public", "uploads")
    uploads_url_prefix: str = "/uploads"
    app_env: str = "development"
    session_ttl_hours: int = 24
    bcrypt_rounds: int = 12
    default_admin_username: str = "bAyHaCk"
    default_admin_password: str = ""
    allow_default_credentials: bool = True
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    @property
    def production(self) -> bool:
        return self.app_env == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        app_env = os.getenv("APP_ENV", "development")
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            storage_dir=os.getenv("STORAGE_DIR", os.path.join(os.getcwd(), "storage")),
            uploads_dir=os.getenv("UPLOADS_DIR", os.path.join(os.getcwd(), "public", "uploads")),
            uploads_url_prefix=os.getenv("UPLOADS_URL_PREFIX", "/uploads").rstrip("/"),
            app_env=app_env,
            session_ttl_hours=int(os.getenv("SESSION_TTL_HOURS", "24")),
            bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", "12")),
            default_admin_password=os.getenv("DEFAULT_ADMIN_PASSWORD", ""),
            # Well-known bootstrap credentials are never used in production unless forced
            allow_default_credentials=_env_bool("ALLOW_DEFAULT_CREDENTIALS", app_env != "production"),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
