import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # Database & logging
    database_url: str = os.getenv("CITADEL_DB", "sqlite:///./citadel.db")
    log_level: str = os.getenv("CITADEL_LOG", "INFO")

    # Sessions
    jwt_secret_key: str = os.getenv("CITADEL_JWT_SECRET", "change-this-secret-in-production")
    jwt_algorithm: str = os.getenv("CITADEL_JWT_ALGORITHM", "HS256")
    jwt_expiration_minutes: int = int(os.getenv("CITADEL_JWT_EXPIRATION_MINUTES", "10080"))  # 7 days
    cookie_name: str = os.getenv("CITADEL_COOKIE_NAME", "citadel-auth")
    cookie_secure: bool = _flag("CITADEL_COOKIE_SECURE")

    # Signup rules
    email_domain: str = os.getenv("CITADEL_EMAIL_DOMAIN", "nitj.ac.in")

    # Identifier allocation retries on unique-constraint collisions
    id_retries: int = int(os.getenv("CITADEL_ID_RETRIES", "3"))

    # Staff bootstrap (citadel.seed)
    admin_email: Optional[str] = os.getenv("CITADEL_ADMIN_EMAIL")
    admin_password: Optional[str] = os.getenv("CITADEL_ADMIN_PASSWORD")

    app_name: str = os.getenv("CITADEL_APP_NAME", "Citadel Library Management API")
    host: str = os.getenv("CITADEL_HOST", "127.0.0.1")
    port: int = int(os.getenv("CITADEL_PORT", "8000"))


settings = Settings()
