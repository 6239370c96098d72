"""
Runtime settings for the complaint tracker.

Values come from the environment (a local .env file is honoured). Settings are
read once and handed to the app factory; nothing below the API layer reads the
environment directly.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


@dataclass
class Settings:
    database_backend: str = "memory"
    database_url: Optional[str] = None
    database_name: str = "hostel_complaints"
    jwt_secret: str = "dev-secret"
    jwt_expires_min: int = 24 * 60
    bcrypt_rounds: int = 10
    cloudinary_cloud_name: Optional[str] = None
    cloudinary_api_key: Optional[str] = None
    cloudinary_api_secret: Optional[str] = None
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None
    admin_name: str = "Administrator"
    log_level: str = "INFO"
    port: int = 8000

    @property
    def cloudinary_enabled(self) -> bool:
        return bool(self.cloudinary_cloud_name and self.cloudinary_api_key and self.cloudinary_api_secret)

    @classmethod
    def from_env(cls) -> "Settings":
        database_url = os.getenv("DATABASE_URL")
        backend = os.getenv("DATABASE_BACKEND", "mongodb" if database_url else "memory").lower()
        return cls(
            database_backend=backend,
            database_url=database_url,
            database_name=os.getenv("DATABASE_NAME", "hostel_complaints"),
            jwt_secret=os.getenv("JWT_SECRET", "dev-secret"),
            jwt_expires_min=int(os.getenv("JWT_EXPIRES_MIN", str(24 * 60))),
            bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", "10")),
            cloudinary_cloud_name=os.getenv("CLOUDINARY_CLOUD_NAME"),
            cloudinary_api_key=os.getenv("CLOUDINARY_API_KEY"),
            cloudinary_api_secret=os.getenv("CLOUDINARY_API_SECRET"),
            admin_email=os.getenv("ADMIN_EMAIL"),
            admin_password=os.getenv("ADMIN_PASSWORD"),
            admin_name=os.getenv("ADMIN_NAME", "Administrator"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            port=int(os.getenv("PORT", "8000")),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
