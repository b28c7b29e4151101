import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    DATABASE_URL: Optional[str] = None

    JWT_SECRET: str = "dev_secret"
    JWT_ALGORITHM: str = "HS256"
    TOKEN_EXPIRE_DAYS: int = 7

    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    ALLOW_UNSIGNED_WEBHOOKS: bool = False
    CURRENCY: str = "eur"

    FRONTEND_URL: str = "http://localhost:5000"
    SEED_SAMPLE_DATA: bool = True
    ADMIN_EMAIL: Optional[str] = None
    ADMIN_PASSWORD: Optional[str] = None

    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    PORT: int = 8000

    @property
    def stripe_configured(self) -> bool:
        return bool(self.STRIPE_SECRET_KEY)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            DATABASE_URL=os.getenv("DATABASE_URL") or None,
            JWT_SECRET=os.getenv("JWT_SECRET", "dev_secret"),
            TOKEN_EXPIRE_DAYS=int(os.getenv("TOKEN_EXPIRE_DAYS", 7)),
            STRIPE_SECRET_KEY=os.getenv("STRIPE_SECRET_KEY") or None,
            STRIPE_WEBHOOK_SECRET=os.getenv("STRIPE_WEBHOOK_SECRET") or None,
            ALLOW_UNSIGNED_WEBHOOKS=_flag("ALLOW_UNSIGNED_WEBHOOKS"),
            CURRENCY=os.getenv("CURRENCY", "eur"),
            FRONTEND_URL=os.getenv("FRONTEND_URL", "http://localhost:5000"),
            SEED_SAMPLE_DATA=_flag("SEED_SAMPLE_DATA", "true"),
            ADMIN_EMAIL=os.getenv("ADMIN_EMAIL") or None,
            ADMIN_PASSWORD=os.getenv("ADMIN_PASSWORD") or None,
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
            LOG_FORMAT=os.getenv("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
            PORT=int(os.getenv("PORT", 8000)),
        )


config = Settings.from_env()
