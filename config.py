from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    app_name: str = "ContestHub API"
    log_level: str = "INFO"
    port: int = 8000

    # Database
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "contest_hub_db"

    # Firebase service account JSON; None falls back to application default credentials
    firebase_credentials: Optional[str] = None

    # Stripe
    stripe_secret_key: Optional[str] = None
    checkout_currency: str = "usd"
    client_url: str = "http://localhost:5173"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
