from pathlib import Path
from datetime import date
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent

class Settings(BaseSettings):
    PROJECT_NAME: str = "Transaction Intelligence API"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"

    DATA_DIR: Path = BASE_DIR / "data"
    DATABASE_URL: str = f"sqlite+aiosqlite:///{BASE_DIR}/data/intelligence.db"

    BACKEND_CORS_ORIGINS: list[str] = ["*"]
    LOG_LEVEL: str = "INFO"

    # Tenant used when the caller does not send X-User-Id
    DEFAULT_USER_ID: int = 1

    # Frozen "today" for deterministic detection runs; None means the real date
    REFERENCE_DATE: Optional[date] = None

    FALLBACK_CATEGORY_NAME: str = "Other"
    SUBSCRIPTION_CLASSIFICATIONS: list[str] = ["entertainment", "media"]

    AUTO_CATEGORIZE_MIN_CONFIDENCE: float = 0.7
    ANOMALY_WINDOW_DAYS: int = 30

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)

settings = Settings()
