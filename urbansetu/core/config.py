# ⚙️ Application configuration
# Environment-driven settings shared by the services and routes

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import List

from dotenv import load_dotenv

load_dotenv(dotenv_path=Path(__file__).resolve().parent.parent.parent / ".env")

logger = logging.getLogger(__name__)


def get_mongodb_config():
    """
    Get MongoDB configuration with fallback options
    Priority: MONGO_URI > MONGODB_URL > MONGODB_URI > default local
    """
    mongo_uri = (
        os.getenv("MONGO_URI")
        or os.getenv("MONGODB_URL")
        or os.getenv("MONGODB_URI")
        or "mongodb://localhost:27017/urbansetu"
    )
    db_name = os.getenv("MONGODB_NAME", "urbansetu")

    if "mongodb+srv://" in mongo_uri and "tls=true" not in mongo_uri and "ssl=true" not in mongo_uri:
        separator = "&" if "?" in mongo_uri else "?"
        mongo_uri += f"{separator}tls=true"

    return mongo_uri, db_name


class Settings:
    """Snapshot of the environment taken at first use."""

    def __init__(self):
        self.app_name = os.getenv("APP_NAME", "UrbanSetu Civic Reporting API")
        self.env = os.getenv("ENV", "development").lower()
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()

        self.storage_backend = os.getenv("STORAGE_BACKEND", "mongo").lower()
        self.mongo_uri, self.mongo_db_name = get_mongodb_config()
        self.mongo_timeout_ms = int(os.getenv("MONGO_TIMEOUT_MS", "15000"))
        self.image_bucket = os.getenv("IMAGE_BUCKET", "complaint-images")

        self.redis_url = os.getenv("REDIS_URL")
        self.cache_ttl = int(os.getenv("CACHE_TTL", "60"))

        self.secret_key = os.getenv("SECRET_KEY", "urbansetu-dev-secret-change-me")
        self.jwt_algorithm = "HS256"
        self.access_token_expire_minutes = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24)))

        self.gemini_api_key = os.getenv("GEMINI_API_KEY")
        self.gemini_model = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
        self.classifier_endpoint = os.getenv("CLASSIFIER_ENDPOINT")
        self.ai_timeout = float(os.getenv("AI_TIMEOUT", "25"))

        self.geocode_timeout = float(os.getenv("GEOCODE_TIMEOUT", "8"))
        self.geocode_user_agent = os.getenv("GEOCODE_USER_AGENT", "UrbanSetu/1.0")

        self.max_image_bytes = int(os.getenv("MAX_IMAGE_BYTES", str(5 * 1024 * 1024)))
        self.public_base_url = os.getenv("PUBLIC_BASE_URL", "").rstrip("/")

        origins = os.getenv("CORS_ORIGINS", "*")
        self.cors_origins: List[str] = [o.strip() for o in origins.split(",") if o.strip()]
        self.recent_submission_hours = int(os.getenv("RECENT_SUBMISSION_HOURS", "24"))

    @property
    def use_memory_storage(self) -> bool:
        return self.storage_backend == "memory"


@lru_cache()
def get_settings() -> Settings:
    settings = Settings()
    logger.debug(f"🔧 Settings loaded (env={settings.env}, storage={settings.storage_backend})")
    return settings
