from __future__ import annotations
import os
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
    DATABASE_NAME: str = os.getenv("DATABASE_NAME", "timekeeper")

    # Pricing rules shared by cart totals and checkout
    TAX_RATE: float = 0.18
    MAX_QUANTITY_PER_ITEM: int = 10
    EXPRESS_SURCHARGE: float = 100.0

    LOG_LEVEL: str = "INFO"

    # EmailJS-compatible endpoint; mail is skipped when the ids are unset
    EMAIL_API_URL: str = "https://api.emailjs.com/api/v1.0/email/send"
    EMAIL_SERVICE_ID: Optional[str] = None
    EMAIL_TEMPLATE_ID: Optional[str] = None
    EMAIL_USER_ID: Optional[str] = None
    EMAIL_TIMEOUT: float = 10.0


settings = Settings()
