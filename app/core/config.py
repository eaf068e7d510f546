from __future__ import annotations

import os

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


class Settings(BaseModel):
    APP_NAME: str = os.getenv("APP_NAME", "Shop Floor Time Tracking")
    DB_URL: str = os.getenv("DB_URL") or os.getenv("DATABASE_URL") or "sqlite:///./shopclock.db"
    SQL_ECHO: bool = os.getenv("SQL_ECHO", "0") == "1"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    SESSION_COOKIE_NAME: str = os.getenv("SESSION_COOKIE_NAME", "session")


settings = Settings()
