# krackenchat/core/config.py
import os
from typing import List
from dotenv import load_dotenv


def _split_origins(raw: str) -> List[str]:
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


class Settings:
    """
    Setup environment variables.
        - DATABASE_URL the SQLAlchemy URL of the room store
        - JWT_SECRET / JWT_ALGORITHM used to verify bearer tokens
        - GENERAL_ROOM_ID the room every connection is implicitly a member of
        - HISTORY_LIMIT how many messages are replayed on join
        - CORS_ORIGINS comma separated list of allowed origins
    """

    # Load environment variables from the .env file
    load_dotenv()

    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./krackenchat.db")

    JWT_SECRET: str = os.getenv("JWT_SECRET", "your-secret-key")
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")

    GENERAL_ROOM_ID: int = int(os.getenv("GENERAL_ROOM_ID", "1"))
    HISTORY_LIMIT: int = int(os.getenv("HISTORY_LIMIT", "50"))

    CORS_ORIGINS: List[str] = _split_origins(os.getenv("CORS_ORIGINS", "*"))

settings = Settings()
