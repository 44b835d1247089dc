import os
import logging
from typing import List
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class Config:
    """Configuration settings for the discount service"""

    # Admin settings
    ADMIN_API_KEY: str = os.getenv("ADMIN_API_KEY", "")

    # Firebase settings
    FIREBASE_CRED_JSON: str = os.getenv("FIREBASE_CRED_JSON", "./firebase-adminsdk.json")
    FIREBASE_DB_URL: str = os.getenv("FIREBASE_DB_URL", "")

    # Frontend origins allowed by CORS
    CORS_ORIGINS: List[str] = [
        origin.strip() for origin in os.getenv("CORS_ORIGINS", "http://127.0.0.1:5500").split(",")
        if origin.strip()
    ]

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")


def setup_logging():
    """Configure logging settings"""
    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
        format=log_format,
        handlers=[logging.StreamHandler()]
    )
