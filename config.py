import os
import logging
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class Config:
    """Configuration settings for the catalog service"""

    # Database settings
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    DATABASE_NAME: str = os.getenv("DATABASE_NAME", "catalog")

    # Catalog settings
    QUERY_TIMEOUT: float = float(os.getenv("QUERY_TIMEOUT", "10"))
    # "mongodb" or "memory"; the in-process store is never picked implicitly
    CATALOG_STORE: str = os.getenv("CATALOG_STORE", "mongodb").lower()

    # Other settings
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    PORT: int = int(os.getenv("PORT", "8000"))


def setup_logging():
    """Configure logging settings"""
    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
        format=log_format,
        handlers=[logging.StreamHandler()]
    )
