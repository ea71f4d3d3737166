import os
import logging

from dotenv import load_dotenv

load_dotenv()

# --- Configuration ---
DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "app")

# Header in which the upstream authenticator forwards the verified user id
IDENTITY_HEADER = os.getenv("IDENTITY_HEADER", "X-User-Id")

COUNTER_ATOMIC = os.getenv("COUNTER_ATOMIC", "true").strip().lower() not in ("0", "false", "no", "off")

CAMPAIGN_GOAL = int(os.getenv("CAMPAIGN_GOAL", "4000"))
CAMPAIGN_TOOLS = [t.strip().lower() for t in os.getenv("CAMPAIGN_TOOLS", "claude,bolt,lovable").split(",") if t.strip()]

DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", "20"))
MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", "100"))

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
PORT = int(os.getenv("PORT", 8000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def configure_logging():
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
