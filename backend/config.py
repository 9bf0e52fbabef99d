"""Configuration module for FinSight Assistant"""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Base paths
BASE_DIR = Path(__file__).resolve().parent.parent
SCHEMA_PATH = BASE_DIR / "backend" / "schema.sql"

SERVICE_NAME = "FinSight-Assistant"

# Language model (any OpenAI-compatible chat completions endpoint, DeepSeek by default)
LLM_API_KEY = (
    os.environ.get("LLM_API_KEY")
    or os.environ.get("DEEPSEEK_API_KEY")
    or os.environ.get("OPENAI_API_KEY")
)
LLM_BASE_URL = os.environ.get("LLM_BASE_URL", "https://api.deepseek.com/v1")
LLM_MODEL = os.environ.get("LLM_MODEL", "deepseek-chat")
LLM_TIMEOUT = float(os.environ.get("LLM_TIMEOUT", "60"))
LLM_MAX_RETRIES = int(os.environ.get("LLM_MAX_RETRIES", "1"))
LLM_TEMPERATURE = float(os.environ.get("LLM_TEMPERATURE", "0.2"))

# Database configuration - PostgreSQL only, checked when a connection is opened
DATABASE_URL = os.environ.get("DATABASE_URL")

# Neon/Heroku use postgres://, but psycopg2 needs postgresql://
if DATABASE_URL and DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

# Conversation tuning
HISTORY_WINDOW = int(os.environ.get("HISTORY_WINDOW", "5"))
RECENT_TRANSACTIONS_LIMIT = int(os.environ.get("RECENT_TRANSACTIONS_LIMIT", "10"))
MAX_TOOL_CALLS_PER_ROUND = int(os.environ.get("MAX_TOOL_CALLS_PER_ROUND", "8"))
FABRICATED_CHUNK_SIZE = int(os.environ.get("FABRICATED_CHUNK_SIZE", "50"))
FABRICATED_CHUNK_DELAY = float(os.environ.get("FABRICATED_CHUNK_DELAY", "0.05"))

DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "USD")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

# Flask config
FLASK_CONFIG = {
    "SECRET_KEY": os.environ.get("SECRET_KEY", "dev-secret-key"),
    "JSON_SORT_KEYS": False,
    "HISTORY_WINDOW": HISTORY_WINDOW,
    "RECENT_TRANSACTIONS_LIMIT": RECENT_TRANSACTIONS_LIMIT,
    "MAX_TOOL_CALLS_PER_ROUND": MAX_TOOL_CALLS_PER_ROUND,
    "FABRICATED_CHUNK_SIZE": FABRICATED_CHUNK_SIZE,
    "FABRICATED_CHUNK_DELAY": FABRICATED_CHUNK_DELAY,
}
