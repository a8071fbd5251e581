import os
from datetime import date
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from backend/.env
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path)

# Database
DB_USER = os.getenv("DB_USER")
DB_PASS = os.getenv("DB_PASS")
DB_HOST = os.getenv("PG_HOST")
DB_NAME = os.getenv("DB_NAME")

# Full URL wins over the composed one (tests point this at sqlite+aiosqlite)
DATABASE_URL = os.getenv("DATABASE_URL") or f"postgresql+asyncpg://{DB_USER}:{DB_PASS}@{DB_HOST}/{DB_NAME}"
DB_ECHO = os.getenv("DB_ECHO", "0") == "1"
SEED_ON_STARTUP = os.getenv("SEED_ON_STARTUP", "0") == "1"

# LLM
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "30"))

# Swedish bookkeeping defaults
VAT_RATE = float(os.getenv("VAT_RATE", "0.25"))
AUTO_APPROVE_LIMIT = float(os.getenv("AUTO_APPROVE_LIMIT", "1000"))
DEFAULT_INVOICE_BASE = float(os.getenv("DEFAULT_INVOICE_BASE", "10000"))
DEFAULT_PAYMENT_TERMS = int(os.getenv("DEFAULT_PAYMENT_TERMS", "30"))
DOCUMENT_YEAR = int(os.getenv("DOCUMENT_YEAR", str(date.today().year)))
CURRENCY = "SEK"

# CORS
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
    if origin.strip()
]
