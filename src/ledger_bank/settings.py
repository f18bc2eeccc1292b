"""
Environment-driven settings for the ledger-bank service.

Values are read once at import time after loading a local .env file.
"""

import os

from dotenv import find_dotenv, load_dotenv

load_dotenv(find_dotenv(usecwd=True), override=False)


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.getenv("DATABASE_URL")
SQL_ECHO = _flag("SQL_ECHO")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_DIR = os.getenv("LOG_DIR", "logs")

JWT_SECRET = os.getenv("JWT_SECRET", "ledger-bank-dev-secret-change-me-0001")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
TOKEN_TTL_MINUTES = int(os.getenv("TOKEN_TTL_MINUTES", "60"))

# shared secret for the demo seed endpoint
SIMPLE_ADMIN_TOKEN = os.getenv("SIMPLE_ADMIN_TOKEN", "letmein")

AUTO_CREATE_TABLES = _flag("AUTO_CREATE_TABLES", "true")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "9000"))
