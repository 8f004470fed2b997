"""
Application settings

Everything is read from the environment (a local .env file is honoured).
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

PORT = int(os.getenv("PORT", 8000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# base64-encoded Firebase service account JSON
FB_SERVICE_KEY = os.getenv("FB_SERVICE_KEY", "")

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_CURRENCY = os.getenv("STRIPE_CURRENCY", "usd")

CLIENT_DOMAIN = os.getenv("CLIENT_DOMAIN", "http://localhost:5173").rstrip("/")

ADMIN_EMAIL = (os.getenv("ADMIN_EMAIL") or "").strip().lower()

_default_origins = "http://localhost:5173,http://localhost:5174"
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", _default_origins).split(",")
    if origin.strip()
]
