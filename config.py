"""
Runtime configuration.

Everything comes from environment variables and is read once at import time.
"""
import os

# Database
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "marketplace")

# Auth
SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkey")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 24 * 60))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 12))

# Platform owner created on startup when both are set
OWNER_USERNAME = os.getenv("OWNER_USERNAME")
OWNER_PASSWORD = os.getenv("OWNER_PASSWORD")

# HTTP
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
PORT = int(os.getenv("PORT", 8000))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Seconds between expired-block sweeps; 0 turns the background sweep off
BLOCK_SWEEP_INTERVAL_SECONDS = int(os.getenv("BLOCK_SWEEP_INTERVAL_SECONDS", 60))
