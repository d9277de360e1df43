"""
Configuration loader.
Reads settings from the .env file and exposes them to the rest of the app.
"""

import os
from dotenv import load_dotenv

load_dotenv()

# MongoDB
DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "school_feedback")

# Identity provider tokens
# No default: the app refuses to start without it
JWT_SECRET = os.getenv("JWT_SECRET") or None
JWT_ALG = os.getenv("JWT_ALG", "HS256")
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE") or None
JWT_ISSUER = os.getenv("JWT_ISSUER") or None

# HTTP
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]
PORT = int(os.getenv("PORT", 8000))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
