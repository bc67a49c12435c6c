import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

# Remote clinic REST API (appointments and blocks are persisted there)
CLINIC_API_URL = os.getenv("CLINIC_API_URL", "http://localhost:3000").rstrip("/")
CLINIC_API_TIMEOUT = float(os.getenv("CLINIC_API_TIMEOUT", "10.0"))

# Recurrence limits - counts outside [1, MAX_RECURRENCE_COUNT] are clamped at the input boundary
MAX_RECURRENCE_COUNT = int(os.getenv("MAX_RECURRENCE_COUNT", "150"))

# Session duration used when the form only sends a start time
DEFAULT_SESSION_MINUTES = int(os.getenv("DEFAULT_SESSION_MINUTES", "50"))
MIN_SESSION_MINUTES = int(os.getenv("MIN_SESSION_MINUTES", "5"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
