import os

STORAGE_BACKEND = os.environ.get("TRACKER_STORAGE", "json").strip().lower()
DATA_DIR = os.environ.get("TRACKER_DATA_DIR", "data")
SECRET_KEY = os.environ.get("TRACKER_SECRET_KEY", "change-this-secret-in-production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.environ.get("TRACKER_TOKEN_EXPIRE_MINUTES", "1440"))
# Seconds to wait for the store lock before giving up
STORAGE_TIMEOUT = float(os.environ.get("TRACKER_STORAGE_TIMEOUT", "5"))
PASSCODE_LENGTH = max(6, int(os.environ.get("TRACKER_PASSCODE_LENGTH", "8")))
CORS_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("TRACKER_CORS_ORIGINS", "*").split(",")
    if origin.strip()
]
LOG_LEVEL = os.environ.get("TRACKER_LOG_LEVEL", "INFO").strip().upper()
