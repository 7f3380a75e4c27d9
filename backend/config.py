import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./auctions.db")
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

JWT_SECRET = os.getenv("JWT_SECRET", "CHANGE_THIS_SECRET")
JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "2"))

# Closing sweep
SWEEP_INTERVAL_SECONDS = float(os.getenv("SWEEP_INTERVAL_SECONDS", "60"))

STORE_TIMEOUT_SECONDS = float(os.getenv("STORE_TIMEOUT_SECONDS", "10"))
BID_MAX_RETRIES = int(os.getenv("BID_MAX_RETRIES", "3"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
