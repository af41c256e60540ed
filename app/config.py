"""Runtime configuration read from the environment."""
import os

# Document store database; a local SQLite file when unset
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./visa_tracker.db")

# SQLAlchemy only accepts the postgresql:// scheme
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

# Token signing. Previous secrets are still accepted for verification, in order.
JWT_SECRET = os.getenv("JWT_SECRET", "change-me-in-production")
JWT_PREVIOUS_SECRETS = [
    s.strip() for s in os.getenv("JWT_PREVIOUS_SECRETS", "").split(",") if s.strip()
]
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_DAYS = int(os.getenv("JWT_EXPIRES_DAYS", "30"))

# Binary storage for uploaded attachments
STORAGE_ROOT = os.getenv("STORAGE_ROOT", "./uploads")
STORAGE_BASE_URL = os.getenv("STORAGE_BASE_URL", "/files")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
