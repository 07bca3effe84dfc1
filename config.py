import os
import re
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "marketplace")

JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
JWT_EXPIRE = os.getenv("JWT_EXPIRE", "7d")

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 5000))

CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME")
CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY")
CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET")

PRODUCT_IMAGE_MAX_BYTES = 5 * 1024 * 1024
PROFILE_IMAGE_MAX_BYTES = 2 * 1024 * 1024
PRODUCT_IMAGE_MAX_FILES = 5

_DURATION = re.compile(r"^\s*(\d+)\s*([dhms]?)\s*$")
_UNITS = {"d": "days", "h": "hours", "m": "minutes", "s": "seconds", "": "seconds"}


def parse_duration(value: str) -> timedelta:
    """Parse expiry strings such as ``7d``, ``12h``, ``30m`` or ``3600``."""
    match = _DURATION.match(str(value))
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return timedelta(**{_UNITS[unit]: int(amount)})


def is_development() -> bool:
    return ENVIRONMENT == "development"
