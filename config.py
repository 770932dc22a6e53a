import os


def _csv_env(name: str, default: str = ""):
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


DATA_FILE = os.getenv("DATA_FILE", "data/campus_access.json")

FIREBASE_CREDENTIALS = os.getenv("FIREBASE_CREDENTIALS")
FIREBASE_STORAGE_BUCKET = os.getenv("FIREBASE_STORAGE_BUCKET")

CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME")
CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY")
CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET")

GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "models/gemini-2.5-flash")

SMTP_HOST = os.getenv("SMTP_HOST")
try:
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
except ValueError:
    SMTP_PORT = 587
SMTP_USERNAME = os.getenv("SMTP_USERNAME")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
SMTP_FROM = os.getenv("SMTP_FROM") or SMTP_USERNAME or "noreply@campus-access.local"
SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() not in {"false", "0", "no"}
MAINTENANCE_EMAILS = _csv_env("MAINTENANCE_EMAILS")

ADMIN_USERNAME = os.getenv("ADMIN_USERNAME")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")

ALLOWED_ORIGINS = _csv_env(
    "ALLOWED_ORIGINS",
    "http://localhost:5173,http://127.0.0.1:5173",
)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# seconds a location ping counts as "active" for crowd density
ACTIVE_LOCATION_TTL = int(os.getenv("ACTIVE_LOCATION_TTL", "900"))

APP_URL = os.getenv("APP_URL", "http://localhost:5173")

# hours of ping history kept in memory for popular routes and hourly traffic
LOCATION_HISTORY_HOURS = int(os.getenv("LOCATION_HISTORY_HOURS", "168"))

# in-memory notification and status-log entries kept per process
NOTIFICATION_LOG_LIMIT = int(os.getenv("NOTIFICATION_LOG_LIMIT", "500"))
