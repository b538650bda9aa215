import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


APP_ENV = os.getenv("APP_ENV", "development")
DEBUG = _get_bool(os.getenv("DEBUG"), default=APP_ENV == "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./college_katta.db")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "5002"))
CORS_ORIGINS = _get_list(
    os.getenv("CORS_ORIGINS"),
    ["http://localhost:5173", "http://localhost:5174", "http://localhost:5175"],
)

JWT_SECRET = os.getenv("JWT_SECRET", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", str(24 * 60)))

UPLOAD_ROOT = os.getenv("UPLOAD_ROOT", "uploads")
SUBMISSION_MAX_BYTES = int(os.getenv("SUBMISSION_MAX_BYTES", str(10 * 1024 * 1024)))
PERSONAL_FILE_MAX_BYTES = int(os.getenv("PERSONAL_FILE_MAX_BYTES", str(25 * 1024 * 1024)))
PERSONAL_UPLOAD_MAX_FILES = int(os.getenv("PERSONAL_UPLOAD_MAX_FILES", "5"))

CHAT_MESSAGE_MAX_LENGTH = 500
CHAT_HISTORY_LIMIT = int(os.getenv("CHAT_HISTORY_LIMIT", "100"))

ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@collegekatta.com")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "")
ADMIN_FULL_NAME = os.getenv("ADMIN_FULL_NAME", "System Administrator")


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET == "change-me":
        raise RuntimeError("JWT_SECRET must be set in production.")
