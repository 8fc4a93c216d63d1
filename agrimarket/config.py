from pydantic import BaseModel
import os
from dotenv import load_dotenv
load_dotenv()  # carga el archivo .env de la raíz

class Settings(BaseModel):
    app_name: str = os.getenv("APP_NAME", "AgriMarket")
    env: str = os.getenv("APP_ENV", "dev")
    mongodb_uri: str = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
    db_name: str = os.getenv("DB_NAME", "agrimarket")
    jwt_secret: str = os.getenv("JWT_SECRET", "change-me")
    jwt_expires_hours: int = int(os.getenv("JWT_EXPIRES_HOURS", "8"))
    frontend_base_url: str = os.getenv("FRONTEND_BASE_URL", "http://localhost:5173")

    # Mensajería
    max_message_length: int = int(os.getenv("MAX_MESSAGE_LENGTH", "2000"))
    preview_length: int = int(os.getenv("PREVIEW_LENGTH", "80"))
    send_rate_limit: str = os.getenv("SEND_RATE_LIMIT", "30/minute")

    # Notificaciones en vivo y reconciliación
    notifier_queue_size: int = int(os.getenv("NOTIFIER_QUEUE_SIZE", "100"))
    thread_poll_seconds: float = float(os.getenv("THREAD_POLL_SECONDS", "30"))
    inbox_poll_seconds: float = float(os.getenv("INBOX_POLL_SECONDS", "60"))
    read_retry_attempts: int = int(os.getenv("READ_RETRY_ATTEMPTS", "3"))
    read_retry_backoff: float = float(os.getenv("READ_RETRY_BACKOFF", "0.5"))


_settings: Settings | None = None
def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
