"""Environment-aware configuration for the complaint workflow service."""
import os


class BaseConfig:
    def __init__(self) -> None:
        # Defaults for local dev: SQLite db and a non-empty secret. Override via env for production.
        self.SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
        db_url = os.getenv("DATABASE_URL")
        # If DATABASE_URL points to a placeholder host (e.g., db_host) or is missing, fall back to SQLite for local dev.
        if db_url and "db_host" not in db_url:
            self.SQLALCHEMY_DATABASE_URI = db_url
        else:
            self.SQLALCHEMY_DATABASE_URI = os.getenv(
                "SQLITE_URL",
                f"sqlite:///{os.path.join(os.getcwd(), 'instance', 'complaints.db')}",
            )
        self.SQLALCHEMY_TRACK_MODIFICATIONS = False
        self.SQLALCHEMY_ENGINE_OPTIONS = {
            "pool_size": int(os.getenv("DB_POOL_SIZE", 10)),
            "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", 20)),
            "pool_timeout": int(os.getenv("DB_POOL_TIMEOUT", 30)),
            "pool_recycle": int(os.getenv("DB_POOL_RECYCLE", 1800)),
        }
        self.PREFERRED_URL_SCHEME = os.getenv("PREFERRED_URL_SCHEME", "https")
        self.WTF_CSRF_TIME_LIMIT = 3600
        self.WTF_CSRF_ENABLED = True
        self.GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
        self.GEMINI_VISION_MODEL = os.getenv("GEMINI_VISION_MODEL", "gemini-2.5-flash")
        self.GEMINI_TEXT_MODEL = os.getenv("GEMINI_TEXT_MODEL", "gemini-2.5-flash")
        self.AI_TIMEOUT_SECONDS = float(os.getenv("AI_TIMEOUT_SECONDS", 5))
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.LOG_DIR = os.getenv("LOG_DIR", os.path.join(os.getcwd(), "logs"))
        self.MAX_CONTENT_LENGTH = int(os.getenv("MAX_REQUEST_BYTES", 2 * 1024 * 1024))
        self.SLA_ESCALATION_HOURS = int(os.getenv("SLA_ESCALATION_HOURS", 48))
        self.VERIFICATION_WINDOW_HOURS = int(os.getenv("VERIFICATION_WINDOW_HOURS", 48))
        self.COMMUNITY_VOTE_QUORUM = int(os.getenv("COMMUNITY_VOTE_QUORUM", 3))
        self.DISPUTE_FLAG_THRESHOLD = int(os.getenv("DISPUTE_FLAG_THRESHOLD", 3))
        self.TRUST_SCORE_COMMUNITY_FLOOR = int(os.getenv("TRUST_SCORE_COMMUNITY_FLOOR", 50))
        self.PUBLIC_FEED_LIMIT = int(os.getenv("PUBLIC_FEED_LIMIT", 50))
        self.COMPLAINTS_MAX_PAGE = int(os.getenv("COMPLAINTS_MAX_PAGE", 100))
        self.NOTIFICATION_DEDUP_MINUTES = int(os.getenv("NOTIFICATION_DEDUP_MINUTES", 0))


class DevelopmentConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.DEBUG = True
        self.ENV = "development"


class ProductionConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.DEBUG = False
        self.ENV = "production"


class TestingConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.TESTING = True
        self.DEBUG = False
        self.ENV = "testing"
        self.SQLALCHEMY_DATABASE_URI = "sqlite://"
        # In-memory SQLite runs on a static pool; queue pool options do not apply.
        self.SQLALCHEMY_ENGINE_OPTIONS = {}
        self.WTF_CSRF_ENABLED = False
        self.GEMINI_API_KEY = ""
        self.LOG_LEVEL = "WARNING"
