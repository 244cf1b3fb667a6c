import os
import warnings

from dotenv import load_dotenv

basedir = os.path.abspath(os.path.dirname(__file__))
load_dotenv(os.path.join(basedir, ".env"))


def _env_flag(name, default):
    return os.environ.get(name, default).lower() in ["true", "on", "1"]


class Config:
    # Database configuration - built from environment at initialization
    def __init__(self):
        """Initialize configuration with dynamic database URI"""
        self.SQLALCHEMY_DATABASE_URI = self._build_database_uri()

    def _build_database_uri(self):
        """Build database URI from environment variables"""
        database_url = os.environ.get("DATABASE_URL")

        if database_url:
            return database_url

        db_type = os.environ.get("DB_TYPE", "sqlite")

        if db_type.lower() == "postgresql":
            db_host = os.environ.get("DB_HOST") or "localhost"
            db_port = os.environ.get("DB_PORT") or "5432"
            db_name = os.environ.get("DB_NAME") or "ats_pickem_db"
            db_user = os.environ.get("DB_USER") or "pickem_user"
            db_password = os.environ.get("DB_PASSWORD") or "pickem_password"

            return f"postgresql+psycopg://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}"
        else:
            # Default to SQLite for development
            return "sqlite:///" + os.path.join(basedir, "ats_pickem.db")

    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Contest rules
    PICK_LIMIT = int(os.environ.get("PICK_LIMIT") or 6)
    LOCK_LIMIT = int(os.environ.get("LOCK_LIMIT") or 1)
    BASE_POINTS = int(os.environ.get("BASE_POINTS") or 20)
    PUSH_POINTS = int(os.environ.get("PUSH_POINTS") or 10)

    # Game data feed
    GAME_FEED_URL = os.environ.get("GAME_FEED_URL")
    GAME_FEED_INTERVAL_SECONDS = int(os.environ.get("GAME_FEED_INTERVAL_SECONDS") or 120)

    # Recompute worker
    RECOMPUTE_INTERVAL_SECONDS = int(os.environ.get("RECOMPUTE_INTERVAL_SECONDS") or 30)
    RECOMPUTE_BATCH_SIZE = int(os.environ.get("RECOMPUTE_BATCH_SIZE") or 200)
    RECOMPUTE_MAX_ATTEMPTS = int(os.environ.get("RECOMPUTE_MAX_ATTEMPTS") or 5)

    # Caching configuration
    CACHE_TYPE = os.environ.get("CACHE_TYPE", "RedisCache")
    CACHE_DEFAULT_TIMEOUT = int(
        os.environ.get("CACHE_DEFAULT_TIMEOUT", 120)
    )  # 2 minutes
    CACHE_REDIS_URL = os.environ.get("CACHE_REDIS_URL", "redis://localhost:6379/0")
    CACHE_KEY_PREFIX = "ats_pickem:"
    LEADERBOARD_CACHE_TIMEOUT = int(os.environ.get("LEADERBOARD_CACHE_TIMEOUT", 300))

    # Scheduler configuration
    SCHEDULER_ENABLED = _env_flag("SCHEDULER_ENABLED", "True")

    # Logging configuration
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_TO_CONSOLE = _env_flag("LOG_TO_CONSOLE", "True")
    LOG_TO_FILE = _env_flag("LOG_TO_FILE", "True")
    LOG_DIR = os.environ.get("LOG_DIR", "logs")
    SLOW_FUNCTION_THRESHOLD = float(os.environ.get("SLOW_FUNCTION_THRESHOLD", "1.0"))

    # Environment detection
    FLASK_ENV = os.environ.get("FLASK_ENV", "development")
    DEBUG = FLASK_ENV == "development"
    TESTING = False


class DevelopmentConfig(Config):
    """Development configuration with helpful defaults"""

    DEBUG = True
    SQLALCHEMY_ECHO = _env_flag("SQLALCHEMY_ECHO", "False")

    def __init__(self):
        super().__init__()
        # Fallback to SimpleCache if Redis isn't available in development
        import redis

        try:
            redis_client = redis.Redis.from_url(self.CACHE_REDIS_URL)
            redis_client.ping()
        except redis.exceptions.ConnectionError:
            self.CACHE_TYPE = "SimpleCache"
            warnings.warn(
                "Redis not available, falling back to SimpleCache for development.",
                UserWarning,
            )


class ProductionConfig(Config):
    """Production configuration"""

    DEBUG = False
    LOG_TO_CONSOLE = _env_flag("LOG_TO_CONSOLE", "False")

    def __init__(self):
        super().__init__()

        if not os.environ.get("DATABASE_URL") and not os.environ.get("DB_TYPE"):
            warnings.warn(
                "PRODUCTION WARNING: no DATABASE_URL or DB_TYPE set, using SQLite.",
                UserWarning,
            )


class TestingConfig(Config):
    """Testing configuration"""

    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    CACHE_TYPE = "NullCache"
    SCHEDULER_ENABLED = False
    LOG_TO_FILE = False
    LOG_TO_CONSOLE = False

    def _build_database_uri(self):
        return "sqlite:///:memory:"


# Configuration mapping
config = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
    "default": DevelopmentConfig,
}
