# config.py
import os


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def _coerce_int(value, default, *, minimum=None):
    """Parse an integer setting, falling back to ``default`` on bad input."""
    if value is None or str(value).strip() == "":
        return default
    try:
        number = int(str(value).strip())
    except ValueError:
        return default
    if minimum is not None and number < minimum:
        return default
    return number


def _coerce_float(value, default, *, minimum=0.0):
    if value is None or str(value).strip() == "":
        return default
    try:
        number = float(str(value).strip())
    except ValueError:
        return default
    if number < minimum:
        return default
    return number


def _parse_stage_list(value):
    """
    Parse a comma-separated stage list while keeping order and removing duplicates.

    Returns:
        tuple[str, ...]: Normalized stage names.
    """
    if not value:
        return ()

    seen = set()
    stages = []
    for raw_item in value.split(","):
        item = raw_item.strip().lower()
        if not item or item in seen:
            continue
        seen.add(item)
        stages.append(item)
    return tuple(stages)


class Config:
    _flask_env = os.environ.get("FLASK_ENV", "development")
    _is_testing = _flask_env == "testing"
    _is_production = _flask_env == "production"

    SECRET_KEY = os.environ.get("SECRET_KEY")
    if not SECRET_KEY:
        SECRET_KEY = "dev-secret-key-change-in-production"

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    ENABLE_CONSOLE_LOGGING = _coerce_bool(os.environ.get("ENABLE_CONSOLE_LOGGING"), default=True)
    ENABLE_FILE_LOGGING = _coerce_bool(os.environ.get("ENABLE_FILE_LOGGING"), default=False)
    LOG_DIR = os.environ.get("LOG_DIR", "logs")

    # Source platform
    MIGRATION_SOURCE_BASE_URL = os.environ.get("MIGRATION_SOURCE_BASE_URL")
    MIGRATION_SOURCE_API_TOKEN = os.environ.get("MIGRATION_SOURCE_API_TOKEN")
    MIGRATION_SOURCE_TIMEOUT_SECONDS = _coerce_float(os.environ.get("MIGRATION_SOURCE_TIMEOUT_SECONDS"), 30.0)
    MIGRATION_SOURCE_MAX_RETRIES = _coerce_int(os.environ.get("MIGRATION_SOURCE_MAX_RETRIES"), 5, minimum=0)
    MIGRATION_SOURCE_BACKOFF_SECONDS = _coerce_float(os.environ.get("MIGRATION_SOURCE_BACKOFF_SECONDS"), 1.0)
    MIGRATION_PAGE_SIZE = _coerce_int(os.environ.get("MIGRATION_PAGE_SIZE"), 100, minimum=1)
    MIGRATION_PAGE_DELAY_SECONDS = _coerce_float(os.environ.get("MIGRATION_PAGE_DELAY_SECONDS"), 0.05)

    # Batch pipeline
    MIGRATION_CHUNK_SIZE = _coerce_int(os.environ.get("MIGRATION_CHUNK_SIZE"), 50, minimum=1)
    MIGRATION_RETRY_LIMIT = _coerce_int(os.environ.get("MIGRATION_RETRY_LIMIT"), 3, minimum=0)
    MIGRATION_RETRY_DELAY_SECONDS = _coerce_float(os.environ.get("MIGRATION_RETRY_DELAY_SECONDS"), 2.0)
    MIGRATION_PROGRESS_INTERVAL = _coerce_int(os.environ.get("MIGRATION_PROGRESS_INTERVAL"), 10, minimum=1)
    MIGRATION_ISOLATE_ROW_FAILURES = _coerce_bool(
        os.environ.get("MIGRATION_ISOLATE_ROW_FAILURES"),
        default=True,
    )

    # Operator toggles; CLI flags take precedence.
    MIGRATION_DRY_RUN = _coerce_bool(os.environ.get("MIGRATION_DRY_RUN"), default=False)
    MIGRATION_RECORD_LIMIT = _coerce_int(os.environ.get("MIGRATION_RECORD_LIMIT"), None, minimum=1)
    MIGRATION_STAGES = _parse_stage_list(os.environ.get("MIGRATION_STAGES", ""))

    # Worker
    MIGRATION_WORKER_ENABLED = _coerce_bool(os.environ.get("MIGRATION_WORKER_ENABLED"), default=False)
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")
    MIGRATION_WORKER_QUEUE = os.environ.get("MIGRATION_WORKER_QUEUE", "migrations")
    MIGRATION_TASK_TIME_LIMIT = _coerce_int(os.environ.get("MIGRATION_TASK_TIME_LIMIT"), 6 * 60 * 60, minimum=60)

    # Reconciliation
    RECONCILE_SCORING_PROFILE_PATH = os.environ.get("RECONCILE_SCORING_PROFILE_PATH")


class DevelopmentConfig(Config):
    DEBUG = True
    _config_dir = os.path.dirname(os.path.abspath(__file__))
    _project_root = os.path.dirname(_config_dir)
    instance_path = os.path.join(_project_root, "instance")

    if not os.path.exists(instance_path):
        os.makedirs(instance_path, exist_ok=True)

    # SQLite URI needs forward slashes even on Windows
    db_path = os.path.join(instance_path, "sheetbridge_dev.db")
    db_path_normalized = db_path.replace("\\", "/")
    db_uri = f"sqlite:///{db_path_normalized}"

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", db_uri)
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": 5,
            }
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {}


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {
            "check_same_thread": False,
            "timeout": 5,
        }
    }
    MIGRATION_SOURCE_BASE_URL = "https://legacy.test"
    MIGRATION_SOURCE_API_TOKEN = "test-token"
    MIGRATION_PAGE_DELAY_SECONDS = 0.0
    MIGRATION_RETRY_DELAY_SECONDS = 0.0
    MIGRATION_DRY_RUN = False
    MIGRATION_RECORD_LIMIT = None
    MIGRATION_STAGES = ()


class ProductionConfig(Config):
    DEBUG = False
    uri = os.environ.get("DATABASE_URL")
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = uri
    SQLALCHEMY_ECHO = False
