# app.py

import logging
import os

from dotenv import load_dotenv
from flask import Flask

# Load environment variables from .env file first
load_dotenv()

# Module imports after load_dotenv() - E402 is intentional
from config import DevelopmentConfig, ProductionConfig, TestingConfig  # noqa: E402
from config.validation import validate_and_exit  # noqa: E402
from sheetbridge.migration import init_migration  # noqa: E402
from sheetbridge.models import db  # noqa: E402
from sheetbridge.utils.logging_config import setup_logging  # noqa: E402
from sheetbridge.utils.sqlite import configure_sqlite_engine  # noqa: E402

logger = logging.getLogger(__name__)

app = Flask(__name__)

# Validate environment variables (only in production)
flask_env = os.environ.get("FLASK_ENV", "development")
if flask_env == "production":
    validate_and_exit(flask_env)

# Load configuration based on the environment
if flask_env == "production":
    app.config.from_object(ProductionConfig)
elif flask_env == "testing":
    app.config.from_object(TestingConfig)
else:
    app.config.from_object(DevelopmentConfig)

db.init_app(app)
setup_logging(app)

with app.app_context():
    configure_sqlite_engine(db.engine, enable_foreign_keys=not app.config.get("TESTING", False))
    # Create the database tables only if not in testing mode
    if not app.config.get("TESTING", False):
        db.create_all()

init_migration(app)
