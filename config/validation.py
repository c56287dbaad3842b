# config/validation.py

"""
Environment variable validation for Sheetbridge.
Validates required environment variables at startup.
"""

import os
import sys
from typing import List, Tuple


def validate_environment(flask_env: str = None) -> Tuple[bool, List[str]]:
    """
    Validate required environment variables.

    Args:
        flask_env: Flask environment (development, production, testing)
                  If None, reads from FLASK_ENV environment variable

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    if flask_env is None:
        flask_env = os.environ.get("FLASK_ENV", "development")

    errors = []

    # Only validate in production
    if flask_env != "production":
        return True, []

    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        errors.append(
            "DATABASE_URL is required in production. "
            "Set it to the target PostgreSQL connection string."
        )

    if not os.environ.get("MIGRATION_SOURCE_BASE_URL"):
        errors.append("MIGRATION_SOURCE_BASE_URL is required in production (legacy platform base URL).")

    token = os.environ.get("MIGRATION_SOURCE_API_TOKEN", "")
    if not token or token == "your-api-token":
        errors.append("MIGRATION_SOURCE_API_TOKEN is required in production and must not be the placeholder value.")

    if os.environ.get("MIGRATION_WORKER_ENABLED", "false").lower() == "true":
        if not os.environ.get("CELERY_BROKER_URL"):
            errors.append("CELERY_BROKER_URL is required when MIGRATION_WORKER_ENABLED=true")

    profile_path = os.environ.get("RECONCILE_SCORING_PROFILE_PATH")
    if profile_path and not os.path.exists(profile_path):
        errors.append(f"RECONCILE_SCORING_PROFILE_PATH points to a missing file: {profile_path}")

    is_valid = len(errors) == 0
    return is_valid, errors


def validate_and_exit(flask_env: str = None) -> None:
    """
    Validate environment variables and exit with error if validation fails.
    Intended to be called at application startup.
    """
    is_valid, errors = validate_environment(flask_env)

    if not is_valid:
        print("=" * 80, file=sys.stderr)
        print("ENVIRONMENT VALIDATION FAILED", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print("\nThe following environment variables are missing or invalid:\n", file=sys.stderr)

        for i, error in enumerate(errors, 1):
            print(f"{i}. {error}", file=sys.stderr)

        print("\n" + "=" * 80, file=sys.stderr)
        print("Please check your .env file or environment variables.", file=sys.stderr)
        print("=" * 80, file=sys.stderr)

        sys.exit(1)
