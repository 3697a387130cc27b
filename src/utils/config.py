"""
Configuration management for the Cafe Cost Engine.

This module handles:
- Database path configuration
- Environment-specific configuration (development, production, testing)
- Point-of-sale settings resolved once at startup
"""

import logging
import os
from pathlib import Path
from typing import Optional

from .constants import (
    APP_NAME,
    APP_VERSION,
    DATABASE_FILENAME,
    DATABASE_VERSION,
)

logger = logging.getLogger(__name__)

ENVIRONMENT_VARIABLE = "CAFE_COST_ENV"
POS_CUSTOMER_VARIABLE = "CAFE_POS_CUSTOMER_ID"
DATABASE_URL_VARIABLE = "CAFE_COST_DATABASE_URL"

ENVIRONMENTS = ("production", "development", "testing")


class Config:
    """
    Application configuration manager.

    Handles database location and the settings the costing services need
    from their collaborators (e.g. the walk-in customer used for POS orders).
    """

    def __init__(self, environment: str = "production", pos_customer_id: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            environment: 'production', 'development' or 'testing'
            pos_customer_id: External id of the walk-in customer for POS orders.
                If None, read from CAFE_POS_CUSTOMER_ID.
        """
        if environment not in ENVIRONMENTS:
            raise ValueError(
                f"Unknown environment '{environment}'. Expected one of {', '.join(ENVIRONMENTS)}"
            )

        self.environment = environment
        self._app_name = APP_NAME
        self._app_version = APP_VERSION
        self._database_version = DATABASE_VERSION

        if pos_customer_id is None:
            pos_customer_id = os.environ.get(POS_CUSTOMER_VARIABLE) or None
        self._pos_customer_id = pos_customer_id

        self._database_url_override = os.environ.get(DATABASE_URL_VARIABLE) or None

        if environment == "development":
            self._base_dir = self._get_project_data_dir()
        elif environment == "production":
            self._base_dir = self._get_user_documents_dir()
        else:
            self._base_dir = None

        if self._base_dir is not None:
            self._database_path = self._base_dir / DATABASE_FILENAME
            self._ensure_directories()
        else:
            self._database_path = None

    def _get_project_data_dir(self) -> Path:
        """Project data/ directory used during development."""
        project_root = Path(__file__).parent.parent.parent
        return project_root / "data"

    def _get_user_documents_dir(self) -> Path:
        """User's Documents folder with an app subdirectory."""
        return Path.home() / "Documents" / "CafeCostEngine"

    def _ensure_directories(self):
        """Create necessary directories if they don't exist."""
        self._base_dir.mkdir(parents=True, exist_ok=True)

    @property
    def app_name(self) -> str:
        """Application name."""
        return self._app_name

    @property
    def app_version(self) -> str:
        """Application version."""
        return self._app_version

    @property
    def database_version(self) -> str:
        """Database schema version."""
        return self._database_version

    @property
    def database_path(self) -> Optional[Path]:
        """Full path to the database file (None for in-memory testing)."""
        return self._database_path

    @property
    def database_url(self) -> str:
        """
        SQLAlchemy database URL.

        CAFE_COST_DATABASE_URL wins when set; testing uses in-memory SQLite.
        """
        if self._database_url_override:
            return self._database_url_override
        if self._database_path is None:
            return "sqlite:///:memory:"
        db_path_str = str(self._database_path).replace("\\", "/")
        return f"sqlite:///{db_path_str}"

    @property
    def pos_customer_id(self) -> Optional[str]:
        """External customer id attached to walk-in POS orders."""
        return self._pos_customer_id

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_testing(self) -> bool:
        return self.environment == "testing"

    def database_exists(self) -> bool:
        """
        Check if database file exists.

        Returns:
            True if database file exists (always True for in-memory databases)
        """
        if self._database_path is None:
            return True
        return self._database_path.exists()

    def __repr__(self) -> str:
        return f"Config(environment='{self.environment}', database_url='{self.database_url}')"


_config_instance: Optional[Config] = None


def get_config(environment: Optional[str] = None) -> Config:
    """
    Get the global configuration instance.

    Once created, the singleton's environment cannot be changed by passing
    a different environment argument, so a running process never switches
    databases mid-session.

    Args:
        environment: Optional environment for initial creation. If None, uses
            CAFE_COST_ENV or defaults to production. Ignored if the singleton
            already exists.

    Returns:
        Config instance
    """
    global _config_instance

    if _config_instance is None:
        if environment is None:
            environment = os.environ.get(ENVIRONMENT_VARIABLE, "production")
        _config_instance = Config(environment)
    elif environment is not None and environment != _config_instance.environment:
        logger.warning(
            f"get_config() called with environment='{environment}' but singleton "
            f"already exists with environment='{_config_instance.environment}'. "
            f"Returning existing singleton to prevent database switching."
        )

    return _config_instance


def reset_config():
    """
    Reset the global configuration instance.

    Useful for testing.
    """
    global _config_instance
    _config_instance = None


def get_database_url() -> str:
    """Get the database URL of the active configuration."""
    return get_config().database_url
