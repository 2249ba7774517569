"""
Harrier Configuration Module

All tunables are loaded from environment variables (or a .env file)
with secure defaults.
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int(name: str, default):
    value = os.environ.get(name)
    if value is None or value == '':
        return default
    return int(value)


class BaseConfig:
    """Base configuration with secure defaults."""

    # Application
    APP_NAME = 'Harrier'
    APP_VERSION = '1.0.0'

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # Scanner Configuration
    SCANNER_MAX_DEPTH = _env_int('SCANNER_MAX_DEPTH', 10)
    SCANNER_MAX_PAGES = _env_int('SCANNER_MAX_PAGES', 1000)
    SCANNER_LINK_COUNT_LIMIT = _env_int('SCANNER_LINK_COUNT_LIMIT', None)
    SCANNER_TIMEOUT = _env_int('SCANNER_TIMEOUT', 30)
    SCANNER_CONCURRENT_REQUESTS = _env_int('SCANNER_CONCURRENT_REQUESTS', 10)
    SCANNER_DELAY_BETWEEN_REQUESTS = float(os.environ.get('SCANNER_DELAY', '0.5'))  # seconds
    SCANNER_VERIFY_SSL = _env_bool('SCANNER_VERIFY_SSL', True)
    SCANNER_RESPECT_ROBOTS = _env_bool('SCANNER_RESPECT_ROBOTS', True)
    SCANNER_SCOPE = os.environ.get('SCANNER_SCOPE', 'domain')  # 'domain', 'subdomain', 'path'
    SCANNER_PROXY = os.environ.get('SCANNER_PROXY') or None
    SCANNER_USER_AGENT = 'Harrier Security Scanner/1.0'

    # How many times each page is fetched to spot nonce tokens
    SCANNER_PRECISION = _env_int('SCANNER_PRECISION', 1)

    # Platform fingerprinting of every constructed page
    SCANNER_FINGERPRINT = _env_bool('SCANNER_FINGERPRINT', True)

    # Auto-redundancy: max crawls of one path with the same parameter names (0 disables)
    SCANNER_AUTO_REDUNDANT = _env_int('SCANNER_AUTO_REDUNDANT', 0)

    # Trainer
    TRAINER_MAX_TRAININGS_PER_URL = _env_int('TRAINER_MAX_TRAININGS_PER_URL', 25)

    # Auditor seed value appended to every input
    AUDIT_SEED = os.environ.get('AUDIT_SEED', 'harrier_seed')


class DevelopmentConfig(BaseConfig):
    """Development configuration."""

    DEBUG = True
    TESTING = False

    # Self-signed certs are common on dev targets
    SCANNER_VERIFY_SSL = False

    # More verbose logging
    LOG_LEVEL = 'DEBUG'


class TestingConfig(BaseConfig):
    """Testing configuration."""

    DEBUG = True
    TESTING = True

    # Faster scans for testing
    SCANNER_MAX_DEPTH = 2
    SCANNER_MAX_PAGES = 10
    SCANNER_TIMEOUT = 5
    SCANNER_DELAY_BETWEEN_REQUESTS = 0.0
    SCANNER_RESPECT_ROBOTS = False
    SCANNER_FINGERPRINT = False


class ProductionConfig(BaseConfig):
    """Production configuration."""

    DEBUG = False
    TESTING = False

    LOG_LEVEL = 'WARNING'


# Configuration dictionary for easy access
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': BaseConfig
}


def get_config(name=None):
    """Return the config class for ``name`` (defaults to $HARRIER_ENV)."""
    if name is None:
        name = os.environ.get('HARRIER_ENV', 'default')
    return config.get(name, config['default'])
