"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '1') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')

    # Session Configuration (Production-safe defaults)
    SESSION_COOKIE_SECURE = os.getenv('SESSION_COOKIE_SECURE', 'false').lower() == 'true'
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv('SESSION_COOKIE_SAMESITE', 'Lax')
    PERMANENT_SESSION_LIFETIME = 86400  # 24 hours

    # Database - DATABASE_URL takes priority over DB_* variables
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        DB_HOST = os.getenv('DB_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME', 'marketplace')
        DB_USER = os.getenv('DB_USER', 'marketplace')
        DB_PASSWORD = os.getenv('DB_PASSWORD', 'marketplace')

        DATABASE_URL = (
            f"postgresql://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'

    # Checkout: seller groups processed in parallel (1 = sequential)
    CHECKOUT_MAX_WORKERS = int(os.getenv('CHECKOUT_MAX_WORKERS', '4'))

    # Pricing tier used when a service line names none
    DEFAULT_PRICING_TIER = os.getenv('DEFAULT_PRICING_TIER', 'basic')

    # Display only; amounts are always stored as decimals
    CURRENCY_CODE = os.getenv('CURRENCY_CODE', 'PKR')

    # Clock for date-bounded offers (None = system date)
    CLOCK = None


class TestConfig(Config):
    """Configuration for the test suite (in-memory SQLite)."""

    TESTING = True
    DEBUG = False
    ENV = 'testing'
    SECRET_KEY = 'test-secret-key'
    WTF_CSRF_ENABLED = False
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ECHO = False
    CHECKOUT_MAX_WORKERS = 1
    DEFAULT_PRICING_TIER = 'basic'
    CURRENCY_CODE = 'PKR'
