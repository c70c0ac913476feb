"""
Configuration classes for the Restaurant Week Bingo application
Loads settings from environment variables
"""

import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    """Application configuration"""

    # Flask
    SECRET_KEY = os.environ.get('SECRET_KEY')
    if not SECRET_KEY:
        raise RuntimeError("SECRET_KEY environment variable must be set")

    APP_ENV = os.environ.get('APP_ENV', 'production')
    DEBUG = os.environ.get('FLASK_ENV') == 'development' or os.environ.get('FLASK_DEBUG') == '1'

    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.environ.get('SESSION_COOKIE_SAMESITE', 'Lax')
    SESSION_COOKIE_SECURE = os.environ.get('SESSION_COOKIE_SECURE', '1') == '1'

    # Database
    DATABASE_PATH = os.environ.get('DATABASE_PATH') or 'bingo.db'

    # Admin credentials
    ADMIN_EMAIL = os.environ.get('ADMIN_EMAIL') or 'admin@example.com'
    ADMIN_PASSWORD = os.environ.get('ADMIN_PASSWORD') or 'changeme123'

    # Event
    EVENT_NAME = os.environ.get('EVENT_NAME') or 'Restaurant Week'
    EVENT_TIMEZONE = os.environ.get('EVENT_TIMEZONE', 'America/New_York')
    CHECKIN_START_DATE = os.environ.get('CHECKIN_START_DATE') or None
    CHECKIN_END_DATE = os.environ.get('CHECKIN_END_DATE') or None
    CHECKIN_FORCE_OPEN = os.environ.get('CHECKIN_FORCE_OPEN', '0') == '1'
    CHECKIN_FORCE_CLOSED = os.environ.get('CHECKIN_FORCE_CLOSED', '0') == '1'
    VISITS_PER_RAFFLE_ENTRY = int(os.environ.get('VISITS_PER_RAFFLE_ENTRY', '4'))

    # Rate limiting
    CHECKIN_RATE_LIMIT = os.environ.get('CHECKIN_RATE_LIMIT', '10/minute')
    RATELIMIT_STORAGE_URI = os.environ.get('RATELIMIT_STORAGE_URI', 'memory://')
    RATELIMIT_DEFAULT = os.environ.get('RATELIMIT_DEFAULT', '1000 per hour')

    # QR codes encode the bare restaurant code unless a public URL is set
    PUBLIC_BASE_URL = os.environ.get('PUBLIC_BASE_URL') or None

    # Request size
    MAX_CONTENT_LENGTH = int(os.environ.get('MAX_CONTENT_LENGTH', str(1 * 1024 * 1024)))

    # Operations
    BACKUP_DIR = os.environ.get('BACKUP_DIR', 'backups')
    BACKUP_KEEP = int(os.environ.get('BACKUP_KEEP', '10'))
    S3_BACKUP_BUCKET = os.environ.get('S3_BACKUP_BUCKET')
    AWS_REGION = os.environ.get('AWS_REGION')
    IMPORT_DATA_DIR = os.environ.get('IMPORT_DATA_DIR', os.path.join('data', 'imports'))

    # Monitoring / logging
    SENTRY_DSN = os.environ.get('SENTRY_DSN')
    SENTRY_TRACES_SAMPLE_RATE = float(os.environ.get('SENTRY_TRACES_SAMPLE_RATE', '0.1'))
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_DIR = os.environ.get('LOG_DIR', 'logs')
