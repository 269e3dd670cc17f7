import os
import secrets


class Config:
    """Base configuration"""
    # Generate a temporary key for development if not set
    _secret = os.environ.get('SECRET_KEY')
    if not _secret:
        _secret = secrets.token_hex(32)
        print("WARNING: Using auto-generated SECRET_KEY. Set SECRET_KEY environment variable for production.")
    SECRET_KEY = _secret

    # Database - Handle Heroku's postgres:// -> postgresql:// conversion
    database_url = os.environ.get('DATABASE_URL') or 'postgresql://localhost/coachchat'
    if database_url.startswith('postgres://'):
        database_url = database_url.replace('postgres://', 'postgresql://', 1)
    SQLALCHEMY_DATABASE_URI = database_url
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Database Connection Pool Configuration
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 20,           # Number of persistent connections to keep open
        'max_overflow': 40,        # Additional connections allowed above pool_size
        'pool_pre_ping': True,     # Test connection health before using
        'pool_recycle': 300,       # Recycle connections after 5 minutes
        'pool_timeout': 30,        # Timeout for getting connection from pool
    }

    # Identity provider (bearer tokens issued by the account service)
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY') or SECRET_KEY
    JWT_ALGORITHM = os.environ.get('JWT_ALGORITHM', 'HS256')
    JWT_ISSUER = os.environ.get('JWT_ISSUER', 'coachchat')
    JWT_AUDIENCE = os.environ.get('JWT_AUDIENCE', 'coachchat-users')
    JWT_EXPIRES_MINUTES = int(os.environ.get('JWT_EXPIRES_MINUTES', 60 * 24 * 7))

    # Error Tracking
    SENTRY_DSN = os.environ.get('SENTRY_DSN')

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # Redis (for SocketIO message queue)
    REDIS_URL = os.environ.get('REDIS_URL') or 'redis://localhost:6379/0'

    # For rediss:// (SSL) connections, disable strict certificate verification
    _redis_url = REDIS_URL
    if _redis_url.startswith('rediss://'):
        _redis_url += '?ssl_cert_reqs=none'

    # SocketIO
    SOCKETIO_MESSAGE_QUEUE = _redis_url
    SOCKETIO_ASYNC_MODE = 'eventlet'
    SOCKETIO_CORS_ORIGINS = os.environ.get('SOCKETIO_CORS_ORIGINS', 'http://localhost:3000').split(',')
    SOCKETIO_AUTH_TIMEOUT = float(os.environ.get('SOCKETIO_AUTH_TIMEOUT', 10))

    # Chat
    CHAT_MAX_MESSAGE_LENGTH = 2000
    CHAT_MAX_ATTACHMENTS = 10
    CHAT_PAGE_SIZE = 50
    CHAT_MAX_PAGE_SIZE = 100
    CHAT_CONVERSATIONS_LIMIT = 10
    CHAT_MAX_CONVERSATIONS_LIMIT = 50
    CHAT_SEARCH_PAGE_SIZE = 20
    CHAT_MAX_SEARCH_PAGE_SIZE = 50
    CHAT_MAX_SEARCH_LENGTH = 100
    CHAT_NOTIFICATION_PREVIEW_LENGTH = 50


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_ECHO = False
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False

    # Add SSL mode for Postgres on Heroku if not already present
    if 'postgresql://' in Config.database_url and 'sslmode' not in Config.database_url:
        SQLALCHEMY_DATABASE_URI = Config.database_url + '?sslmode=require'


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    # In-memory SQLite unless a dedicated test database is provided
    SQLALCHEMY_DATABASE_URI = os.environ.get('TEST_DATABASE_URL') or 'sqlite://'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    JWT_SECRET_KEY = 'test-jwt-secret'
    SOCKETIO_ASYNC_MODE = 'threading'  # Use threading mode for tests
    SOCKETIO_MESSAGE_QUEUE = None  # Disable Redis message queue for tests
    SENTRY_DSN = None
    LOG_LEVEL = 'WARNING'


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
