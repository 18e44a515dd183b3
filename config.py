import os
from dotenv import load_dotenv

basedir = os.path.abspath(os.path.dirname(__file__))
load_dotenv(os.path.join(basedir, '.env'))

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(basedir, 'scheduler.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Database connection pooling
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 10,
        'pool_recycle': 300,  # Recycle connections every 5 minutes
        'pool_pre_ping': True,  # Verify connections before use
        'pool_timeout': 20
    }

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # Identity gateway puts the authenticated user id in this header
    ACTOR_HEADER = os.environ.get('ACTOR_HEADER', 'X-User-Id')

    # Commercial terms
    SUPPORTED_CURRENCIES = ['USD', 'EUR', 'INR', 'GBP', 'CAD', 'AUD']
    DEFAULT_CURRENCY = os.environ.get('DEFAULT_CURRENCY', 'USD')

    # Class scheduling
    ALLOWED_DURATIONS = [30, 35, 45, 60, 90, 120]  # Minutes
    DEFAULT_DURATION = 35
    CUSTOM_DURATION_RANGE = (30, 180)
    DEFAULT_MAX_CAPACITY = 10
    MAX_CLASS_CAPACITY = 50

    # Live sessions
    JOIN_WINDOW_MINUTES = int(os.environ.get('JOIN_WINDOW_MINUTES', 15))
    JOIN_WINDOW_RANGE = (5, 30)
    MEETING_PLATFORM = os.environ.get('MEETING_PLATFORM', 'agora')
    MEETING_LINK_PREFIX = '/meeting/'

    # Pagination
    SESSION_HISTORY_PER_PAGE = 10
    CLASSES_PER_PAGE = 25
    MAX_PER_PAGE = 100

    # Timezone Configuration
    TIMEZONE = os.environ.get('TIMEZONE', 'Asia/Kolkata')  # Default to India timezone

class DevelopmentConfig(Config):
    DEBUG = True
    FLASK_ENV = 'development'

class ProductionConfig(Config):
    DEBUG = False
    FLASK_ENV = 'production'

class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    TIMEZONE = 'UTC'

config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
