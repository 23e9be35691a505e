import os
from datetime import timedelta

from cachelib.file import FileSystemCache
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev_secret_key')  # change for production
    DEBUG = os.environ.get('FLASK_DEBUG', '0') == '1'
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # 'rest' or 'firestore'
    DONATION_STORE = os.environ.get('DONATION_STORE', 'rest')

    # REST store
    API_BASE_URL = os.environ.get('API_BASE_URL', 'http://localhost:5000/api')
    API_TIMEOUT = float(os.environ.get('API_TIMEOUT', '30'))

    # Firestore store
    FIREBASE_APP_ID = os.environ.get('FIREBASE_APP_ID', 'default-app-id')
    FIREBASE_CREDENTIALS = os.environ.get('FIREBASE_CREDENTIALS')  # service account json path

    USER_ID_KEY = 'al_khair_user_id'
    SUCCESS_MESSAGE_SECONDS = float(os.environ.get('SUCCESS_MESSAGE_SECONDS', '4'))

    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*')
    STREAM_HEARTBEAT_SECONDS = float(os.environ.get('STREAM_HEARTBEAT_SECONDS', '15'))

    # Server-side sessions hold the form state and the anonymous user id
    SESSION_TYPE = 'cachelib'
    SESSION_CACHELIB = FileSystemCache(
        cache_dir=os.environ.get('SESSION_FILE_DIR', os.path.join(BASE_DIR, 'flask_session')),
        threshold=500,
    )
    SESSION_PERMANENT = True
    PERMANENT_SESSION_LIFETIME = timedelta(days=365)
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = 'test-secret'
    DONATION_STORE = 'rest'
    API_BASE_URL = 'http://api.test/api'
