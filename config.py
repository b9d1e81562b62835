# Configuration settings
import os
from datetime import timedelta

DEFAULT_JWT_SECRET = 'default-secret-key-change-in-production'


def env_bool(name, default):
    value = os.getenv(name)
    if value is None or value == '':
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def env_list(name, default):
    value = os.getenv(name, default)
    if not value or value.strip() == '*':
        return '*'
    return [origin.strip() for origin in value.split(',') if origin.strip()]


class Config:
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL', 'sqlite:///social.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JWT_SECRET_KEY = os.getenv('JWT_SECRET_KEY', DEFAULT_JWT_SECRET)
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=int(os.getenv('JWT_ACCESS_TOKEN_EXPIRES_HOURS', '24')))
    BCRYPT_LOG_ROUNDS = int(os.getenv('BCRYPT_LOG_ROUNDS', '12'))
    CORS_ORIGINS = env_list('CORS_ORIGINS', 'http://localhost:3000,http://localhost:19000')
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
    PORT = int(os.getenv('PORT', '8080'))

    # Acting user for requests that carry no token
    DEFAULT_ACTOR_ID = int(os.getenv('DEFAULT_ACTOR_ID', '1'))
    ALLOW_FALLBACK_ACTOR = env_bool('ALLOW_FALLBACK_ACTOR', True)

    DEBUG = False

    @classmethod
    def init_app(cls, app):
        pass


class DevelopmentConfig(Config):
    DEBUG = True


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv('TEST_DATABASE_URL', 'sqlite://')
    JWT_SECRET_KEY = 'testing-secret-key-that-is-long-enough-for-hs256'
    BCRYPT_LOG_ROUNDS = 4
    LOG_LEVEL = 'DEBUG'
    ALLOW_FALLBACK_ACTOR = True


class ProductionConfig(Config):
    DEBUG = False

    @classmethod
    def init_app(cls, app):
        if app.config['JWT_SECRET_KEY'] == DEFAULT_JWT_SECRET:
            raise RuntimeError("JWT_SECRET_KEY must be set in production")


config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}
