import os

basedir = os.path.abspath(os.path.dirname(__file__))


def _env_bool(name, default=False):
    raw = os.environ.get(name)
    if raw is None:
        return default
    return str(raw).strip().lower() in {'1', 'true', 'yes', 'on'}


def _env_int(name, default):
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _normalize_database_url(raw_url):
    if not raw_url:
        return raw_url
    if raw_url.startswith('postgres://'):
        return raw_url.replace('postgres://', 'postgresql://', 1)
    return raw_url


class BaseConfig:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-prod')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JWT_EXPIRATION_HOURS = _env_int('JWT_EXPIRATION_HOURS', 24)
    CORS_ALLOWED_ORIGINS = os.environ.get('CORS_ALLOWED_ORIGINS', '*')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    # Worker threads for independent read queries within one request; 0 or 1 runs them inline.
    QUERY_FANOUT_WORKERS = _env_int('QUERY_FANOUT_WORKERS', 6)
    SCORE_RELEASE_GRACE_SECONDS = _env_int('SCORE_RELEASE_GRACE_SECONDS', 1)
    ES_TESTS_CACHE_SECONDS = _env_int('ES_TESTS_CACHE_SECONDS', 30)
    EXPOSE_ERROR_DETAILS = _env_bool('EXPOSE_ERROR_DETAILS', False)


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    EXPOSE_ERROR_DETAILS = _env_bool('EXPOSE_ERROR_DETAILS', True)
    SQLALCHEMY_DATABASE_URI = _normalize_database_url(
        os.environ.get(
            'DATABASE_URL',
            'sqlite:///' + os.path.join(basedir, '..', 'tourney_portal_dev.db')
        )
    )


class TestingConfig(BaseConfig):
    TESTING = True
    EXPOSE_ERROR_DETAILS = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    # In-memory SQLite is per-connection, so worker threads would see an empty database.
    QUERY_FANOUT_WORKERS = 0


class ProductionConfig(BaseConfig):
    DEBUG = False
    EXPOSE_ERROR_DETAILS = False
    SQLALCHEMY_DATABASE_URI = _normalize_database_url(os.environ.get('DATABASE_URL'))


config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
}
