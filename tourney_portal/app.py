import logging

from flask import Flask, request, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from tourney_portal.config import config
from tourney_portal.errors import PortalError

db = SQLAlchemy()


def _parse_allowed_origins(raw_origins):
    if not raw_origins:
        return '*'

    if isinstance(raw_origins, (list, tuple, set)):
        cleaned = [origin for origin in raw_origins if origin]
        return cleaned or '*'

    raw_text = str(raw_origins).strip()
    if not raw_text or raw_text == '*':
        return '*'

    origins = [origin.strip() for origin in raw_text.split(',') if origin.strip()]
    return origins or '*'


def _configure_logging(app):
    level_name = str(app.config.get('LOG_LEVEL') or 'INFO').strip().upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO
    app.logger.setLevel(level)
    logging.getLogger('tourney_portal').setLevel(level)


def _register_error_handlers(app):
    @app.errorhandler(PortalError)
    def _handle_portal_error(error):
        if error.status_code >= 500:
            app.logger.error('Request failed: %s', error.message)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(Exception)
    def _handle_unexpected_error(error):
        # Let werkzeug HTTP errors (404 routing, 405, ...) keep their own status.
        status = getattr(error, 'code', None)
        if isinstance(status, int) and status < 500:
            return jsonify({'error': getattr(error, 'description', str(error))}), status

        db.session.rollback()
        app.logger.exception('Unhandled error on %s %s', request.method, request.path)
        payload = {'error': 'Internal server error'}
        if app.config.get('EXPOSE_ERROR_DETAILS'):
            payload['details'] = str(error)
        return jsonify(payload), 500


def create_app(config_name='development'):
    app = Flask(__name__)
    app.config.from_object(config[config_name])
    _configure_logging(app)

    allowed_origins = _parse_allowed_origins(app.config.get('CORS_ALLOWED_ORIGINS', '*'))
    if str(config_name).strip().lower() == 'production':
        secret_key = str(app.config.get('SECRET_KEY') or '').strip()
        if not secret_key or secret_key == 'dev-secret-key-change-in-prod':
            raise RuntimeError('SECRET_KEY must be set to a non-default value in production')
        if allowed_origins == '*':
            raise RuntimeError('CORS_ALLOWED_ORIGINS must be explicitly set in production')

    db.init_app(app)
    CORS(app, resources={r'/api/*': {'origins': allowed_origins}})

    @app.before_request
    def _enforce_origin_for_mutating_api_requests():
        if request.method in {'GET', 'HEAD', 'OPTIONS'}:
            return None
        if not request.path.startswith('/api/'):
            return None

        origin = str(request.headers.get('Origin') or '').strip()
        if not origin:
            return None

        if allowed_origins != '*' and origin not in allowed_origins:
            return jsonify({'error': 'Invalid request origin'}), 403

        auth_header = str(request.headers.get('Authorization') or '').strip()
        if not auth_header:
            return None

        csrf_header = request.headers.get('X-CSRF-Token')
        from tourney_portal.auth_utils import csrf_token_matches
        if not csrf_token_matches(auth_header, csrf_header):
            return jsonify({'error': 'Invalid CSRF token'}), 403
        return None

    _register_error_handlers(app)

    from tourney_portal.routes.auth import auth_bp
    from tourney_portal.routes.registrations import registrations_bp
    from tourney_portal.routes.testing import testing_bp
    from tourney_portal.routes.es_tests import es_tests_bp
    from tourney_portal.routes.tournament_tests import tournament_tests_bp

    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(registrations_bp, url_prefix='/api/tournaments')
    app.register_blueprint(tournament_tests_bp, url_prefix='/api/tournaments')
    app.register_blueprint(testing_bp, url_prefix='/api/testing')
    app.register_blueprint(es_tests_bp, url_prefix='/api/es/tests')

    with app.app_context():
        from tourney_portal import models  # noqa: F401
        db.create_all()

    return app
