import logging

from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_socketio import SocketIO
from flask_cors import CORS
from grudge.config import config

db = SQLAlchemy()
socketio = SocketIO()

logger = logging.getLogger(__name__)


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
    level_name = str(app.config.get('LOG_LEVEL') or 'INFO').upper()
    level = getattr(logging, level_name, logging.INFO)
    package_logger = logging.getLogger('grudge')
    package_logger.setLevel(level)
    if not logging.getLogger().handlers and not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s %(name)s: %(message)s'
        ))
        package_logger.addHandler(handler)


def _register_error_handlers(app):
    from grudge.errors import ServiceError

    @app.errorhandler(ServiceError)
    def _handle_service_error(exc):
        db.session.rollback()
        return jsonify(exc.to_dict()), exc.status_code


def _register_cli(app):
    @app.cli.command('reconcile-consistency')
    def reconcile_consistency_command():
        """Grant admin rights to every leadership role that lacks them."""
        from grudge.services.authority import reconcile_consistency
        result = reconcile_consistency()
        print(f"Fixed {result['fixed']} role inconsistencies")

    @app.cli.command('retire-notifications')
    def retire_notifications_command():
        """Mark obsolete notifications read for every user."""
        from grudge.services.notifications import retire_obsolete
        retired = retire_obsolete()
        print(f'Retired {retired} obsolete notifications')


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
    socketio.init_app(
        app,
        cors_allowed_origins=allowed_origins,
        async_mode=app.config.get('SOCKETIO_ASYNC_MODE', 'threading'),
    )
    CORS(app, resources={r'/api/*': {'origins': allowed_origins}})

    from grudge.routes.auth import auth_bp
    from grudge.routes.teams import teams_bp
    from grudge.routes.leagues import leagues_bp
    from grudge.routes.matches import matches_bp
    from grudge.routes.assignments import assignments_bp
    from grudge.routes.notifications import notifications_bp
    from grudge.routes.admin import admin_bp
    from grudge.routes import realtime  # noqa: F401

    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(teams_bp, url_prefix='/api/teams')
    app.register_blueprint(leagues_bp, url_prefix='/api/leagues')
    app.register_blueprint(matches_bp, url_prefix='/api/matches')
    app.register_blueprint(assignments_bp, url_prefix='/api/assignments')
    app.register_blueprint(notifications_bp, url_prefix='/api/notifications')
    app.register_blueprint(admin_bp, url_prefix='/api/admin')

    _register_error_handlers(app)
    _register_cli(app)

    with app.app_context():
        from grudge import models  # noqa: F401
        db.create_all()

    logger.debug('Application created with %s config', config_name)
    return app
