"""WSGI entrypoint used by Gunicorn and the ``flask`` CLI."""
import logging
import os

from grudge.app import create_app

logger = logging.getLogger(__name__)


def _env_bool(name, default=False):
    raw = os.environ.get(name)
    if raw is None:
        return default
    return str(raw).strip().lower() in {'1', 'true', 'yes', 'on'}


config_name = os.environ.get('FLASK_ENV', 'production')
app = create_app(config_name)

if _env_bool('AUTO_RECONCILE_ROLES', False):
    with app.app_context():
        from grudge.services.authority import reconcile_consistency
        result = reconcile_consistency()
        logger.info('Startup role consistency repair fixed %d memberships', result['fixed'])
