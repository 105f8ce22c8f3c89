"""Bearer-token identity shared by the HTTP routes and socket rooms."""
from datetime import datetime, timedelta, timezone
from functools import wraps

import jwt
from flask import current_app, request
from grudge.app import db
from grudge.errors import Forbidden, Unauthorized
from grudge.models import User

_ALGORITHM = 'HS256'
_REQUIRED_CLAIMS = ['exp', 'user_id']


def generate_token(user_id):
    hours = current_app.config.get('JWT_EXPIRATION_HOURS', 24)
    claims = {
        'user_id': user_id,
        'exp': datetime.now(timezone.utc) + timedelta(hours=hours),
    }
    return jwt.encode(claims, current_app.config['SECRET_KEY'], algorithm=_ALGORITHM)


def _bearer_value(raw_token):
    token = str(raw_token or '').strip()
    scheme, _, credentials = token.partition(' ')
    if credentials and scheme.lower() == 'bearer':
        return credentials.strip()
    return token


def resolve_user(raw_token):
    """Return the user a bearer token was issued to, or raise ``Unauthorized``."""
    token = _bearer_value(raw_token)
    if not token:
        raise Unauthorized('Authentication required')
    try:
        claims = jwt.decode(
            token, current_app.config['SECRET_KEY'], algorithms=[_ALGORITHM],
            options={'require': _REQUIRED_CLAIMS},
        )
    except jwt.ExpiredSignatureError:
        raise Unauthorized('Token expired')
    except jwt.InvalidTokenError:
        raise Unauthorized('Invalid token')

    user = db.session.get(User, claims['user_id'])
    if not user:
        raise Unauthorized('User not found')
    return user


def get_user_from_token(token):
    try:
        return resolve_user(token)
    except Unauthorized:
        return None


def configured_admin_emails():
    raw_value = current_app.config.get('ADMIN_EMAILS', '')
    return {
        item.strip().lower()
        for item in str(raw_value).split(',')
        if item and item.strip()
    }


def login_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        request.current_user = resolve_user(request.headers.get('Authorization'))
        return f(*args, **kwargs)
    return decorated


def admin_required(f):
    """Site admins only; team admin rights are checked by the services."""
    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if not getattr(request.current_user, 'is_admin', False):
            raise Forbidden('Admin access required')
        return f(*args, **kwargs)
    return decorated
