"""Request parsing shared by the blueprints."""
from flask import request
from grudge.errors import Invalid


def json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise Invalid('Invalid JSON payload')
    return data


def coerce_bool(raw_value):
    if isinstance(raw_value, bool):
        return raw_value
    if isinstance(raw_value, (int, float)):
        return raw_value == 1
    if raw_value is None:
        return False
    return str(raw_value).strip().lower() in {'1', 'true', 'yes', 'on'}


_TRUE_VALUES = {'1', 'true'}
_FALSE_VALUES = {'0', 'false'}


def require_bool(data, key):
    """Read a flag that must be given explicitly; anything unclear is ``Invalid``."""
    raw_value = data.get(key)
    if isinstance(raw_value, bool):
        return raw_value
    if isinstance(raw_value, int) and raw_value in (0, 1):
        return raw_value == 1
    if isinstance(raw_value, str):
        text = raw_value.strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
    raise Invalid(f'{key} must be true or false')


def parse_id(raw_value, label, required=True):
    if raw_value in (None, ''):
        if required:
            raise Invalid(f'{label} is required')
        return None
    if isinstance(raw_value, bool):
        raise Invalid(f'{label} must be a numeric ID')
    try:
        value = int(raw_value)
    except (TypeError, ValueError):
        raise Invalid(f'{label} must be a numeric ID')
    if value <= 0:
        raise Invalid(f'{label} must be a numeric ID')
    return value


def current_user_id():
    return request.current_user.id
