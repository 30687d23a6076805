"""
Route helpers — per-request session, caller identity, and service access.
"""
from flask import current_app, g, request

from workloom.database import get_session
from workloom.errors import ValidationError


def db_session():
    if 'db_session' not in g:
        factory = current_app.config.get('SESSION_FACTORY') or get_session
        g.db_session = factory()
    return g.db_session


def close_db_session(exc=None):
    session = g.pop('db_session', None)
    if session is not None:
        if exc is not None:
            session.rollback()
        session.close()


def services():
    """Services bound to this request's DB session."""
    if 'services' not in g:
        from workloom.services import build_services
        cfg = current_app.config
        g.services = build_services(
            db_session(),
            redis_client=cfg.get('REDIS_CLIENT'),
            vault=cfg.get('VAULT'),
            enqueue=cfg.get('ENQUEUE'),
            connector_factory=cfg.get('CONNECTOR_FACTORY'),
            limiter=cfg.get('LIMITER'),
        )
    return g.services


def user_id():
    """Caller identity, set from X-User-Id by the auth hook."""
    return g.user_id


def json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def int_arg(name, default):
    raw = request.args.get(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")
