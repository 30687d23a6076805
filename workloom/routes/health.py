"""
Health check — open, no X-User-Id needed.
"""
import logging

from flask import Blueprint, current_app, jsonify

logger = logging.getLogger('routes.health')

bp = Blueprint('health', __name__)


@bp.route('/health')
def health_check():
    """Health check endpoint. Reports Redis reachability without failing the check."""
    redis_ok = True
    client = current_app.config.get('REDIS_CLIENT')
    if client is None:
        from workloom.extensions import redis_client as client
    try:
        client.ping()
    except Exception as e:
        logger.warning("Redis ping failed: %s", e)
        redis_ok = False
    return jsonify({'status': 'healthy', 'redis': 'ok' if redis_ok else 'unreachable'}), 200
