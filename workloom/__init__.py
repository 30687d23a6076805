"""
Flask application factory.

Creates and configures the Flask app, registers all blueprints.
"""
import logging

import click
from flask import Flask, g, jsonify, request

from workloom.errors import WorkloomError

logger = logging.getLogger('workloom')

OPEN_PATHS = {'/health'}


def create_app(config=None):
    """
    Create and configure the Flask application.

    `config` overrides app.config; tests use it to inject SESSION_FACTORY,
    REDIS_CLIENT, VAULT, ENQUEUE, CONNECTOR_FACTORY and LIMITER.
    """
    from workloom.logging_config import configure_logging
    from workloom.routes import close_db_session

    app = Flask(__name__)
    app.config.update(config or {})

    configure_logging(app)

    # ── Caller identity ─────────────────────────────────────────────────
    # Token issuance lives in front of this service; it forwards the user id.
    @app.before_request
    def require_user():
        if request.path in OPEN_PATHS:
            return None
        uid = (request.headers.get('X-User-Id') or '').strip()
        if not uid:
            return jsonify({'error': 'Missing X-User-Id header'}), 401
        g.user_id = uid
        return None

    app.teardown_appcontext(close_db_session)

    # ── Errors ──────────────────────────────────────────────────────────
    @app.errorhandler(WorkloomError)
    def handle_workloom_error(e):
        if e.status_code >= 500:
            logger.warning("%s %s → %s: %s", request.method, request.path, e.status_code, e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(404)
    def handle_not_found(e):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(e):
        return jsonify({'error': 'Method not allowed'}), 405

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        logger.error("Unhandled error on %s %s: %s", request.method, request.path, e, exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500

    # Register blueprints
    from workloom.routes.health import bp as health_bp
    from workloom.routes.accounts import bp as accounts_bp
    from workloom.routes.linkedin import bp as linkedin_bp
    from workloom.routes.crm import bp as crm_bp
    from workloom.routes.mappings import bp as mappings_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(accounts_bp)
    app.register_blueprint(linkedin_bp)
    app.register_blueprint(crm_bp)
    app.register_blueprint(mappings_bp)

    # ── CLI ─────────────────────────────────────────────────────────────
    @app.cli.command('run-due-mappings')
    @click.option('--inline', is_flag=True, help='Run the sweep in this process instead of enqueuing it.')
    def run_due_mappings_command(inline):
        """Start every mapping whose next run is due (cron entry point)."""
        from workloom.tasks import run_due_mappings
        if inline:
            click.echo(f"Started {run_due_mappings()} mapping run(s)")
            return
        from workloom.extensions import get_queue
        job = get_queue().enqueue(run_due_mappings)
        click.echo(f"Enqueued due-mapping sweep {job.id}")

    # Import models so Base.metadata knows about them (required for SQLAlchemy).
    # Schema is managed by Alembic; no create_all() call.
    import workloom.models  # noqa: F401

    return app
