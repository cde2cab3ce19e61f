# app.py
"""
Flask Application Factory for the Enorehab form backend

This application factory wires:
- Environment-based configuration (config.settings)
- Daily per-severity log files and global exception/warning hooks
- Flask-SQLAlchemy with slow query monitoring
- CSRF protection and security headers
- The public form endpoints, the admin JSON API and health checks
- CLI commands for schema creation and log cleanup

Run with gunicorn: gunicorn "app:create_app()"
"""

import time
from datetime import datetime
from typing import Any, Mapping, Optional

import click
from flask import Flask, g, jsonify, request
from flask_wtf.csrf import CSRFProtect, CSRFError
from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from config.settings import RequestContext, get_config
from core.database_models import db
from core.logging_setup import (SiteLogger, cleanup_logs, get_site_logger, install_global_hooks,
                                log_exception, setup_logging)
from middleware.security import security_headers
from routes.admin import admin_bp
from routes.forms import forms_bp
from services.repository import SubmissionRepository

csrf = CSRFProtect()


def configure_database(app: Flask, logger: SiteLogger) -> None:
    """
    Bind Flask-SQLAlchemy and log slow queries

    Schema creation is an explicit step (``flask init-db``), run here only
    when AUTO_CREATE_SCHEMA is set.
    """
    db.init_app(app)

    with app.app_context():
        threshold = app.config.get('SLOW_QUERY_THRESHOLD', 1.0)

        @event.listens_for(db.engine, "before_cursor_execute")
        def receive_before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
            context._query_start_time = time.perf_counter()

        @event.listens_for(db.engine, "after_cursor_execute")
        def receive_after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
            total = time.perf_counter() - context._query_start_time
            if total > threshold:
                logger.warning(f"Slow query ({total:.2f}s): {statement[:100]}...")

        if app.config.get('AUTO_CREATE_SCHEMA'):
            result = SubmissionRepository(logger=logger).ensure_schema()
            logger.info(result.message)

    uri = app.config['SQLALCHEMY_DATABASE_URI']
    logger.info(f"Database configured: {uri.split('@')[-1] if '@' in uri else uri}")


def configure_security(app: Flask) -> None:
    csrf.init_app(app)
    # Forms check their token themselves, after the honeypot
    csrf.exempt(forms_bp)
    # Token-authenticated, no session cookie involved
    csrf.exempt(admin_bp)


def register_blueprints(app: Flask) -> None:
    app.register_blueprint(forms_bp)
    app.register_blueprint(admin_bp, url_prefix='/admin')


def configure_error_handlers(app: Flask, logger: SiteLogger) -> None:
    """
    JSON error bodies for everything that is not a form redirect
    """
    @app.errorhandler(CSRFError)
    def csrf_error(error):
        logger.warning(f"CSRF validation failed on {request.path}: {error.description}")
        return jsonify({
            'error': 'Bad Request',
            'message': 'Security token missing or invalid',
            'status_code': 400
        }), 400

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({
            'error': 'Not Found',
            'message': 'The requested resource was not found',
            'status_code': 404
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({
            'error': 'Method Not Allowed',
            'message': 'This method is not allowed for the requested URL',
            'status_code': 405
        }), 405

    @app.errorhandler(413)
    def payload_too_large(error):
        logger.warning(f"Oversized request from {request.remote_addr} on {request.path}")
        return jsonify({
            'error': 'Payload Too Large',
            'message': 'The submitted data is too large',
            'status_code': 413
        }), 413

    @app.errorhandler(Exception)
    def handle_exception(e):
        """Handle unexpected exceptions"""
        if isinstance(e, HTTPException):
            return e

        log_exception(logger, e, 'Unhandled exception')
        return jsonify({
            'error': 'Internal Server Error',
            'message': 'An unexpected error occurred',
            'status_code': 500
        }), 500


def configure_health_checks(app: Flask) -> None:
    @app.route('/health')
    def health_check():
        """Health check with database connectivity"""
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'version': app.config.get('VERSION', '1.0.0'),
            'components': {}
        }

        try:
            db.session.execute(text('SELECT 1'))
            health_status['components']['database'] = 'healthy'
        except SQLAlchemyError:
            db.session.rollback()
            health_status['components']['database'] = 'unhealthy'
            health_status['status'] = 'unhealthy'

        status_code = 200 if health_status['status'] == 'healthy' else 503
        return jsonify(health_status), status_code


def configure_request_middleware(app: Flask, logger: SiteLogger) -> None:
    @app.before_request
    def before_request():
        g.start_time = time.perf_counter()

    @app.after_request
    def after_request(response):
        response = security_headers(response)

        if hasattr(g, 'start_time'):
            duration = (time.perf_counter() - g.start_time) * 1000
            if duration > app.config.get('SLOW_REQUEST_THRESHOLD', 5000):
                logger.warning(f"Slow request ({duration:.0f}ms): {request.method} {request.path}")

        return response


def register_cli(app: Flask) -> None:
    # No request behind a command: client recorded as CLI
    logger = get_site_logger(RequestContext.non_interactive(app.config))

    @app.cli.command('init-db')
    def init_db():
        """Create the submission tables if they do not exist."""
        result = SubmissionRepository(logger=logger).ensure_schema()
        click.echo(result.message)
        if not result.success:
            raise click.ClickException('Schema creation failed, see the error log')

    @app.cli.command('cleanup-logs')
    @click.option('--days', default=None, type=int, help='Days of logs to keep.')
    def cleanup_logs_command(days):
        """Delete log files older than the retention period."""
        days = days if days is not None else app.config.get('LOG_RETENTION_DAYS', 30)
        deleted = cleanup_logs(app.config['LOG_DIR'], days)
        logger.info(f"Log cleanup: {deleted} file(s) removed", context={'days_to_keep': days})
        click.echo(f"{deleted} log file(s) deleted")


def create_app(config_name: Optional[str] = None, overrides: Optional[Mapping[str, Any]] = None) -> Flask:
    """
    Flask application factory

    Args:
        config_name: Configuration environment ('development', 'testing', 'production')
        overrides: Config values applied after the environment's class

    Returns:
        Configured Flask application instance
    """
    app = Flask(__name__)

    config_class = get_config(config_name)
    app.config.from_object(config_class)
    if overrides:
        app.config.update(overrides)

    # Behind nginx in production; the Host header is not taken from the proxy
    if app.config['ENVIRONMENT'] == 'production':
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1)

    logger = setup_logging(app)
    if not app.testing:
        install_global_hooks(logger)
    logger.info(f"Starting {app.config['SITE_NAME']} application in {app.config['ENVIRONMENT']} mode")

    configure_database(app, logger)
    configure_security(app)
    register_blueprints(app)
    configure_error_handlers(app, logger)
    configure_health_checks(app)
    configure_request_middleware(app, logger)
    register_cli(app)

    logger.debug("Flask application factory completed")
    return app


if __name__ == '__main__':
    create_app('development').run(host='127.0.0.1', port=5000, debug=True)
