"""
LegacyVault Application

Backend for recording last wishes, cataloguing assets, designating
recipients and allocating asset shares before a will is finalized.

Enhanced with:
- Allocation consistency engine (100%-or-empty per asset)
- Will lifecycle management
- Recipient email notification
- Rate limiting
- Security headers
- Audit logging
"""

import os
from datetime import datetime
from flask import Flask, request, g
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from sqlalchemy.engine import Engine

# Initialize extensions
db = SQLAlchemy()


@event.listens_for(Engine, 'connect')
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    """Enforce ON DELETE CASCADE on SQLite connections."""
    if dbapi_connection.__class__.__module__.startswith('sqlite3'):
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()


def _engine_options(database_uri: str, timeout: float) -> dict:
    """Build SQLAlchemy engine options carrying the store timeout."""
    if database_uri.startswith('sqlite'):
        return {'connect_args': {'timeout': timeout}}
    return {'pool_timeout': timeout, 'pool_pre_ping': True}


def create_app(test_config=None):
    """Application factory pattern."""
    app = Flask(__name__, instance_relative_config=True)

    # Default configuration
    app.config.from_mapping(
        SECRET_KEY=os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production'),
        SQLALCHEMY_DATABASE_URI=os.environ.get('DATABASE_URL', 'sqlite:///legacyvault.db'),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        STORE_TIMEOUT_SECONDS=float(os.environ.get('STORE_TIMEOUT_SECONDS', 10)),

        # CSRF settings
        WTF_CSRF_ENABLED=True,
        WTF_CSRF_TIME_LIMIT=3600,  # 1 hour
        WTF_CSRF_SSL_STRICT=False,  # Disabled for development

        # Rate limiting settings
        RATELIMIT_STORAGE_URI=os.environ.get('REDIS_URL', 'memory://'),
        RATELIMIT_STRATEGY='fixed-window',
        RATELIMIT_DEFAULT='100 per minute',
        RATELIMIT_HEADERS_ENABLED=True,

        # Email settings
        SMTP_HOST=os.environ.get('SMTP_HOST', ''),
        SMTP_PORT=int(os.environ.get('SMTP_PORT', 587)),
        SMTP_USERNAME=os.environ.get('SMTP_USERNAME', ''),
        SMTP_PASSWORD=os.environ.get('SMTP_PASSWORD', ''),
        SMTP_USE_TLS=os.environ.get('SMTP_USE_TLS', 'true').lower() == 'true',
        SMTP_TIMEOUT_SECONDS=float(os.environ.get('SMTP_TIMEOUT_SECONDS', 10)),
        EMAIL_FROM_ADDRESS=os.environ.get('EMAIL_FROM_ADDRESS', 'notifications@legacyvault.local'),
        EMAIL_FROM_NAME=os.environ.get('EMAIL_FROM_NAME', 'LegacyVault'),
    )

    if test_config is None:
        # Load instance config if it exists
        app.config.from_pyfile('config.py', silent=True)
    else:
        # Load test config
        app.config.from_mapping(test_config)

    app.config.setdefault(
        'SQLALCHEMY_ENGINE_OPTIONS',
        _engine_options(app.config['SQLALCHEMY_DATABASE_URI'], app.config['STORE_TIMEOUT_SECONDS'])
    )

    # Ensure instance folder exists
    try:
        os.makedirs(app.instance_path)
    except OSError:
        pass

    # Initialize extensions with app
    db.init_app(app)

    # Import and initialize security (after db init to avoid circular imports)
    from legacyvault.security import add_security_headers, init_security
    init_security(app)

    # Register blueprints
    from legacyvault.routes import main_bp, api_bp
    app.register_blueprint(main_bp)
    app.register_blueprint(api_bp)

    # Add security headers to all responses
    @app.after_request
    def after_request(response):
        """Add security headers to all responses."""
        return add_security_headers(response)

    # Request logging
    @app.before_request
    def before_request():
        """Log request start."""
        g.request_start_time = datetime.utcnow()

    @app.after_request
    def log_request(response):
        """Log request completion."""
        if hasattr(g, 'request_start_time'):
            duration = (datetime.utcnow() - g.request_start_time).total_seconds()
            app.logger.info(
                f'{request.method} {request.path} - {response.status_code} - {duration:.3f}s'
            )
        return response

    # Create database tables
    with app.app_context():
        from legacyvault import models  # noqa: F401
        db.create_all()

    # Error handlers
    @app.errorhandler(500)
    def internal_error(error):
        """Handle internal errors."""
        db.session.rollback()
        app.logger.error(f'Internal error: {str(error)}')
        return {'ok': False, 'error': 'Internal server error'}, 500

    return app
