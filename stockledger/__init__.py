"""Flask application factory."""
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
from stockledger.database import init_db, get_session
import logging
import os


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    # Initialize Sentry for error tracking in production
    if os.getenv('SENTRY_DSN') and (app.config.get('ENV') == 'production' or os.getenv('FLASK_ENV') == 'production'):
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,  # 10% of transactions for performance monitoring
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Setup Prometheus metrics instrumentation
    from stockledger.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: Enable ProxyFix for HTTPS behind Nginx reverse proxy
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=1,      # Trust X-Forwarded-For with 1 proxy
            x_proto=1,    # Trust X-Forwarded-Proto
            x_host=1,     # Trust X-Forwarded-Host
            x_port=1,     # Trust X-Forwarded-Port
            x_prefix=0
        )

    # Initialize database
    init_db(app)

    # Every ledger transaction goes through this factory
    from stockledger.repositories import sqlalchemy_uow_factory
    app.extensions['stock_uow_factory'] = sqlalchemy_uow_factory(
        get_session(),
        lock_timeout_ms=app.config.get('STOCK_LOCK_TIMEOUT_MS')
    )

    # Error Handlers
    from stockledger.exceptions import StockLedgerError

    @app.errorhandler(StockLedgerError)
    def handle_stock_ledger_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"StockLedgerError [{error.status_code}]: {error.message}")
        else:
            app.logger.warning(f"StockLedgerError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'status': 'error', 'message': 'Not Found'}), 404

    @app.errorhandler(HTTPException)
    def http_error(error):
        return jsonify({'status': 'error', 'message': error.name}), error.code

    @app.errorhandler(500)
    @app.errorhandler(Exception)
    def internal_error(error):
        import traceback
        app.logger.error(f"Unhandled Exception: {error}")
        app.logger.error(f"Traceback: {traceback.format_exc()}")
        return jsonify({'status': 'error', 'code': 'INTERNAL_ERROR', 'message': 'Internal Server Error'}), 500

    @app.route('/health')
    def health():
        """Liveness check."""
        return jsonify({'status': 'ok'})

    # Register blueprints
    from stockledger.blueprints.stock import stock_bp
    from stockledger.blueprints.metrics import metrics_bp

    app.register_blueprint(stock_bp)
    app.register_blueprint(metrics_bp)

    # Register CLI commands
    from stockledger.cli_commands import init_cli_commands
    init_cli_commands(app)

    app.logger.info(f"Stock ledger ready (env={app.config.get('ENV')})")

    return app
