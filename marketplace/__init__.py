"""Flask application factory."""
from flask import Flask, jsonify
from flask_wtf.csrf import CSRFProtect
from marketplace.database import init_db
import os


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Initialize CSRF protection
    csrf = CSRFProtect(app)

    from flask_wtf.csrf import CSRFError

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        app.logger.warning(f"CSRF Error: {e.description}")
        return jsonify({'status': 'error', 'message': 'Session expired or invalid form. Reload and try again.'}), 400

    # Sentry error tracking in production
    if os.getenv('SENTRY_DSN') and (app.config.get('ENV') == 'production' or os.getenv('FLASK_ENV') == 'production'):
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Prometheus metrics instrumentation
    from marketplace.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: Enable ProxyFix for HTTPS behind a reverse proxy
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    # Initialize database
    init_db(app)

    from marketplace.middleware import load_customer, load_seller

    @app.before_request
    def before_request_handler():
        """Load customer and seller context for each request."""
        load_customer()
        load_seller()

    # Error Handlers
    from marketplace.exceptions import MarketplaceError

    @app.errorhandler(MarketplaceError)
    def handle_marketplace_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"MarketplaceError [{error.status_code}]: {error.message}")
        else:
            app.logger.info(f"MarketplaceError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'status': 'error', 'message': 'Not Found'}), 404

    from werkzeug.exceptions import HTTPException

    @app.errorhandler(HTTPException)
    def http_error(error):
        return jsonify({'status': 'error', 'message': error.name}), error.code

    @app.errorhandler(500)
    @app.errorhandler(Exception)
    def internal_error(error):
        import traceback
        app.logger.error(f"Unhandled Exception: {error}")
        app.logger.error(f"Traceback: {traceback.format_exc()}")
        from marketplace.database import get_session
        get_session().rollback()
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from marketplace.blueprints.cart import cart_bp
    from marketplace.blueprints.checkout import checkout_bp
    from marketplace.blueprints.pricing import pricing_bp
    from marketplace.blueprints.metrics import metrics_bp

    app.register_blueprint(cart_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(pricing_bp)
    app.register_blueprint(metrics_bp)

    # Register CLI commands
    from marketplace.cli_commands import init_cli_commands
    init_cli_commands(app)

    app.logger.info(
        f"Marketplace ready (checkout workers={app.config.get('CHECKOUT_MAX_WORKERS')}, "
        f"default tier={app.config.get('DEFAULT_PRICING_TIER')})"
    )

    return app
