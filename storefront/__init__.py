from flask import Flask
from flask_migrate import Migrate
from flask_login import LoginManager
from storefront.extensions import db
from storefront.config import Config
from storefront.errors import register_error_handlers
from storefront.middleware import setup_auth_middleware
from storefront.services.audit_service import setup_major_events_log
import logging

logger = logging.getLogger(__name__)

migrate = Migrate()
login_manager = LoginManager()


def _configure_logging(app):
    handlers = [logging.StreamHandler()]
    if app.config.get('LOG_FILE'):
        handlers.append(logging.FileHandler(app.config['LOG_FILE']))
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )
    if app.config.get('MAJOR_EVENTS_LOG'):
        setup_major_events_log(app.config['MAJOR_EVENTS_LOG'])


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    _configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    # Setup user loader
    from storefront.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    # Register blueprints
    from storefront.blueprints import (
        accounting,
        admin,
        admin_issues,
        auth,
        cart,
        issues,
        orders,
    )

    # Blueprints declare absolute /api/... routes.
    app.register_blueprint(auth.bp)
    app.register_blueprint(cart.bp)
    app.register_blueprint(orders.bp)
    app.register_blueprint(issues.bp)
    app.register_blueprint(admin.bp)
    app.register_blueprint(admin_issues.bp)
    app.register_blueprint(accounting.bp)

    register_error_handlers(app)

    # Setup authentication middleware (API-wide login protection)
    setup_auth_middleware(app)

    from storefront.cli import issues_cli
    app.cli.add_command(issues_cli)

    # Note: Database tables are managed via Flask-Migrate
    # Use 'flask db upgrade' to create/update tables

    logger.info("Flask application initialized")
    return app
