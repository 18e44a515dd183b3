from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from config import Config
import logging

db = SQLAlchemy()
migrate = Migrate()
login = LoginManager()

def create_app(config_class=Config, clock=None):
    app = Flask(__name__)
    app.config.from_object(config_class)

    # Setup logging
    logging.basicConfig(level=app.config.get('LOG_LEVEL', 'INFO'))

    # Initialize Flask extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login.init_app(app)

    # Injected clock; tests pass a FixedClock
    from lms_scheduler.utils.clock import SystemClock
    app.clock = clock or SystemClock(app.config.get('TIMEZONE', 'UTC'))

    from lms_scheduler.services.error_service import register_error_handlers
    register_error_handlers(app)

    register_blueprints(app)

    from lms_scheduler.cli import register_commands
    register_commands(app)

    app.logger.info(f"Scheduler initialized (timezone: {app.config.get('TIMEZONE')})")
    return app

def register_blueprints(app):
    """Register all application blueprints"""
    from lms_scheduler.routes.classes import bp as classes_bp
    app.register_blueprint(classes_bp, url_prefix='/api/classes')

    from lms_scheduler.routes.sessions import bp as sessions_bp
    app.register_blueprint(sessions_bp, url_prefix='/api/sessions')

    from lms_scheduler.routes.billing import bp as billing_bp
    app.register_blueprint(billing_bp, url_prefix='/api/billing')

    from lms_scheduler.routes.health import bp as health_bp
    app.register_blueprint(health_bp)

# Actor loader for Flask-Login: the identity gateway authenticates the caller
# and forwards its user id in a header.
@login.request_loader
def load_actor_from_request(request):
    from flask import current_app
    from lms_scheduler.models.user import User

    raw_id = request.headers.get(current_app.config.get('ACTOR_HEADER', 'X-User-Id'))
    if not raw_id:
        return None
    try:
        user = db.session.get(User, int(raw_id))
    except ValueError:
        return None
    if user is None or not user.is_active:
        return None
    return user

@login.unauthorized_handler
def unauthorized():
    from lms_scheduler.services.error_service import error_service
    return error_service.handle_unauthorized_error()
