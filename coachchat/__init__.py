import logging
import os
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_socketio import SocketIO
from config import config
import sentry_sdk
from sentry_sdk.integrations.flask import FlaskIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

# Initialize extensions
db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
socketio = SocketIO()

logger = logging.getLogger(__name__)


def init_sentry(app):
    """Initialize Sentry error tracking and performance monitoring"""
    sentry_dsn = app.config.get('SENTRY_DSN')

    if sentry_dsn:
        sentry_sdk.init(
            dsn=sentry_dsn,
            integrations=[
                FlaskIntegration(),
                SqlalchemyIntegration(),
            ],
            # Performance monitoring - sample 10% of transactions
            traces_sample_rate=0.1,

            # Release tracking for better debugging
            release=os.environ.get('HEROKU_SLUG_COMMIT', 'unknown'),

            # Environment tracking
            environment=app.config.get('FLASK_ENV', 'development'),

            # Don't send personally identifiable information
            send_default_pii=False,
            sample_rate=1.0,
        )
        logger.info("Sentry initialized")
    else:
        logger.info("Sentry DSN not configured - error tracking disabled")


def init_logging(app):
    """Configure root logging from LOG_LEVEL"""
    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Socket.IO and Engine.IO are chatty at INFO
    logging.getLogger('socketio').setLevel(logging.WARNING)
    logging.getLogger('engineio').setLevel(logging.WARNING)


def create_app(config_name='default'):
    """Application factory pattern"""
    app = Flask(__name__)
    app.config.from_object(config[config_name])

    init_logging(app)

    # Initialize Sentry error tracking (do this early to catch initialization errors)
    init_sentry(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    socketio.init_app(
        app,
        message_queue=app.config['SOCKETIO_MESSAGE_QUEUE'],
        async_mode=app.config['SOCKETIO_ASYNC_MODE'],
        cors_allowed_origins=app.config['SOCKETIO_CORS_ORIGINS'],
    )

    # Initialize Socket.IO event handlers
    from coachchat.services.socketio_manager import init_socketio_events
    init_socketio_events(socketio)

    # Import all models for Flask-Migrate
    with app.app_context():
        from coachchat.models import user, chat_message  # noqa: F401

    # Register blueprints
    from coachchat.blueprints.chat import chat_bp
    app.register_blueprint(chat_bp, url_prefix='/api/chat')

    # Error handlers
    from coachchat.errors import ChatError

    @app.errorhandler(ChatError)
    def chat_error(error):
        """Render domain errors as JSON with their status code"""
        return jsonify({'success': False, **error.to_dict()}), error.status_code

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'success': False, 'message': 'Resource not found', 'code': 'NOT_FOUND'}), 404

    @app.errorhandler(405)
    def method_not_allowed_error(error):
        return jsonify({'success': False, 'message': 'Method not allowed', 'code': 'METHOD_NOT_ALLOWED'}), 405

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()  # Rollback any failed database transactions
        return jsonify({'success': False, 'message': 'Internal server error', 'code': 'INTERNAL_ERROR'}), 500

    # Health check endpoint for monitoring and load balancers
    @app.route('/health')
    def health_check():
        """Health check endpoint - returns 200 if app is healthy"""
        from sqlalchemy import text

        health_status = {
            'status': 'healthy',
            'version': os.environ.get('HEROKU_RELEASE_VERSION', 'unknown'),
            'environment': app.config.get('FLASK_ENV', 'development')
        }

        try:
            db.session.execute(text('SELECT 1'))
            health_status['database'] = 'connected'
        except Exception as e:
            logger.exception("Health check: database unreachable")
            health_status['status'] = 'unhealthy'
            health_status['database'] = f'error: {str(e)}'
            return jsonify(health_status), 500

        message_queue = app.config.get('SOCKETIO_MESSAGE_QUEUE')
        if message_queue:
            from redis import Redis
            try:
                Redis.from_url(message_queue).ping()
                health_status['redis'] = 'connected'
            except Exception as e:
                logger.exception("Health check: message queue unreachable")
                health_status['status'] = 'unhealthy'
                health_status['redis'] = f'error: {str(e)}'
                return jsonify(health_status), 500

        return jsonify(health_status), 200

    return app
