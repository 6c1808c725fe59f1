"""Application factory of the ExpenseSync server."""
import logging
from typing import Any, Dict, Optional

from flask import Flask, jsonify
from flask_cors import CORS
from flask_jwt_extended import JWTManager

from . import auth
from . import expenses
from .config import Config
from .models import db
from ..core.models import Category
from ..status import status

HTTP_STATUS = (
    (status.ValidationException, 400),
    (status.AuthenticationException, 401),
    (status.NotFoundException, 404),
    (status.ConflictException, 409),
)


def _register_jwt_handlers(jwt: JWTManager) -> None:
    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return jsonify({'error': 'Token has expired'}), 401

    @jwt.invalid_token_loader
    def invalid_token(reason):
        logging.debug(f'Rejected token: {reason}')
        return jsonify({'error': 'Invalid token'}), 401

    @jwt.unauthorized_loader
    def missing_token(reason):
        return jsonify({'error': 'No token provided'}), 401


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(status.BaseStatusException)
    def status_error(ex: status.BaseStatusException):
        code = next((c for cls, c in HTTP_STATUS if isinstance(ex, cls)), 500)
        return jsonify({'error': ex.detail or ex.status_message}), code

    @app.errorhandler(404)
    def not_found(ex):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(ex):
        return jsonify({'error': 'Method not allowed'}), 405

    @app.errorhandler(500)
    def internal_error(ex):
        logging.error(f'Internal server error: {ex}')
        return jsonify({'error': 'Internal server error'}), 500


def create_app(overrides: Optional[Dict[str, Any]] = None) -> Flask:
    """Create and configure the server.

    Args:
        overrides: Config values applied on top of :class:`Config`, for example in tests.

    Returns:
        Flask: The application, with its tables created.
    """
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    db.init_app(app)
    _register_jwt_handlers(JWTManager(app))
    CORS(app, resources={r'/*': {'origins': app.config['CORS_ORIGINS']}})

    app.register_blueprint(auth.bp, url_prefix='/auth')
    app.register_blueprint(expenses.bp, url_prefix='/expenses')
    _register_error_handlers(app)

    @app.get('/health')
    def health():
        return jsonify({'status': 'ok'})

    @app.get('/categories')
    def categories():
        return jsonify({'success': True, 'categories': [c.value for c in Category]})

    @app.cli.command('init-db')
    def init_db():
        """Create the database tables."""
        db.create_all()
        logging.info(f'Database initialized at {app.config["SQLALCHEMY_DATABASE_URI"]}')

    with app.app_context():
        db.create_all()
        logging.debug(f'Database ready at {app.config["SQLALCHEMY_DATABASE_URI"]}')

    return app


def exec_() -> None:
    """Run the development server with the host and port from the environment."""
    app = create_app()
    app.run(host=app.config['HOST'], port=app.config['PORT'])
