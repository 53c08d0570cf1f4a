import os
import logging

import redis
from flask import Flask, jsonify
from flask_migrate import Migrate
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from .config import config
from .models import db
from .auth import clear_request_identity, login_manager
from .accounts import AccountService
from .registration_service import RegistrationService
from .tournament_registry import TournamentRegistry
from shared.errors import RegistrationError
from shared.identity_token import IdentityToken, TokenSettings
from shared.pubsub import EventPublisher
from shared.state_machine import RegistrationRules

logger = logging.getLogger(__name__)

migrate = Migrate()


def create_app(config_name: str = None, publisher: EventPublisher = None, create_tables: bool = None) -> Flask:
    """Application factory for the registry service.

    ``create_tables`` overrides AUTO_CREATE_TABLES; deploys pass False and
    let the migrations build the schema.
    """
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config[config_name])

    if not app.config.get('TESTING'):
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db, directory=app.config['MIGRATIONS_DIR'])
    login_manager.init_app(app)
    app.before_request(clear_request_identity)

    # Immutable settings, built once
    token_settings = TokenSettings.from_config(app.config)
    rules = RegistrationRules.from_config(app.config)

    if publisher is None:
        publisher = EventPublisher.from_url(app.config['REDIS_URL']) \
            if app.config.get('PUBLISH_EVENTS') else EventPublisher()

    # Store services on app for access in routes
    app.tokens = IdentityToken(token_settings)
    app.publisher = publisher
    app.registrations = RegistrationService(rules=rules, publisher=publisher)
    app.tournaments = TournamentRegistry(registrations=app.registrations, publisher=publisher)
    app.accounts = AccountService(app.tokens)

    if create_tables is None:
        create_tables = app.config.get('AUTO_CREATE_TABLES', True)

    with app.app_context():
        if db.engine.dialect.name == 'sqlite':
            serialize_sqlite_writes(db.engine)
        if create_tables:
            db.create_all()

    register_error_handlers(app)
    register_routes(app)

    from .routes import auth, registrations, tournaments
    app.register_blueprint(auth.bp)
    app.register_blueprint(registrations.bp)
    app.register_blueprint(tournaments.bp)

    return app


def serialize_sqlite_writes(engine):
    """
    Open every SQLite transaction with BEGIN IMMEDIATE.

    pysqlite defers BEGIN until the first write, so two transactions can
    both read a row and then deadlock upgrading their locks. Taking the
    write lock up front makes concurrent writers queue on the busy timeout
    instead, and the compare-and-set updates see committed state.
    """

    @event.listens_for(engine, 'connect')
    def disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, 'begin')
    def begin_immediate(conn):
        conn.exec_driver_sql('BEGIN IMMEDIATE')


def register_error_handlers(app: Flask):

    @app.errorhandler(RegistrationError)
    def handle_registration_error(error: RegistrationError):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        return jsonify({
            'error': error.name.lower().replace(' ', '_'),
            'message': error.description
        }), error.code


def register_routes(app: Flask):

    @app.route('/health')
    def health_check():
        """Health check endpoint."""
        try:
            db.session.execute(db.text('SELECT 1'))
            db_ok = True
        except SQLAlchemyError as e:
            logger.error(f"Health check database failure: {e}")
            db.session.rollback()
            db_ok = False

        redis_status = 'disabled'
        if app.publisher.enabled:
            try:
                app.publisher.redis.ping()
                redis_status = 'connected'
            except redis.RedisError:
                redis_status = 'disconnected'

        status = 'healthy' if db_ok else 'unhealthy'
        code = 200 if db_ok else 503

        return jsonify({
            'status': status,
            'database': 'connected' if db_ok else 'disconnected',
            'redis': redis_status
        }), code
