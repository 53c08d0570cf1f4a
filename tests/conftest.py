"""
Pytest configuration and fixtures for registry tests.
"""
import os
import sys
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Set testing environment before importing app
os.environ['FLASK_ENV'] = 'testing'
os.environ['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///:memory:'

from registry.app import create_app
from registry.config import TestingConfig
from registry.models import db, User, Tournament
from registry.registration_service import RegistrationService
from registry.tournament_registry import TournamentRegistry
from shared.policy import Principal, Role
from shared.pubsub import EventPublisher
from shared.state_machine import TournamentStatus


@pytest.fixture
def app():
    """Create application with a fresh in-memory database."""
    app = create_app('testing', publisher=EventPublisher())

    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def file_database(tmp_path, monkeypatch):
    """Point the testing config at an on-disk SQLite file that threads can share."""
    uri = f"sqlite:///{tmp_path / 'registry.db'}"
    monkeypatch.setattr(TestingConfig, 'SQLALCHEMY_DATABASE_URI', uri)
    return uri


@pytest.fixture
def file_app(file_database):
    """Application over the on-disk database, tables created."""
    app = create_app('testing', publisher=EventPublisher())

    with app.app_context():
        yield app
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def db_session(app):
    return db.session


def make_user(email: str, role: Role = Role.USER, password: str = 'secret123') -> User:
    user = User(email=email, name=email.split('@')[0], role=role.value)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def admin_user(app):
    return make_user('admin@example.com', Role.ADMIN)


@pytest.fixture
def captain_user(app):
    return make_user('captain@example.com')


@pytest.fixture
def players(app):
    """Four regular users available as roster members."""
    return [make_user(f'player{i}@example.com') for i in range(1, 5)]


@pytest.fixture
def outsider_user(app):
    return make_user('outsider@example.com')


@pytest.fixture
def admin(admin_user):
    return Principal(subject_id=admin_user.id, role=Role.ADMIN)


@pytest.fixture
def captain(captain_user):
    return Principal(subject_id=captain_user.id, role=Role.USER)


@pytest.fixture
def outsider(outsider_user):
    return Principal(subject_id=outsider_user.id, role=Role.USER)


@pytest.fixture
def sample_tournament(app):
    """An UPCOMING tournament with registration open."""
    tournament = Tournament(
        name='City Streetball Open',
        status=TournamentStatus.UPCOMING.value,
        registration_open=True,
        max_teams=8
    )
    db.session.add(tournament)
    db.session.commit()
    return tournament


@pytest.fixture
def mock_publisher(mocker):
    return EventPublisher(mocker.MagicMock())


@pytest.fixture
def service(app, mock_publisher):
    return RegistrationService(publisher=mock_publisher)


@pytest.fixture
def tournaments(app, service, mock_publisher):
    return TournamentRegistry(registrations=service, publisher=mock_publisher)


@pytest.fixture
def registration(service, captain, sample_tournament, players):
    """A PENDING registration for team 'Hawks' captained by `captain`."""
    return service.register(
        captain,
        sample_tournament.id,
        'Hawks',
        [captain.subject_id, players[0].id, players[1].id]
    )


@pytest.fixture
def auth_header(app):
    """Build a bearer Authorization header for a principal."""
    def build(principal: Principal) -> dict:
        token, _ = app.tokens.issue(principal.subject_id, principal.role)
        return {'Authorization': f'Bearer {token}'}
    return build
