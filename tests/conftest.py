"""
Pytest configuration and fixtures for CoachChat tests
"""
import pytest
from flask import g
from coachchat import create_app, db, socketio
from coachchat.models.user import User, ROLE_CLIENT, ROLE_TRAINER
from coachchat.services.presence import presence_registry
from coachchat.services.socketio_manager import chat_gateway
from coachchat.utils.tokens import create_access_token


@pytest.fixture(scope='session')
def app():
    """Create and configure a test application instance"""
    app = create_app('testing')

    @app.teardown_request
    def forget_request_user(exc):
        # The session-wide app context outlives requests; drop Flask-Login's cached user
        g.pop('_login_user', None)

    # Establish an application context
    ctx = app.app_context()
    ctx.push()

    yield app

    ctx.pop()


@pytest.fixture(scope='session')
def _db(app):
    """Create test database"""
    db.create_all()
    yield db
    db.session.remove()


@pytest.fixture(scope='function', autouse=True)
def cleanup_db(_db):
    """Clean up database and live sessions after each test"""
    yield

    # Rollback any open transactions
    _db.session.remove()

    # DELETE works on both SQLite and PostgreSQL test databases
    for table in reversed(_db.metadata.sorted_tables):
        _db.session.execute(table.delete())
    _db.session.commit()

    presence_registry.clear()
    chat_gateway.connections.clear()


@pytest.fixture(scope='function')
def db_session(_db):
    """Provide the database session for tests"""
    return _db.session


def _make_user(db_session, email, first_name, last_name, role, trainer=None, is_active=True):
    user = User(
        email=email,
        first_name=first_name,
        last_name=last_name,
        role=role,
        trainer_id=trainer.id if trainer else None,
        is_active=is_active
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def trainer(db_session):
    """Create a trainer"""
    return _make_user(db_session, 'coach@example.com', 'Casey', 'Coach', ROLE_TRAINER)


@pytest.fixture
def client_user(db_session, trainer):
    """Create a client assigned to the trainer"""
    return _make_user(db_session, 'alex@example.com', 'Alex', 'Client', ROLE_CLIENT, trainer=trainer)


@pytest.fixture
def second_client(db_session, trainer):
    """Create a second client assigned to the same trainer"""
    return _make_user(db_session, 'blair@example.com', 'Blair', 'Client', ROLE_CLIENT, trainer=trainer)


@pytest.fixture
def stranger(db_session):
    """Create a client with no trainer"""
    return _make_user(db_session, 'sam@example.com', 'Sam', 'Stranger', ROLE_CLIENT)


@pytest.fixture
def other_trainer(db_session):
    """Create a second trainer with no clients"""
    return _make_user(db_session, 'drew@example.com', 'Drew', 'Trainer', ROLE_TRAINER)


@pytest.fixture
def token_for(app):
    """Issue bearer tokens for test users"""
    def _token_for(user, **kwargs):
        return create_access_token(user, **kwargs)
    return _token_for


@pytest.fixture
def auth_headers(token_for):
    """Authorization headers for a user"""
    def _auth_headers(user):
        return {'Authorization': f'Bearer {token_for(user)}'}
    return _auth_headers


@pytest.fixture
def client(app):
    """Create a REST test client"""
    return app.test_client()


@pytest.fixture
def socket_client(app, token_for):
    """
    Factory for authenticated Socket.IO test clients.
    Every client created here is disconnected at teardown.
    """
    clients = []

    def _connect(user=None, token=None, auth=None, headers=None):
        if auth is None and headers is None:
            auth = {'token': token if token is not None else token_for(user)}
        sio_client = socketio.test_client(app, auth=auth, headers=headers)
        clients.append(sio_client)
        return sio_client

    yield _connect

    for sio_client in clients:
        if sio_client.is_connected():
            sio_client.disconnect()


def events_named(received, name):
    """Payloads of every received event with the given name"""
    return [event['args'][0] for event in received if event['name'] == name]
