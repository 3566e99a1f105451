import os
import sys
import pytest

# Ensure the backend root (containing the `rinkside` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from rinkside import create_app, db, socketio
from rinkside.models import Ticket
from rinkside.services.game_status import GameStatus, is_game_finished, is_game_live, is_game_scheduled


GAME_ID = '2024020100'
OTHER_GAME_ID = '2024020200'


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SYNC_ENABLED = False
    NHL_API_BASE = 'https://nhl.test/v1'
    MIN_MEMBERS_TO_ACTIVATE = 2
    DEFAULT_MAX_MEMBERS = 4


def make_status(game_id=GAME_ID, game_state='FUT', fetched_at=0.0):
    return GameStatus(
        game_id=str(game_id),
        game_state=game_state,
        game_schedule_state='OK',
        start_time_utc='2030-01-01T00:00:00Z',
        detailed_state='OK',
        is_live=is_game_live(game_state),
        is_finished=is_game_finished(game_state),
        is_scheduled=is_game_scheduled(game_state),
        fetched_at=fetched_at,
    )


class FakeProvider:
    """Game id -> state code; missing ids resolve to None."""

    def __init__(self, states=None):
        self.states = dict(states or {})
        self.calls = []

    def get_status(self, game_id):
        self.calls.append(str(game_id))
        state = self.states.get(str(game_id))
        if state is None:
            return None
        return make_status(game_id, state)

    def invalidate(self, game_id=None):
        pass


class FakeChannel:
    def __init__(self):
        self.events = []

    def publish(self, challenge_id, event_type, message):
        self.events.append((challenge_id, event_type, message))

    def types(self):
        return [e[1] for e in self.events]


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import rinkside.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass


@pytest.fixture()
def provider():
    return FakeProvider({GAME_ID: 'FUT'})


@pytest.fixture()
def channel():
    return FakeChannel()


@pytest.fixture()
def store(flask_app):
    return flask_app.extensions['challenge_store']


@pytest.fixture()
def tickets(flask_app):
    """One ticket per user for GAME_ID, plus a ticket for another game."""
    rows = {}
    for user in ['owner', 'alice', 'bob', 'cara', 'dave']:
        ticket = Ticket(id=f'{user}-t', user_id=user, name=f'{user} card', game_id=GAME_ID)
        db.session.add(ticket)
        rows[user] = ticket.id
    db.session.add(Ticket(id='alice-other', user_id='alice', name='other game', game_id=OTHER_GAME_ID))
    db.session.commit()
    return rows
