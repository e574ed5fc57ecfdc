"""Shared fixtures for the chat engine tests.

Every test gets a fresh in-process MongoDB (mongomock), an in-memory TTL
store for presence/typing, and a known JWT secret.

Usage:
    def test_example(service, users):
        conversation = service.get_or_create_conversation(users['alice'], users['bob'])
"""
import mongomock
import pytest
from bson import ObjectId

from chat_server.messaging.presence import PresenceRegistry, TypingRegistry
from chat_server.messaging.service import MessagingService
from chat_server.messaging.ttl_store import MemoryTTLStore
from chat_server.repository.conversation_repository import ConversationRepository
from chat_server.repository.message_repository import MessageRepository
from chat_server.repository.mongo_helper import MongoRepositorySingleton, ensure_indexes
from chat_server.repository.user_repository import UserRepository
from chat_server.security.authentication import AuthSecurity

TEST_SECRET = 'test-secret'


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingNotifier:
    """Stands in for the gateway: remembers every send_to_user call."""

    def __init__(self):
        self.calls = []

    def send_to_user(self, user_id, event, payload):
        self.calls.append((user_id, event, payload))

    def events_for(self, user_id):
        return [(event, payload) for uid, event, payload in self.calls if uid == user_id]


def make_token(user_id: str, **claims) -> str:
    return AuthSecurity.encode_token({'sub': user_id, **claims})


# =============================================================================
# Infrastructure
# =============================================================================


@pytest.fixture(autouse=True)
def jwt_secret():
    previous = (AuthSecurity.secret_key, AuthSecurity.algorithm, AuthSecurity.access_token_expire_minutes)
    AuthSecurity.configure(TEST_SECRET)
    yield TEST_SECRET
    AuthSecurity.configure(*previous)


@pytest.fixture
def db():
    client = mongomock.MongoClient(tz_aware=True)
    database = client['chat_test']
    ensure_indexes(database)
    yield database
    MongoRepositorySingleton.reset()


@pytest.fixture
def users(db):
    """Seed users; returns {name: user_id}."""
    docs = {
        'alice': {'first_name': 'Alice', 'last_name': 'Anders', 'email': 'alice@example.com'},
        'bob': {'first_name': 'Bob', 'last_name': 'Baker', 'email': 'bob@example.com'},
        'carol': {'first_name': 'Carol', 'last_name': 'Chen', 'email': 'carol@example.com'},
        'dave': {'first_name': 'Dave', 'last_name': 'Dunn', 'is_active': False},
        'erin': {'first_name': 'Erin', 'last_name': 'Ellis', 'is_deleted': True},
    }
    ids = {}
    for name, doc in docs.items():
        oid = ObjectId()
        db['users'].insert_one({'_id': oid, 'profile_image': None, **doc})
        ids[name] = str(oid)
    return ids


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ttl_store(clock):
    return MemoryTTLStore(clock=clock)


@pytest.fixture
def presence(ttl_store):
    return PresenceRegistry(ttl_store, ttl_seconds=60)


@pytest.fixture
def typing_registry(ttl_store):
    return TypingRegistry(ttl_store, ttl_seconds=3)


# =============================================================================
# Repositories & service
# =============================================================================


@pytest.fixture
def conversations(db):
    return ConversationRepository(db)


@pytest.fixture
def messages(db):
    return MessageRepository(db)


@pytest.fixture
def user_repo(db):
    return UserRepository(db)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(conversations, messages, user_repo, presence, notifier):
    svc = MessagingService(conversations, messages, user_repo, presence)
    svc.attach_notifier(notifier)
    return svc


# =============================================================================
# Application
# =============================================================================


@pytest.fixture
def app(db, users, tmp_path):
    from chat_server.websocket.fanout import FanoutAdapter
    from server import create_app

    application = create_app(
        db=db,
        ttl_store=MemoryTTLStore(),
        fanout=FanoutAdapter(None, enabled=False),
        upload_dir=str(tmp_path / 'uploads'),
    )
    application.config['TESTING'] = True
    return application


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(users):
    def _headers(name):
        return {'Authorization': f'Bearer {make_token(users[name])}'}
    return _headers


@pytest.fixture
def socket_client(app, users):
    """Factory: connect a Socket.IO test client as ``name`` on /chat."""
    socketio = app.extensions['socketio']
    opened = []

    def _connect(name=None, token=None, **kwargs):
        if token is None and name is not None:
            token = make_token(users[name])
        auth = {'token': token} if token else None
        sio_client = socketio.test_client(app, namespace='/chat', auth=auth, **kwargs)
        opened.append(sio_client)
        return sio_client

    yield _connect
    for sio_client in opened:
        if sio_client.is_connected('/chat'):
            sio_client.disconnect(namespace='/chat')
