import argparse
import logging
import os

from flask import Flask, send_from_directory
from flask_cors import CORS
from flask_socketio import SocketIO

from chat_server.messaging.presence import PresenceRegistry, TypingRegistry
from chat_server.messaging.service import MessagingService
from chat_server.messaging.ttl_store import MemoryTTLStore, RedisTTLStore, TTLStore
from chat_server.repository.mongo_helper import MongoRepositorySingleton
from chat_server.routes.chat import chat_bp
from chat_server.security.authentication import AuthSecurity
from chat_server.security.identity import IdentityService
from chat_server.storage.file_storage import LocalFileStorage
from chat_server.utils.helpers import respond_success
from chat_server.websocket.fanout import FanoutAdapter
from chat_server.websocket.gateway import ChatGateway
from config import config

logger = logging.getLogger(__name__)


def configure_logging():
    """Root logging from LOG_LEVEL / LOG_FORMAT / LOG_DATE_FORMAT."""
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format=config.LOG_FORMAT,
        datefmt=config.LOG_DATE_FORMAT,
    )


def configure_auth_from_config():
    """Configure AuthSecurity from config.

    JWT_SECRET: secret key shared with the token issuer (required outside development).
    JWT_ALGORITHM: default HS256.
    ACCESS_TOKEN_EXPIRE_MINUTES: lifetime of tokens minted by encode_token.
    """
    config.validate_required()
    AuthSecurity.configure(
        secret_key=config.JWT_SECRET,
        algorithm=config.JWT_ALGORITHM,
        access_token_expire_minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES,
    )


def build_ttl_store(fanout: FanoutAdapter) -> TTLStore:
    """Redis-backed registries when the broker answered, otherwise an in-process map."""
    if fanout.connected:
        return RedisTTLStore.from_url(config.REDIS_URL, connect_timeout=config.REDIS_CONNECT_TIMEOUT)
    logger.info("Presence and typing registries are in-process")
    return MemoryTTLStore()


def create_app(db=None, ttl_store: TTLStore = None, fanout: FanoutAdapter = None,
               upload_dir: str = None) -> Flask:
    """Application factory used by server.py, scripts and tests.

    Wires repositories, registries, the messaging service, the Socket.IO
    gateway and the HTTP blueprint. ``db``, ``ttl_store`` and ``fanout``
    replace the configured MongoDB, Redis registries and broker.

    The Socket.IO server is available as ``app.extensions['socketio']``.
    """
    app = Flask(__name__)
    CORS(app, origins=config.CORS_ORIGINS_LIST)

    if db is not None:
        MongoRepositorySingleton.use_db(db)
    repos = MongoRepositorySingleton.get_instance()

    if fanout is None:
        fanout = FanoutAdapter(
            config.REDIS_URL,
            channel=config.SOCKET_CHANNEL,
            enabled=config.REDIS_ENABLED,
            connect_timeout=config.REDIS_CONNECT_TIMEOUT,
        )
        fanout.probe()
    if ttl_store is None:
        ttl_store = build_ttl_store(fanout)

    presence = PresenceRegistry(ttl_store, ttl_seconds=config.PRESENCE_TTL_SECONDS)
    typing = TypingRegistry(ttl_store, ttl_seconds=config.TYPING_TTL_SECONDS)
    identity = IdentityService(repos.user)
    service = MessagingService(
        repos.conversation,
        repos.message,
        repos.user,
        presence,
        preview_length=config.PREVIEW_LENGTH,
        max_content_length=config.MAX_CONTENT_LENGTH,
        max_page_size=config.MAX_PAGE_SIZE,
    )
    storage = LocalFileStorage(
        upload_dir or config.UPLOAD_DIR,
        base_url=config.UPLOAD_BASE_URL,
        allowed_extensions=config.ALLOWED_UPLOAD_EXTENSIONS,
        max_bytes=config.MAX_UPLOAD_SIZE_MB * 1024 * 1024,
    )

    socketio = SocketIO(
        app,
        async_mode='threading',
        cors_allowed_origins='*' if config.CORS_ORIGINS == '*' else config.CORS_ORIGINS_LIST,
        ping_interval=config.SOCKET_PING_INTERVAL,
        ping_timeout=config.SOCKET_PING_TIMEOUT,
        max_http_buffer_size=config.SOCKET_MAX_PAYLOAD,
        logger=config.LOG_DEBUG,
        engineio_logger=config.LOG_DEBUG,
        **fanout.socketio_options(),
    )
    ChatGateway(service, identity, presence, typing, namespace=config.SOCKET_NAMESPACE).init_app(app, socketio)

    app.extensions['chat_identity'] = identity
    app.extensions['chat_service'] = service
    app.extensions['chat_presence'] = presence
    app.extensions['chat_typing'] = typing
    app.extensions['chat_storage'] = storage
    app.extensions['chat_fanout'] = fanout

    app.register_blueprint(chat_bp)

    @app.route(f'{storage.base_url}/<path:filename>')
    def uploaded_file(filename):
        return send_from_directory(os.path.abspath(storage.directory), filename)

    @app.route('/health')
    def health():
        return respond_success({'status': 'ok', 'version': config.APP_VERSION, 'fanout': fanout.status()})

    return app


def parse_args():
    """Parse simple CLI arguments for running the server."""
    parser = argparse.ArgumentParser(description='Run the real-time chat server')
    parser.add_argument('--port', type=int, default=config.PORT, help='TCP port to bind (default: PORT from config)')
    parser.add_argument('--host', default='0.0.0.0', help='Interface to bind (default: 0.0.0.0)')
    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    configure_logging()
    configure_auth_from_config()
    app = create_app()
    logger.info('Starting %s with Socket.IO on port %s', config.APP_NAME, args.port)
    app.extensions['socketio'].run(
        app, host=args.host, port=args.port, debug=config.DEBUG, allow_unsafe_werkzeug=True,
    )
