"""Settings package for the chat engine.

    from config import config

    config.MONGO_URI, config.REDIS_URL, config.SOCKET_NAMESPACE, ...

Select the environment layer with FLASK_ENV (or APP_ENV): development,
staging or production.
"""
from .settings import config, Config

__all__ = ['config', 'Config']
