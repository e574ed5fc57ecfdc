"""Chat engine settings.

Values are resolved per key from environment variables first, then the YAML
layers under this directory (config.local.yaml, config.{dev|staging|prod}.yaml,
config.base.yaml). FLASK_ENV or APP_ENV picks the environment layer; with
neither set the development layer is used.

Usage:
    from config.settings import config

    secret = config.JWT_SECRET
    ttl = config.PRESENCE_TTL_SECONDS
    broker = config.REDIS_URL if config.REDIS_ENABLED else None
"""
import os
from pathlib import Path
from typing import Optional, Any, Dict
from urllib.parse import quote
import yaml


# Environment name mappings
ENV_ALIASES = {
    'dev': 'development',
    'development': 'development',
    'staging': 'staging',
    'stage': 'staging',
    'prod': 'production',
    'production': 'production',
}

# Default environment
DEFAULT_ENV = 'development'

TRUTHY = ('1', 'true', 'yes')


class Config:
    """YAML-layered settings with environment-variable overrides.

    The merged YAML tree is loaded once per process and shared by every
    instance; call reload() after changing the environment.
    """

    _config_data: Dict[str, Any] = {}
    _loaded: bool = False
    _current_env: str = DEFAULT_ENV

    def __init__(self):
        if not Config._loaded:
            self._load_config()

    @classmethod
    def _get_environment(cls) -> str:
        """Determine current environment from env vars or default to dev."""
        env = os.getenv('FLASK_ENV') or os.getenv('APP_ENV') or DEFAULT_ENV
        env = env.lower().strip()
        return ENV_ALIASES.get(env, DEFAULT_ENV)

    def _load_config(self):
        """Load configuration from YAML files based on environment."""
        config_dir = Path(__file__).parent
        Config._current_env = self._get_environment()

        Config._config_data = {}

        # 1. Shared defaults
        base_config_path = config_dir / 'config.base.yaml'
        if base_config_path.exists():
            with open(base_config_path, 'r') as f:
                Config._config_data = yaml.safe_load(f) or {}

        # 2. Environment-specific values
        env_config_map = {
            'development': 'config.dev.yaml',
            'staging': 'config.staging.yaml',
            'production': 'config.prod.yaml',
        }
        env_config_file = env_config_map.get(Config._current_env, 'config.dev.yaml')
        env_config_path = config_dir / env_config_file

        if env_config_path.exists():
            with open(env_config_path, 'r') as f:
                env_data = yaml.safe_load(f) or {}
                Config._config_data = self._deep_merge(Config._config_data, env_data)

        # 3. Local overrides (not in git)
        local_config_path = config_dir / 'config.local.yaml'
        if local_config_path.exists():
            with open(local_config_path, 'r') as f:
                local_data = yaml.safe_load(f) or {}
                Config._config_data = self._deep_merge(Config._config_data, local_data)

        Config._loaded = True

    def _deep_merge(self, base: dict, override: dict) -> dict:
        """Deep merge two dictionaries."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    def _get_yaml_value(self, *keys, default=None) -> Any:
        """Get a nested value from YAML config."""
        value = Config._config_data
        for key in keys:
            if isinstance(value, dict):
                value = value.get(key)
            else:
                return default
            if value is None:
                return default
        return value

    def _get_int(self, env_name: str, *keys, default: int) -> int:
        env_val = os.getenv(env_name)
        if env_val:
            return int(env_val)
        return int(self._get_yaml_value(*keys, default=default))

    def _get_float(self, env_name: str, *keys, default: float) -> float:
        env_val = os.getenv(env_name)
        if env_val:
            return float(env_val)
        return float(self._get_yaml_value(*keys, default=default))

    def _get_bool(self, env_name: str, *keys, default: bool) -> bool:
        env_val = os.getenv(env_name, '').lower()
        if env_val:
            return env_val in TRUTHY
        return bool(self._get_yaml_value(*keys, default=default))

    @classmethod
    def reload(cls):
        """Reload configuration (useful for testing)."""
        cls._loaded = False
        cls._config_data = {}
        instance = cls()
        return instance

    # ==========================================================================
    # Environment Info
    # ==========================================================================

    @property
    def CURRENT_ENV(self) -> str:
        """Current environment name."""
        return Config._current_env

    @property
    def IS_DEV(self) -> bool:
        return Config._current_env == 'development'

    @property
    def IS_STAGING(self) -> bool:
        return Config._current_env == 'staging'

    @property
    def IS_PROD(self) -> bool:
        return Config._current_env == 'production'

    # ==========================================================================
    # Application Settings
    # ==========================================================================

    @property
    def DEBUG(self) -> bool:
        """Flask debug mode."""
        return self._get_bool('FLASK_DEBUG', 'app', 'debug', default=False)

    @property
    def ENV(self) -> str:
        """Application environment (development, staging, production)."""
        return Config._current_env

    @property
    def PORT(self) -> int:
        """Server port."""
        return self._get_int('PORT', 'app', 'port', default=5000)

    @property
    def APP_NAME(self) -> str:
        return os.getenv('APP_NAME') or self._get_yaml_value('app', 'name', default='Chat Engine API')

    @property
    def APP_VERSION(self) -> str:
        return self._get_yaml_value('app', 'version', default='1.0.0')

    # ==========================================================================
    # Security Settings
    # ==========================================================================

    @property
    def JWT_SECRET(self) -> Optional[str]:
        """JWT secret key for token verification. Required in production."""
        return os.getenv('JWT_SECRET') or self._get_yaml_value('security', 'jwt', 'secret')

    @property
    def JWT_ALGORITHM(self) -> str:
        """JWT algorithm (default: HS256)."""
        return os.getenv('JWT_ALGORITHM') or self._get_yaml_value('security', 'jwt', 'algorithm', default='HS256')

    @property
    def ACCESS_TOKEN_EXPIRE_MINUTES(self) -> int:
        """Access token expiry in minutes."""
        return self._get_int('ACCESS_TOKEN_MINUTES', 'security', 'jwt', 'access_token_expire_minutes', default=10080)

    # ==========================================================================
    # Database Settings
    # ==========================================================================

    @property
    def MONGO_URI(self) -> str:
        """MongoDB connection URI."""
        return os.getenv('MONGO_URI') or self._get_yaml_value('database', 'mongo_uri', default='mongodb://localhost:27017')

    @property
    def MONGO_DB(self) -> str:
        """Database holding users, conversations and messages."""
        return os.getenv('MONGO_DB') or self._get_yaml_value('database', 'name', default='chat_db')

    @property
    def MONGO_TIMEOUT_MS(self) -> int:
        """Server selection / socket timeout for MongoDB operations."""
        return self._get_int('MONGO_TIMEOUT_MS', 'database', 'timeout_ms', default=5000)

    # ==========================================================================
    # Redis Settings (presence, typing and cross-process fanout)
    # ==========================================================================

    @property
    def REDIS_ENABLED(self) -> bool:
        """Use Redis for registries and fanout. When off everything stays in-process."""
        return self._get_bool('REDIS_ENABLED', 'redis', 'enabled', default=True)

    @property
    def REDIS_HOST(self) -> str:
        return os.getenv('REDIS_HOST') or self._get_yaml_value('redis', 'host', default='localhost')

    @property
    def REDIS_PORT(self) -> int:
        return self._get_int('REDIS_PORT', 'redis', 'port', default=6379)

    @property
    def REDIS_PASSWORD(self) -> Optional[str]:
        return os.getenv('REDIS_PASSWORD') or self._get_yaml_value('redis', 'password')

    @property
    def REDIS_DB(self) -> int:
        return self._get_int('REDIS_DB', 'redis', 'db', default=0)

    @property
    def REDIS_URL(self) -> str:
        """Redis URL; built from host/port/password/db when not given directly."""
        url = os.getenv('REDIS_URL') or self._get_yaml_value('redis', 'url')
        if url:
            return url
        auth = f":{quote(self.REDIS_PASSWORD, safe='')}@" if self.REDIS_PASSWORD else ''
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    @property
    def REDIS_CONNECT_TIMEOUT(self) -> float:
        """Seconds to wait for the broker at startup before degrading."""
        return self._get_float('REDIS_CONNECT_TIMEOUT', 'redis', 'connect_timeout', default=2.0)

    # ==========================================================================
    # Chat Settings
    # ==========================================================================

    @property
    def PRESENCE_TTL_SECONDS(self) -> int:
        """Idle period after which a presence record expires."""
        return self._get_int('PRESENCE_TTL_SECONDS', 'chat', 'presence_ttl_seconds', default=60)

    @property
    def TYPING_TTL_SECONDS(self) -> int:
        return self._get_int('TYPING_TTL_SECONDS', 'chat', 'typing_ttl_seconds', default=3)

    @property
    def PREVIEW_LENGTH(self) -> int:
        """Length of the last-message preview kept on a conversation."""
        return self._get_int('PREVIEW_LENGTH', 'chat', 'preview_length', default=100)

    @property
    def MAX_CONTENT_LENGTH(self) -> int:
        return self._get_int('MAX_CONTENT_LENGTH', 'chat', 'max_content_length', default=5000)

    @property
    def CONVERSATIONS_PAGE_SIZE(self) -> int:
        return self._get_int('CONVERSATIONS_PAGE_SIZE', 'chat', 'conversations_page_size', default=20)

    @property
    def MESSAGES_PAGE_SIZE(self) -> int:
        return self._get_int('MESSAGES_PAGE_SIZE', 'chat', 'messages_page_size', default=50)

    @property
    def MAX_PAGE_SIZE(self) -> int:
        return self._get_int('MAX_PAGE_SIZE', 'chat', 'max_page_size', default=100)

    # ==========================================================================
    # Socket.IO Settings
    # ==========================================================================

    @property
    def SOCKET_NAMESPACE(self) -> str:
        return os.getenv('SOCKET_NAMESPACE') or self._get_yaml_value('socket', 'namespace', default='/chat')

    @property
    def SOCKET_PING_INTERVAL(self) -> int:
        """Seconds between server pings."""
        return self._get_int('SOCKET_PING_INTERVAL', 'socket', 'ping_interval', default=25)

    @property
    def SOCKET_PING_TIMEOUT(self) -> int:
        return self._get_int('SOCKET_PING_TIMEOUT', 'socket', 'ping_timeout', default=30)

    @property
    def SOCKET_MAX_PAYLOAD(self) -> int:
        """Largest accepted websocket frame, in bytes."""
        return self._get_int('SOCKET_MAX_PAYLOAD', 'socket', 'max_payload', default=1024 * 1024)

    @property
    def SOCKET_CHANNEL(self) -> str:
        """Pub/sub channel shared by all server processes."""
        return os.getenv('SOCKET_CHANNEL') or self._get_yaml_value('socket', 'channel', default='chat-fanout')

    # ==========================================================================
    # CORS Settings
    # ==========================================================================

    @property
    def CORS_ORIGINS(self) -> str:
        """Allowed CORS origins."""
        return os.getenv('CORS_ORIGINS') or self._get_yaml_value('cors', 'origins', default='*')

    @property
    def CORS_ORIGINS_LIST(self) -> list:
        """Get CORS origins as a list."""
        origins = self.CORS_ORIGINS
        if origins == '*':
            return ['*']
        return [o.strip() for o in origins.split(',') if o.strip()]

    # ==========================================================================
    # Logging Settings
    # ==========================================================================

    @property
    def LOG_LEVEL(self) -> str:
        """Logging level."""
        env_val = os.getenv('LOG_LEVEL')
        if env_val:
            return env_val.upper()
        if self.LOG_DEBUG:
            return 'DEBUG'
        return str(self._get_yaml_value('logging', 'level', default='INFO')).upper()

    @property
    def LOG_DEBUG(self) -> bool:
        """Enable debug logging (verbose)."""
        return self._get_bool('LOG_DEBUG', 'logging', 'debug', default=False)

    @property
    def LOG_FORMAT(self) -> str:
        """Log format pattern."""
        return os.getenv('LOG_FORMAT') or self._get_yaml_value(
            'logging', 'format', default='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    @property
    def LOG_DATE_FORMAT(self) -> str:
        """Date format for logs."""
        return self._get_yaml_value('logging', 'date_format', default='%H:%M:%S')

    # ==========================================================================
    # Upload Settings
    # ==========================================================================

    @property
    def UPLOAD_DIR(self) -> str:
        """Directory where chat attachments are written."""
        return os.getenv('UPLOAD_DIR') or self._get_yaml_value('upload', 'directory', default='uploads/chat')

    @property
    def UPLOAD_BASE_URL(self) -> str:
        """Public URL prefix under which stored attachments are served."""
        return os.getenv('UPLOAD_BASE_URL') or self._get_yaml_value('upload', 'base_url', default='/uploads/chat')

    @property
    def MAX_UPLOAD_SIZE_MB(self) -> int:
        """Maximum file upload size in MB."""
        return self._get_int('MAX_UPLOAD_SIZE_MB', 'upload', 'max_file_size_mb', default=10)

    @property
    def ALLOWED_UPLOAD_EXTENSIONS(self) -> list:
        """Allowed file upload extensions."""
        return self._get_yaml_value(
            'upload', 'allowed_extensions',
            default=['jpg', 'jpeg', 'png', 'webp', 'avif', 'gif', 'pdf', 'txt', 'doc', 'docx', 'zip'],
        )

    # ==========================================================================
    # Validation Methods
    # ==========================================================================

    def validate_required(self) -> None:
        """Validate that required configuration values are set.

        Raises RuntimeError if required values are missing in production.
        """
        errors = []

        if not self.JWT_SECRET and not self.IS_DEV:
            errors.append('JWT_SECRET environment variable is required')

        if self.IS_PROD:
            if not self.MONGO_URI or self.MONGO_URI == 'mongodb://localhost:27017':
                errors.append('MONGO_URI should be set to production database in production')
            if self.CORS_ORIGINS == '*':
                errors.append('CORS_ORIGINS should not be "*" in production')

        if errors:
            raise RuntimeError('Configuration errors:\n' + '\n'.join(f'  - {e}' for e in errors))

    def to_dict(self) -> Dict[str, Any]:
        """Export current configuration as dictionary (for debugging)."""
        return {
            'environment': {
                'current': self.CURRENT_ENV,
                'is_dev': self.IS_DEV,
                'is_staging': self.IS_STAGING,
                'is_prod': self.IS_PROD,
            },
            'app': {
                'debug': self.DEBUG,
                'port': self.PORT,
                'name': self.APP_NAME,
                'version': self.APP_VERSION,
            },
            'security': {
                'jwt_algorithm': self.JWT_ALGORITHM,
                'access_token_expire_minutes': self.ACCESS_TOKEN_EXPIRE_MINUTES,
                'jwt_secret_set': bool(self.JWT_SECRET),
            },
            'database': {
                'mongo_uri': '***' if self.MONGO_URI else None,
                'name': self.MONGO_DB,
                'timeout_ms': self.MONGO_TIMEOUT_MS,
            },
            'redis': {
                'enabled': self.REDIS_ENABLED,
                'host': self.REDIS_HOST,
                'port': self.REDIS_PORT,
                'db': self.REDIS_DB,
                'password_set': bool(self.REDIS_PASSWORD),
            },
            'chat': {
                'presence_ttl_seconds': self.PRESENCE_TTL_SECONDS,
                'typing_ttl_seconds': self.TYPING_TTL_SECONDS,
                'preview_length': self.PREVIEW_LENGTH,
                'max_content_length': self.MAX_CONTENT_LENGTH,
            },
            'socket': {
                'namespace': self.SOCKET_NAMESPACE,
                'ping_interval': self.SOCKET_PING_INTERVAL,
                'ping_timeout': self.SOCKET_PING_TIMEOUT,
                'max_payload': self.SOCKET_MAX_PAYLOAD,
                'channel': self.SOCKET_CHANNEL,
            },
            'cors': {
                'origins': self.CORS_ORIGINS,
            },
            'logging': {
                'level': self.LOG_LEVEL,
            },
            'upload': {
                'directory': self.UPLOAD_DIR,
                'max_file_size_mb': self.MAX_UPLOAD_SIZE_MB,
            },
        }


# Singleton config instance
config = Config()
