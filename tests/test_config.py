"""Tests for layered configuration."""
import pytest

from config.settings import Config


@pytest.fixture
def fresh_config(monkeypatch):
    """A Config reloaded under the test's environment; restored afterwards."""
    yield lambda: Config.reload()
    monkeypatch.undo()
    Config.reload()


def test_defaults_from_yaml(fresh_config, monkeypatch):
    monkeypatch.delenv('FLASK_ENV', raising=False)
    monkeypatch.delenv('APP_ENV', raising=False)
    cfg = fresh_config()

    assert cfg.CURRENT_ENV == 'development'
    assert cfg.PRESENCE_TTL_SECONDS == 60
    assert cfg.TYPING_TTL_SECONDS == 3
    assert cfg.SOCKET_NAMESPACE == '/chat'
    assert cfg.MAX_PAGE_SIZE == 100


def test_environment_variables_win(fresh_config, monkeypatch):
    monkeypatch.setenv('PRESENCE_TTL_SECONDS', '15')
    monkeypatch.setenv('REDIS_ENABLED', 'false')
    cfg = fresh_config()

    assert cfg.PRESENCE_TTL_SECONDS == 15
    assert cfg.REDIS_ENABLED is False


def test_redis_url_assembled_from_parts(fresh_config, monkeypatch):
    monkeypatch.delenv('REDIS_URL', raising=False)
    monkeypatch.setenv('REDIS_HOST', 'cache')
    monkeypatch.setenv('REDIS_PORT', '6380')
    monkeypatch.setenv('REDIS_PASSWORD', 'p@ss')
    cfg = fresh_config()

    assert cfg.REDIS_URL == 'redis://:p%40ss@cache:6380/0'


def test_env_alias(fresh_config, monkeypatch):
    monkeypatch.setenv('APP_ENV', 'stage')
    monkeypatch.delenv('FLASK_ENV', raising=False)

    assert fresh_config().CURRENT_ENV == 'staging'


def test_production_requires_secrets(fresh_config, monkeypatch):
    monkeypatch.setenv('FLASK_ENV', 'production')
    monkeypatch.delenv('JWT_SECRET', raising=False)
    monkeypatch.delenv('MONGO_URI', raising=False)
    monkeypatch.delenv('CORS_ORIGINS', raising=False)
    cfg = fresh_config()

    with pytest.raises(RuntimeError) as exc:
        cfg.validate_required()
    assert 'JWT_SECRET' in str(exc.value)
    assert 'CORS_ORIGINS' in str(exc.value)


def test_to_dict_redacts_secrets(fresh_config, monkeypatch):
    monkeypatch.setenv('JWT_SECRET', 'super-secret')
    cfg = fresh_config()

    snapshot = cfg.to_dict()
    assert snapshot['security']['jwt_secret_set'] is True
    assert 'super-secret' not in str(snapshot)
