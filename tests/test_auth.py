"""Tests for bearer token verification and the identity collaborator."""
from datetime import timedelta

import pytest

from chat_server.exception.UnauthorizedError import UnauthorizedError
from chat_server.repository.user_repository import UserRepository
from chat_server.security.authentication import AuthSecurity, get_bearer_token
from chat_server.security.identity import IdentityService, is_active_user


@pytest.fixture
def identity(db):
    return IdentityService(UserRepository(db))


def test_round_trip_token():
    token = AuthSecurity.encode_token({'sub': 'u1'})

    assert AuthSecurity.decode_token(token)['sub'] == 'u1'


def test_expired_token_rejected():
    token = AuthSecurity.encode_token({'sub': 'u1'}, expires_delta=timedelta(seconds=-5))

    with pytest.raises(UnauthorizedError, match='expired'):
        AuthSecurity.decode_token(token)


def test_wrong_secret_rejected():
    token = AuthSecurity.encode_token({'sub': 'u1'})
    AuthSecurity.configure('another-secret')

    with pytest.raises(UnauthorizedError):
        AuthSecurity.decode_token(token)


def test_malformed_token_rejected():
    with pytest.raises(UnauthorizedError, match='Malformed'):
        AuthSecurity.decode_token('abc')


def test_refresh_token_rejected():
    token = AuthSecurity.encode_token({'sub': 'u1', 'type': 'refresh'})

    with pytest.raises(UnauthorizedError, match='Refresh'):
        AuthSecurity.decode_token(token)


def test_bearer_header_parsing():
    assert get_bearer_token({'Authorization': 'Bearer abc.def.ghi'}) == 'abc.def.ghi'
    assert get_bearer_token({'Authorization': 'Basic xyz'}) is None
    assert get_bearer_token({}) is None


@pytest.mark.parametrize('claim', ['sub', 'user_id', 'userId'])
def test_verify_token_reads_subject_claims(identity, claim):
    token = AuthSecurity.encode_token({claim: 'u42'})

    assert identity.verify_token(token)['user_id'] == 'u42'


def test_verify_token_without_subject(identity):
    token = AuthSecurity.encode_token({'role': 'user'})

    with pytest.raises(UnauthorizedError):
        identity.verify_token(token)


def test_authenticate_active_user(identity, users):
    token = AuthSecurity.encode_token({'sub': users['alice']})

    assert identity.authenticate(token)['user_id'] == users['alice']


@pytest.mark.parametrize('name', ['dave', 'erin'])
def test_authenticate_rejects_inactive_or_deleted(identity, users, name):
    token = AuthSecurity.encode_token({'sub': users[name]})

    with pytest.raises(UnauthorizedError, match='inactive'):
        identity.authenticate(token)


def test_is_active_user():
    assert is_active_user({'_id': 1})
    assert not is_active_user(None)
    assert not is_active_user({'is_deleted': True})
    assert not is_active_user({'is_active': False})
