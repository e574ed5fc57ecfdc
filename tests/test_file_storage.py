import os

import pytest

from chat_server.exception.ChatError import ValidationError
from chat_server.storage.file_storage import LocalFileStorage, file_extension, is_image


@pytest.fixture
def storage(tmp_path):
    return LocalFileStorage(str(tmp_path), base_url='/uploads/chat/',
                            allowed_extensions=['png', '.PDF'], max_bytes=16)


def test_store_writes_file_and_builds_url(storage, tmp_path):
    key = storage.store(b'abc', 'image/png', '../../etc/photo.png')

    assert key.endswith('_etc_photo.png')
    assert (tmp_path / key).read_bytes() == b'abc'
    assert storage.url_for(key) == f'/uploads/chat/{key}'


def test_same_name_does_not_collide(storage):
    assert storage.store(b'a', None, 'a.pdf') != storage.store(b'b', None, 'a.pdf')


@pytest.mark.parametrize('data,filename', [
    (b'abc', 'run.exe'),
    (b'', 'empty.png'),
    (b'x' * 17, 'big.png'),
    (b'abc', ''),
])
def test_rejected_uploads(storage, tmp_path, data, filename):
    with pytest.raises(ValidationError):
        storage.store(data, None, filename)
    assert os.listdir(tmp_path) == []


def test_extension_helpers():
    assert file_extension('Photo.JPG') == 'jpg'
    assert file_extension('README') == ''
    assert is_image('x.webp')
    assert not is_image('x.pdf')


def test_delete_removes_stored_file(storage, tmp_path):
    key = storage.store(b'abc', 'image/png', 'photo.png')

    assert storage.delete(key) is True
    assert not (tmp_path / key).exists()
    assert storage.delete(key) is False
