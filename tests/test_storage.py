"""
Tests for the object storage service.
"""

import hashlib
import os
import time
from urllib.parse import parse_qs, urlparse

import pytest

from services.errors import StorageError
from services.storage_service import StorageService


class TestObjects:
    """Test storing and reading objects."""

    def test_put_and_get(self, storage):
        storage.put('user-1/a.xlsx', b'content')

        assert storage.exists('user-1/a.xlsx')
        assert storage.get('user-1/a.xlsx') == b'content'
        assert storage.local_path('user-1/a.xlsx').is_file()

    def test_put_refuses_overwrite(self, storage):
        storage.put('user-1/a.xlsx', b'one')

        with pytest.raises(StorageError, match='already exists'):
            storage.put('user-1/a.xlsx', b'two')

        storage.put('user-1/a.xlsx', b'two', upsert=True)
        assert storage.get('user-1/a.xlsx') == b'two'

    def test_update_requires_existing_object(self, storage):
        with pytest.raises(StorageError, match='not found'):
            storage.update('user-1/missing.xlsx', b'x')

        storage.put('user-1/a.xlsx', b'one')
        storage.update('user-1/a.xlsx', b'two')
        assert storage.get('user-1/a.xlsx') == b'two'

    def test_get_missing(self, storage):
        with pytest.raises(StorageError):
            storage.get('user-1/missing.xlsx')

    def test_remove_counts_deleted(self, storage):
        storage.put('u/a.xlsx', b'a')
        storage.put('u/b.xlsx', b'b')

        assert storage.remove(['u/a.xlsx', 'u/b.xlsx', 'u/c.xlsx']) == 2
        assert not storage.exists('u/a.xlsx')

    @pytest.mark.parametrize('object_path', ['../outside.txt', 'u/../../x', '/etc/passwd', ''])
    def test_paths_cannot_escape_bucket(self, storage, object_path):
        with pytest.raises(StorageError):
            storage.local_path(object_path)

    def test_new_object_path(self):
        path = StorageService.new_object_path('user-1', 'Trial Balance.XLSX')

        folder, name = path.split('/')
        assert folder == 'user-1'
        assert name.endswith('.xlsx')
        assert len(name) == 32 + len('.xlsx')

    def test_new_object_path_without_extension(self):
        path = StorageService.new_object_path('u', 'README')
        assert '.' not in path.split('/')[1]

    def test_compute_hash(self):
        assert StorageService.compute_hash(b'abc') == hashlib.sha256(b'abc').hexdigest()
        assert StorageService.compute_hash(b'abc', 'md5') == hashlib.md5(b'abc').hexdigest()

        with pytest.raises(ValueError):
            StorageService.compute_hash(b'abc', 'crc32')


class TestSignedUrls:
    """Test signed download links."""

    def test_signed_url_round_trip(self, storage):
        storage.put('u/doc.pdf', b'%PDF')

        url = storage.create_signed_url('u/doc.pdf', 60, 'https://tb.example.com/')

        parsed = urlparse(url)
        params = parse_qs(parsed.query)
        assert parsed.netloc == 'tb.example.com'
        assert parsed.path == '/api/storage/u/doc.pdf'
        assert storage.verify_signature('u/doc.pdf', int(params['expires'][0]), params['signature'][0])

    def test_signature_is_bound_to_path(self, storage):
        storage.put('u/doc.pdf', b'%PDF')
        params = parse_qs(urlparse(storage.create_signed_url('u/doc.pdf', 60)).query)

        assert not storage.verify_signature('u/other.pdf', int(params['expires'][0]), params['signature'][0])
        assert not storage.verify_signature('u/doc.pdf', int(params['expires'][0]), 'bad')

    def test_signature_depends_on_secret(self, storage, tmp_path):
        storage.put('u/doc.pdf', b'%PDF')
        params = parse_qs(urlparse(storage.create_signed_url('u/doc.pdf', 60)).query)

        other = StorageService(storage_dir=str(tmp_path / 'other'), signing_secret='another-secret')
        assert not other.verify_signature('u/doc.pdf', int(params['expires'][0]), params['signature'][0])

    def test_expired_signature(self, storage):
        expires = int(time.time()) - 10
        signature = storage._signature('u/doc.pdf', expires)

        assert not storage.verify_signature('u/doc.pdf', expires, signature)

    def test_signed_url_for_missing_object(self, storage):
        with pytest.raises(StorageError):
            storage.create_signed_url('u/missing.pdf', 60)


class TestTempCleanup:
    """Test removal of stale temporary uploads."""

    def test_cleanup_temp_files(self, storage, tmp_path):
        temp_dir = tmp_path / 'uploads'
        temp_dir.mkdir()
        old = temp_dir / 'old.xlsx'
        new = temp_dir / 'new.xlsx'
        old.write_bytes(b'old')
        new.write_bytes(b'new')
        stale = time.time() - 48 * 3600
        os.utime(old, (stale, stale))

        assert storage.cleanup_temp_files(str(temp_dir), older_than_hours=24) == 1
        assert not old.exists()
        assert new.exists()

    def test_cleanup_missing_directory(self, storage, tmp_path):
        assert storage.cleanup_temp_files(str(tmp_path / 'nope')) == 0
