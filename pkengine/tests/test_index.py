"""Tests for repository index loading and sync"""

import gzip
import json
from pathlib import Path

import pytest

from pkengine.core.compression import MAGIC_ZSTD, detect_format
from pkengine.core.database import PackageDatabase
from pkengine.core.index import (
    index_path, iter_entries, load_index, parse_index, repository_path,
    sync_all_repositories, sync_repository, write_index,
)


@pytest.fixture
def db(tmp_path):
    database = PackageDatabase(tmp_path / "pkgdb.sqlite")
    yield database
    database.close()


@pytest.fixture
def repo_dir(tmp_path, raw):
    path = tmp_path / "repo" / "current"
    write_index(index_path(str(path), "x86_64"), {
        'foo': raw('foo-1.0_1', desc="Foo tool", run_depends=['libbar']),
        'libbar': raw('libbar-1.2_1'),
    })
    return path


class TestRepositoryPath:
    """Tests for URI to directory mapping."""

    def test_plain_path(self):
        assert repository_path("/srv/repo") == Path("/srv/repo")

    def test_file_uri(self):
        assert repository_path("file:///srv/my%20repo") == Path("/srv/my repo")

    @pytest.mark.parametrize("uri", ["https://repo.example.org/current", "ftp://mirror/x"])
    def test_remote_rejected(self, uri):
        with pytest.raises(ValueError):
            repository_path(uri)

    def test_index_path(self):
        assert index_path("/srv/repo", "aarch64") == Path("/srv/repo/aarch64-repodata")


class TestIndexFiles:
    """Tests for reading and writing index files."""

    def test_write_is_zstd(self, tmp_path, raw):
        path = write_index(tmp_path / "x86_64-repodata", {'foo': raw('foo-1.0_1')})
        data = path.read_bytes()
        assert data[:4] == MAGIC_ZSTD
        assert detect_format(data) == 'zstd'
        assert load_index(path) == {'foo': raw('foo-1.0_1')}

    def test_plain_json(self, tmp_path, raw):
        path = write_index(tmp_path / "x86_64-repodata", {'foo': raw('foo-1.0_1')},
                           compress=False)
        assert load_index(path)['foo']['pkgver'] == 'foo-1.0_1'

    def test_gzip(self, tmp_path, raw):
        path = tmp_path / "x86_64-repodata"
        path.write_bytes(gzip.compress(json.dumps({'foo': raw('foo-1.0_1')}).encode()))
        assert load_index(path)['foo']['architecture'] == 'x86_64'

    @pytest.mark.parametrize("data", [
        b"{not json",
        b"[1, 2, 3]",
        b"\xff\xfe\x00",
        # gzip header followed by a corrupt deflate stream
        b"\x1f\x8b\x08\x00\x00\x00\x00\x00\x00\x03" + b"\xff" * 32,
    ])
    def test_invalid(self, data):
        with pytest.raises(ValueError):
            parse_index(data, "test")

    def test_iter_entries_skips_non_objects(self, raw):
        index = {'foo': raw('foo-1.0_1'), 'bad': 42, 'worse': [1]}
        assert [name for name, _ in iter_entries(index)] == ['foo']


class TestSync:
    """Tests for importing indexes into the database."""

    def test_sync_imports(self, db, repo_dir):
        db.add_repository(str(repo_dir))
        result = sync_repository(db, str(repo_dir), "x86_64")
        assert result.success
        assert result.packages_count == 2
        assert not result.unchanged
        assert db.find_available(name='foo')[0]['run_depends'] == ['libbar']

    def test_unchanged_skipped(self, db, repo_dir):
        db.add_repository(str(repo_dir))
        sync_repository(db, str(repo_dir), "x86_64")

        again = sync_repository(db, str(repo_dir), "x86_64")
        assert again.success and again.unchanged

        forced = sync_repository(db, str(repo_dir), "x86_64", force=True)
        assert forced.success and not forced.unchanged
        assert forced.packages_count == 2

    def test_file_uri(self, db, repo_dir):
        uri = repo_dir.as_uri()
        db.add_repository(uri)
        assert sync_repository(db, uri, "x86_64").packages_count == 2

    def test_unknown_repository(self, db, repo_dir):
        result = sync_repository(db, str(repo_dir), "x86_64")
        assert not result.success
        assert "not found" in result.error

    def test_missing_index(self, db, repo_dir):
        db.add_repository(str(repo_dir))
        result = sync_repository(db, str(repo_dir), "armv7l")
        assert not result.success

    def test_corrupt_index(self, db, tmp_path):
        path = tmp_path / "broken"
        (path).mkdir()
        (path / "x86_64-repodata").write_bytes(b"garbage")
        db.add_repository(str(path))
        result = sync_repository(db, str(path), "x86_64")
        assert not result.success
        assert list(db.iter_index(db.get_repository(str(path))['id'])) == []

    def test_corrupt_gzip_does_not_stop_sync_all(self, db, tmp_path, repo_dir):
        broken = tmp_path / "broken"
        broken.mkdir()
        (broken / "x86_64-repodata").write_bytes(
            b"\x1f\x8b\x08\x00\x00\x00\x00\x00\x00\x03" + b"\xff" * 32)
        db.add_repository(str(broken))
        db.add_repository(str(repo_dir))

        results = dict(sync_all_repositories(db, "x86_64"))
        assert not results[str(broken)].success
        assert results[str(repo_dir)].success

    def test_sync_all(self, db, repo_dir):
        db.add_repository(str(repo_dir))
        db.add_repository("https://repo.example.org/current")
        db.add_repository("/nowhere", enabled=False)
        progress = []

        results = sync_all_repositories(
            db, "x86_64", progress_callback=lambda uri, i, n: progress.append((uri, i, n)))

        assert [(uri, r.success) for uri, r in results] == [
            (str(repo_dir), True),
            ("https://repo.example.org/current", False),
        ]
        assert progress == [(str(repo_dir), 1, 2), ("https://repo.example.org/current", 2, 2)]
