"""Tests for the SQLite cache, the health registry, and the YAML directory."""

import os
import sys

import pytest
import yaml

from sponsor_sync.cache import CacheEntry, SQLiteCacheStore
from sponsor_sync.health import GITHUB_TOKEN_INVALID, HealthRegistry
from sponsor_sync.sync.directory import GITHUB_PROVIDER, FileDirectory, User


class TestSQLiteCacheStore:
    @pytest.fixture
    def store(self, tmp_path, clock) -> SQLiteCacheStore:
        return SQLiteCacheStore(tmp_path / "cache.db", clock=clock)

    def test_set_get_remove(self, store):
        store.set("cache_a", CacheEntry("cache_a", {"data": [1, 2]}, 100.0))

        entry = store.get("cache_a")
        assert entry == CacheEntry("cache_a", {"data": [1, 2]}, 100.0)

        store.remove("cache_a")
        assert store.get("cache_a") is None

    def test_overwrite_replaces_entry(self, store):
        store.set("k", CacheEntry("k", 1, 100.0))
        store.set("k", CacheEntry("k", 2, 200.0))

        assert store.get("k").data == 2
        assert store.count() == 1

    def test_clear_by_prefix(self, store):
        store.set("discord_member_1", CacheEntry("discord_member_1", True, 1.0))
        store.set("cache_account_type_x", CacheEntry("cache_account_type_x", {}, 1.0))

        assert store.clear("discord_") == 1
        assert store.get("cache_account_type_x") is not None
        assert store.clear() == 1

    def test_cleanup_expired(self, store, clock):
        store.set("old", CacheEntry("old", 1, clock.now - 1))
        store.set("new", CacheEntry("new", 1, clock.now + 60))

        assert store.cleanup_expired() == 1
        assert store.get("new") is not None

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_db_is_owner_only(self, store):
        assert os.stat(store.db_path).st_mode & 0o777 == 0o600


class TestHealthRegistry:
    def test_in_memory(self):
        health = HealthRegistry()
        health.flag(GITHUB_TOKEN_INVALID)
        health.flag(GITHUB_TOKEN_INVALID)

        [problem] = health.problems()
        assert problem.name == GITHUB_TOKEN_INVALID
        assert "token" in problem.message

        health.clear(GITHUB_TOKEN_INVALID)
        assert health.problems() == []

    def test_persisted_between_instances(self, tmp_path, clock):
        HealthRegistry(tmp_path / "health.db", clock=clock).flag(GITHUB_TOKEN_INVALID)

        reopened = HealthRegistry(tmp_path / "health.db", clock=clock)
        assert reopened.is_flagged(GITHUB_TOKEN_INVALID)
        assert reopened.problems()[0].flagged_at == clock.now

        reopened.clear(GITHUB_TOKEN_INVALID)
        assert not HealthRegistry(tmp_path / "health.db").is_flagged(GITHUB_TOKEN_INVALID)


class TestFileDirectory:
    def test_mutations_are_persisted(self, tmp_path, clock):
        path = tmp_path / "directory.yaml"
        d = FileDirectory(path, clock=clock)
        d.add_user(User(id=1, username="alice"))
        d.link_identity(1, GITHUB_PROVIDER, "Alice")
        group = d.ensure_group("sponsors", full_name="Sponsors")
        d.add_member(group.id, 1)

        reloaded = FileDirectory(path)
        assert reloaded.get_user(1).username == "alice"
        assert reloaded.identity_link(1, GITHUB_PROVIDER).login == "Alice"
        assert [u.id for u in reloaded.group_members(group.id)] == [1]
        assert reloaded.find_group("sponsors").joined_at == {1: clock.now}

    def test_hand_written_file_loads(self, tmp_path):
        path = tmp_path / "directory.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "users": [{"id": 7, "username": "zed"}],
                    "identity_links": [{"user_id": 7, "provider": "github", "external_login": "ZedGH"}],
                }
            )
        )

        d = FileDirectory(path)
        assert d.find_user_by_username("ZED").id == 7
        assert d.identity_links(GITHUB_PROVIDER)[0].login == "ZedGH"

    def test_backup_written_on_save(self, tmp_path):
        path = tmp_path / "directory.yaml"
        d = FileDirectory(path)
        d.add_user(User(id=1, username="alice"))
        d.add_user(User(id=2, username="bob"))

        backup = tmp_path / "directory.yaml.backup"
        assert backup.exists()
        assert "alice" in backup.read_text()

    def test_corrupt_file_recovers_from_backup(self, tmp_path):
        path = tmp_path / "directory.yaml"
        d = FileDirectory(path)
        d.add_user(User(id=1, username="alice"))
        d.add_user(User(id=2, username="bob"))
        path.write_text("users: [ {id: not-a-number")

        recovered = FileDirectory(path)
        assert recovered.get_user(1).username == "alice"

    def test_duplicate_user_rejected(self, tmp_path):
        d = FileDirectory(tmp_path / "directory.yaml")
        d.add_user(User(id=1, username="alice"))
        with pytest.raises(ValueError):
            d.add_user(User(id=1, username="again"))

    def test_link_replaces_existing_for_provider(self, tmp_path):
        d = FileDirectory(tmp_path / "directory.yaml")
        d.add_user(User(id=1, username="alice"))
        d.link_identity(1, GITHUB_PROVIDER, "old")
        d.link_identity(1, GITHUB_PROVIDER, "new")

        assert [link.login for link in d.identity_links(GITHUB_PROVIDER)] == ["new"]

    def test_badge_backfill_grants_and_revokes(self, tmp_path):
        d = FileDirectory(tmp_path / "directory.yaml")
        d.add_user(User(id=1, username="alice"))
        d.add_user(User(id=2, username="bob", badges=["GitHub Sponsor"]))
        group = d.ensure_group("sponsors")
        d.add_member(group.id, 1)

        assert d.grant_badge_backfill("GitHub Sponsor", group.id) == 1
        assert d.get_user(1).badges == ["GitHub Sponsor"]
        assert d.get_user(2).badges == []
