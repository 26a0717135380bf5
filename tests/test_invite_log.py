"""Tests for invite lifecycle tracking."""

import pytest
from conftest import START

from sponsor_sync.invites import DuplicateInviteError, InviteLog, InviteStatus

HOUR = 3600
DAY = 86400


@pytest.fixture
def log(tmp_path, clock) -> InviteLog:
    return InviteLog(tmp_path / "invites.db", clock=clock)


def issue(log: InviteLog, code: str = "abc123", user_id: int = 1, ttl: float = HOUR, now: float = START):
    return log.log_invite(
        user_id=user_id,
        invite_code=code,
        discord_username="alice_d",
        github_username="Alice",
        expires_at=now + ttl,
    )


class TestStatus:
    def test_active_until_expiry(self, log, clock):
        invite = issue(log)

        assert invite.status(START + 10) is InviteStatus.ACTIVE
        assert invite.status(START + HOUR) is InviteStatus.ACTIVE
        assert invite.status(START + HOUR + 1) is InviteStatus.EXPIRED

    def test_used_wins_over_expiry(self, log, clock):
        issue(log)
        clock.advance(100)
        assert log.mark_used("abc123")

        invite = log.get("abc123")
        assert invite.used_at == START + 100
        assert invite.status(START + HOUR + 1) is InviteStatus.USED

    def test_expired_flag_wins_over_time(self, log):
        issue(log)
        log.mark_expired("abc123")

        assert log.get("abc123").status(START + 1) is InviteStatus.EXPIRED

    def test_used_at_set_only_once(self, log, clock):
        issue(log)
        log.mark_used("abc123")
        clock.advance(50)

        assert not log.mark_used("abc123")
        assert log.get("abc123").used_at == START

    def test_mark_unknown_code(self, log):
        assert not log.mark_used("missing")
        assert not log.mark_expired("missing")
        assert log.get("missing") is None

    def test_to_dict_includes_derived_fields(self, log):
        invite = issue(log)

        data = invite.to_dict(START + HOUR + 1)
        assert data["status"] == "expired"
        assert data["expired"] is True
        assert data["invite_code"] == "abc123"


class TestLogInvite:
    def test_codes_are_unique(self, log):
        issue(log)
        with pytest.raises(DuplicateInviteError):
            issue(log)

    def test_discord_username_required(self, log):
        with pytest.raises(ValueError):
            log.log_invite(user_id=1, invite_code="x", discord_username="", expires_at=START + HOUR)


class TestSweep:
    def test_marks_only_past_due_and_is_idempotent(self, log, clock):
        issue(log, "old", ttl=60)
        issue(log, "fresh", ttl=HOUR)
        clock.advance(120)

        assert log.mark_expired_invites() == 1
        assert log.mark_expired_invites() == 0
        assert log.get("old").expired
        assert not log.get("fresh").expired

    def test_retention_ignores_status(self, log, clock):
        issue(log, "used")
        log.mark_used("used")
        issue(log, "active", ttl=60 * DAY)
        clock.advance(31 * DAY)
        issue(log, "new", now=clock.now)

        assert log.cleanup_old_entries(30) == 2
        assert [i.invite_code for i in log.recent()] == ["new"]


class TestQueries:
    def test_recent_and_for_user(self, log, clock):
        for n in range(3):
            issue(log, f"c{n}", user_id=1 + n % 2, now=clock.now)
            clock.advance(10)

        assert [i.invite_code for i in log.recent()] == ["c2", "c1", "c0"]
        assert [i.invite_code for i in log.recent(limit=1)] == ["c2"]
        assert [i.invite_code for i in log.for_user(1)] == ["c2", "c0"]

    def test_stats(self, log, clock):
        issue(log, "used")
        log.mark_used("used")
        issue(log, "expired", ttl=10)
        issue(log, "active", ttl=HOUR)
        issue(log, "flagged", ttl=HOUR)
        log.mark_expired("flagged")
        clock.advance(60)

        assert log.stats() == {
            "total": 4,
            "used": 1,
            "expired": 2,
            "active": 1,
            "usage_rate": 25.0,
        }

    def test_stats_empty(self, log):
        assert log.stats() == {"total": 0, "used": 0, "expired": 0, "active": 0, "usage_rate": 0}
