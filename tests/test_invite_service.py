"""Tests for the Discord client and the sponsor-only invite flow."""

import json

import httpx
import pytest
from conftest import START

from sponsor_sync.api import ApiError, ApiPermissionError, RateLimitError
from sponsor_sync.config import DiscordConfig, SponsorsConfig
from sponsor_sync.discord_client import DiscordClient
from sponsor_sync.invites import InviteLog, InviteRequestError, InviteService
from sponsor_sync.sync.directory import DISCORD_PROVIDER

GUILD = "123456789012345678"
CHANNEL = "223456789012345678"
BOT_TOKEN = "MTIzNDU2Nzg5MDEyMzQ1Njc4.GAbCdE.abcdefghijklmnopqrstuvwxyz0123456789AB"
WEBHOOK = "https://discord.com/api/webhooks/323456789012345678/abcDEF_-123"


class FakeDiscord:
    """Routes member search, invite creation and webhook posts."""

    def __init__(self, members=(), invite_status=200, invite_body=None, search_status=200, webhook_status=204):
        self.members = {m.lower() for m in members}
        self.invite_status = invite_status
        self.invite_body = {"code": "AbCd123", "expires_at": "2023-11-15T00:00:00+00:00"} if invite_body is None else invite_body
        self.search_status = search_status
        self.webhook_status = webhook_status
        self.searches = 0
        self.invite_requests: list[dict] = []
        self.webhooks: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.startswith("/api/webhooks/"):
            self.webhooks.append(json.loads(request.content))
            return httpx.Response(self.webhook_status)
        if path == f"/api/v10/guilds/{GUILD}/members/search":
            self.searches += 1
            if self.search_status != 200:
                return httpx.Response(self.search_status, json={"message": "nope"})
            query = request.url.params["query"].lower()
            found = [{"user": {"username": query}}] if query in self.members else []
            return httpx.Response(200, json=found)
        if path == f"/api/v10/channels/{CHANNEL}/invites":
            self.invite_requests.append(json.loads(request.content))
            if self.invite_status == 429:
                return httpx.Response(429, json={"message": "You are being rate limited."})
            if self.invite_status != 200:
                return httpx.Response(self.invite_status, json={"message": "Missing Permissions"})
            return httpx.Response(200, json=self.invite_body)
        return httpx.Response(404, json={"message": "Unknown route"})


def make_client(fake: FakeDiscord, clock, cache=None, **kwargs) -> DiscordClient:
    options = dict(invite_max_age=3600, webhook_url=WEBHOOK)
    options.update(kwargs)
    return DiscordClient(
        BOT_TOKEN,
        GUILD,
        CHANNEL,
        cache=cache,
        transport=httpx.MockTransport(fake),
        clock=clock,
        sleep=clock.sleep,
        **options,
    )


class TestDiscordClient:
    def test_member_exists(self, clock):
        client = make_client(FakeDiscord(members=["alice_d"]), clock)

        assert client.member_exists("Alice_D")
        assert not client.member_exists("someone")
        assert not client.member_exists("")

    def test_member_lookup_is_cached(self, clock, cache):
        fake = FakeDiscord(members=["alice_d"])
        client = make_client(fake, clock, cache)

        client.member_exists("alice_d")
        client.member_exists("ALICE_D")
        assert fake.searches == 1

        clock.advance(301)
        client.member_exists("alice_d")
        assert fake.searches == 2

    def test_member_lookup_failure_reads_as_absent(self, clock):
        client = make_client(FakeDiscord(members=["alice_d"], search_status=500), clock)

        assert client.member_exists("alice_d") is False

    def test_create_invite_is_single_use_and_time_bound(self, clock):
        fake = FakeDiscord()
        client = make_client(fake, clock, invite_max_age=600)

        assert client.create_invite() == "AbCd123"
        assert fake.invite_requests == [{"max_age": 600, "max_uses": 1}]

    def test_create_invite_permission_error(self, clock):
        client = make_client(FakeDiscord(invite_status=403), clock)

        with pytest.raises(ApiPermissionError):
            client.create_invite()

    def test_create_invite_rate_limited(self, clock):
        client = make_client(FakeDiscord(invite_status=429), clock)

        with pytest.raises(RateLimitError):
            client.create_invite()

    def test_create_invite_without_code(self, clock):
        client = make_client(FakeDiscord(invite_body={}), clock)

        with pytest.raises(ApiError, match="did not return an invite code"):
            client.create_invite()

    def test_create_invite_needs_channel(self, clock):
        client = DiscordClient(BOT_TOKEN, GUILD, "", transport=httpx.MockTransport(FakeDiscord()))

        with pytest.raises(ApiError, match="No Discord channel ID configured"):
            client.create_invite()

    def test_notify(self, clock):
        fake = FakeDiscord()
        client = make_client(fake, clock)

        assert client.notify("hello")
        assert fake.webhooks == [{"content": "hello"}]

    def test_notify_failure_returns_false(self, clock):
        client = make_client(FakeDiscord(webhook_status=500), clock)
        assert client.notify("hello") is False

    def test_notify_without_webhook(self, clock):
        client = make_client(FakeDiscord(), clock, webhook_url="")
        assert client.notify("hello") is False

    def test_bot_authorization_header(self, clock):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers["Authorization"])
            return httpx.Response(200, json=[])

        client = DiscordClient(BOT_TOKEN, GUILD, CHANNEL, transport=httpx.MockTransport(handler))
        client.member_exists("x")

        assert seen == [f"Bot {BOT_TOKEN}"]


# --- Invite flow ---


@pytest.fixture
def sponsors_config() -> SponsorsConfig:
    return SponsorsConfig()


@pytest.fixture
def discord_config() -> DiscordConfig:
    return DiscordConfig(bot_token=BOT_TOKEN, guild_id=GUILD, invite_channel_id=CHANNEL, webhook_url=WEBHOOK)


@pytest.fixture
def sponsor_directory(directory):
    """alice (GitHub 'Alice') is a sponsor with a linked Discord account."""
    group = directory.ensure_group("sponsors")
    directory.add_member(group.id, 1)
    directory.add_member(group.id, 3)
    directory.link_identity(1, DISCORD_PROVIDER, "alice_d")
    return directory


def make_service(fake, clock, tmp_path, directory, sponsors_config, discord_config) -> InviteService:
    return InviteService(
        sponsors_config,
        discord_config,
        directory,
        make_client(fake, clock),
        InviteLog(tmp_path / "invites.db", clock=clock),
        clock=clock,
    )


@pytest.fixture
def service_factory(clock, tmp_path, sponsor_directory, sponsors_config, discord_config):
    def factory(fake: FakeDiscord, discord: DiscordConfig | None = None) -> InviteService:
        return make_service(fake, clock, tmp_path, sponsor_directory, sponsors_config, discord or discord_config)

    return factory


class TestGenerateInvite:
    def test_issues_logs_and_notifies(self, service_factory):
        fake = FakeDiscord()
        service = service_factory(fake)

        result = service.generate_invite(1)

        assert result == {
            "invite_code": "AbCd123",
            "invite_url": "https://discord.gg/AbCd123",
            "expires_at": int(START + 3600),
        }
        invite = service.invite_log.get("AbCd123")
        assert invite.user_id == 1
        assert invite.discord_username == "alice_d"
        assert invite.github_username == "Alice"
        assert invite.expires_at == START + 3600
        assert fake.webhooks == [{"content": "Alice generated a Discord invite (Discord: alice_d)"}]

    def test_non_sponsor_refused(self, service_factory):
        with pytest.raises(InviteRequestError) as exc_info:
            service_factory(FakeDiscord()).generate_invite(2)
        assert exc_info.value.reason == "not_sponsor"
        assert exc_info.value.status_code == 403

    def test_discord_not_configured(self, service_factory):
        with pytest.raises(InviteRequestError) as exc_info:
            service_factory(FakeDiscord(), DiscordConfig()).generate_invite(1)
        assert exc_info.value.reason == "not_configured"

    def test_discord_not_linked(self, service_factory):
        with pytest.raises(InviteRequestError) as exc_info:
            service_factory(FakeDiscord()).generate_invite(3)
        assert exc_info.value.reason == "discord_not_linked"
        assert exc_info.value.status_code == 422

    def test_already_on_server(self, service_factory):
        fake = FakeDiscord(members=["alice_d"])
        with pytest.raises(InviteRequestError) as exc_info:
            service_factory(fake).generate_invite(1)
        assert exc_info.value.reason == "already_on_server"
        assert fake.invite_requests == []

    @pytest.mark.parametrize(
        ("fake", "reason", "status"),
        [
            (FakeDiscord(invite_status=403), "bot_permission", 500),
            (FakeDiscord(invite_status=429), "rate_limited", 429),
            (FakeDiscord(invite_status=500), "api_error", 500),
            (FakeDiscord(invite_body={}), "api_error", 500),
        ],
    )
    def test_invite_failures_are_distinguished(self, service_factory, fake, reason, status):
        service = service_factory(fake)
        with pytest.raises(InviteRequestError) as exc_info:
            service.generate_invite(1)
        assert exc_info.value.reason == reason
        assert exc_info.value.status_code == status
        assert service.invite_log.recent() == []

    def test_presence_check_failure_does_not_block(self, service_factory):
        result = service_factory(FakeDiscord(members=["alice_d"], search_status=500)).generate_invite(1)
        assert result["invite_code"] == "AbCd123"

    def test_webhook_failure_does_not_block(self, service_factory):
        service = service_factory(FakeDiscord(webhook_status=500))
        assert service.generate_invite(1)["invite_code"] == "AbCd123"
        assert service.invite_log.get("AbCd123") is not None

    def test_repeated_code_is_refused_without_notifying(self, service_factory):
        fake = FakeDiscord()
        service = service_factory(fake)
        service.generate_invite(1)

        with pytest.raises(InviteRequestError) as exc_info:
            service.generate_invite(1)

        assert exc_info.value.reason == "api_error"
        assert exc_info.value.status_code == 500
        assert len(fake.webhooks) == 1
        assert len(service.invite_log.recent()) == 1

    def test_blank_discord_login_is_refused(self, service_factory, sponsor_directory):
        sponsor_directory.link_identity(1, DISCORD_PROVIDER, "")
        fake = FakeDiscord()

        with pytest.raises(InviteRequestError) as exc_info:
            service_factory(fake).generate_invite(1)

        assert exc_info.value.reason == "api_error"
        assert fake.webhooks == []

    def test_expiry_follows_the_invite_lifetime_sent_to_discord(
        self, clock, tmp_path, sponsor_directory, sponsors_config, discord_config
    ):
        fake = FakeDiscord()
        service = InviteService(
            sponsors_config,
            discord_config,
            sponsor_directory,
            make_client(fake, clock, invite_max_age=600),
            InviteLog(tmp_path / "invites.db", clock=clock),
            clock=clock,
        )

        result = service.generate_invite(1)

        assert fake.invite_requests == [{"max_age": 600, "max_uses": 1}]
        assert result["expires_at"] == int(START + 600)
        assert service.invite_log.get("AbCd123").expires_at == START + 600


class TestStatus:
    def test_linked_and_on_server(self, service_factory):
        status = service_factory(FakeDiscord(members=["alice_d"])).status(1)
        assert status == {"has_discord_linked": True, "on_server": True, "discord_username": "alice_d"}

    def test_not_linked(self, service_factory):
        status = service_factory(FakeDiscord()).status(3)
        assert status == {"has_discord_linked": False, "on_server": False, "discord_username": None}

    def test_user_status(self, service_factory, sponsor_directory):
        service = service_factory(FakeDiscord())
        group = sponsor_directory.find_group("sponsors")

        assert service.user_status(1) == {
            "is_sponsor": True,
            "group_id": group.id,
            "group_name": "sponsors",
            "joined_at": int(START),
        }
        assert service.user_status(2) == {"is_sponsor": False, "group_id": None, "group_name": None, "joined_at": None}

    def test_joined_at_resets_after_leaving(self, service_factory, sponsor_directory, clock):
        group = sponsor_directory.find_group("sponsors")
        sponsor_directory.remove_member(group.id, 1)
        clock.advance(500)
        sponsor_directory.add_member(group.id, 1)

        assert service_factory(FakeDiscord()).user_status(1)["joined_at"] == int(START + 500)
