from __future__ import annotations

import asyncio
import dataclasses
import json
import logging

import aiohttp
import pytest
from aiolimiter import AsyncLimiter
from slack_sdk.errors import SlackApiError

from slack_directory_mcp.cache import (
    COMMON_UNICODE_EMOJIS,
    CachedChannel,
    DirectoryCache,
    UsersCache,
    build_users_cache,
    channel_from_record,
)
from slack_directory_mcp.errors import (
    ChannelsNotReadyError,
    EmojisNotReadyError,
    NotReadyError,
    RefreshFetchError,
    UsersNotReadyError,
)


def _write_json(path, data):
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f)


class TestCacheLookupUnit:
    def test_resolve_channel_id_found(self, populated_cache):
        assert populated_cache.resolve_channel_id("#general") == "C001"

    def test_resolve_channel_id_not_found(self, populated_cache):
        assert populated_cache.resolve_channel_id("#nonexistent") is None

    def test_resolve_dm_channel(self, populated_cache):
        assert populated_cache.resolve_channel_id("@alice") == "D001"

    def test_resolve_user_id_with_and_without_at(self, populated_cache):
        assert populated_cache.resolve_user_id("alice") == "U001"
        assert populated_cache.resolve_user_id("@alice") == "U001"
        assert populated_cache.resolve_user_id("@nobody") is None

    def test_later_duplicate_name_wins(self):
        cache = build_users_cache(
            [{"id": "U1", "name": "sam"}, {"id": "U2", "name": "sam"}, {"name": "noid"}]
        )
        assert cache.users_inv["sam"] == "U2"
        assert set(cache.users) == {"U1", "U2"}


class TestReadinessUnit:
    def test_not_ready_by_default(self, make_cache):
        cache = make_cache()
        assert cache.is_ready is False
        assert cache.emojis_ready is False

    def test_users_checked_before_channels(self, make_cache):
        cache = make_cache()
        with pytest.raises(UsersNotReadyError):
            cache.ensure_ready()

        cache._mark_ready("users")
        with pytest.raises(ChannelsNotReadyError):
            cache.ensure_ready()

        cache._mark_ready("channels")
        cache.ensure_ready()
        assert cache.is_ready is True

    def test_not_ready_message(self, make_cache):
        with pytest.raises(NotReadyError, match="users cache is not ready yet"):
            make_cache().ensure_ready()

    def test_emojis_independent(self, make_cache):
        cache = make_cache()
        cache._mark_ready("users")
        cache._mark_ready("channels")
        with pytest.raises(EmojisNotReadyError):
            cache.ensure_emojis_ready()

    def test_mark_ready_is_monotonic(self, make_cache):
        cache = make_cache()
        cache._mark_ready("users")
        cache._mark_ready("users")
        assert cache.users_ready is True

    def test_mark_ready_unknown_entity(self, make_cache):
        with pytest.raises(ValueError):
            make_cache()._mark_ready("files")


class TestSnapshotPrecedenceUnit:
    @pytest.mark.asyncio
    async def test_users_snapshot_skips_network(
        self, make_cache, mock_client, cache_config, sample_users
    ):
        _write_json(cache_config.users_cache_path, list(sample_users.values()))
        cache = make_cache()

        await cache.refresh_users()

        mock_client.users_list.assert_not_called()
        mock_client.client_user_boot.assert_not_called()
        assert cache.users_ready is True
        assert cache.resolve_user_id("alice") == "U001"

    @pytest.mark.asyncio
    async def test_channels_snapshot_skips_network(
        self, make_cache, mock_client, cache_config, sample_channels
    ):
        _write_json(
            cache_config.channels_cache_path,
            [dataclasses.asdict(ch) for ch in sample_channels.values()],
        )
        cache = make_cache()

        await cache.refresh_channels()

        mock_client.conversations_list.assert_not_called()
        assert cache.channels_ready is True
        assert cache.channels.channels["D001"].member_count == 2
        assert cache.resolve_channel_id("#random") == "C002"

    @pytest.mark.asyncio
    async def test_emojis_snapshot_skips_network(
        self, make_cache, mock_client, cache_config, sample_emojis
    ):
        _write_json(
            cache_config.emojis_cache_path,
            [dataclasses.asdict(e) for e in sample_emojis.values()],
        )
        cache = make_cache()

        await cache.refresh_emojis()

        mock_client.emoji_list.assert_not_called()
        assert cache.emojis.emojis["partyparrot"].aliases == ["parrot"]

    @pytest.mark.asyncio
    async def test_corrupt_snapshot_falls_back_to_fetch(
        self, make_cache, mock_client, cache_config
    ):
        with open(cache_config.users_cache_path, "w") as f:
            f.write("{not json")
        mock_client.users_list.return_value = {
            "members": [{"id": "U9", "name": "zed"}],
            "response_metadata": {"next_cursor": ""},
        }
        cache = make_cache()

        await cache.refresh_users()

        mock_client.users_list.assert_called_once()
        assert cache.resolve_user_id("zed") == "U9"

    @pytest.mark.asyncio
    async def test_snapshot_round_trip(self, make_cache, mock_client, cache_config):
        mock_client.conversations_list.return_value = {
            "channels": [
                {"id": "C1", "name": "eng", "num_members": 12, "topic": {"value": "t"}},
            ],
            "response_metadata": {"next_cursor": ""},
        }
        first = make_cache()
        await first.refresh_channels()

        second = make_cache()
        await second.refresh_channels()

        assert mock_client.conversations_list.call_count == 1
        assert second.channels.channels == first.channels.channels


class TestUsersRefreshUnit:
    @pytest.mark.asyncio
    async def test_follows_pages(self, make_cache, mock_client, cache_config):
        mock_client.users_list.side_effect = [
            {
                "members": [{"id": "U1", "name": "a"}],
                "response_metadata": {"next_cursor": "page2"},
            },
            {
                "members": [{"id": "U2", "name": "b"}],
                "response_metadata": {"next_cursor": ""},
            },
        ]
        cache = make_cache()

        await cache.refresh_users()

        assert mock_client.users_list.call_count == 2
        assert mock_client.users_list.call_args_list[1].kwargs["cursor"] == "page2"
        assert set(cache.users.users) == {"U1", "U2"}
        with open(cache_config.users_cache_path, encoding="utf-8") as f:
            assert len(json.load(f)) == 2

    @pytest.mark.asyncio
    async def test_slack_connect_users_added(self, make_cache, mock_client):
        mock_client.supports_client_boot = True
        mock_client.users_list.return_value = {
            "members": [{"id": "U1", "name": "a"}],
            "response_metadata": {"next_cursor": ""},
        }
        mock_client.client_user_boot.return_value = {
            "ims": [
                {"id": "D1", "user": "U1", "is_shared": True},
                {"id": "D2", "user": "W77", "is_ext_shared": True},
                {"id": "D3", "user": "U88"},
            ]
        }
        mock_client.users_info_batch.return_value = {
            "users": [{"id": "W77", "name": "partner"}]
        }
        cache = make_cache()

        await cache.refresh_users()

        mock_client.users_info_batch.assert_called_once_with(users=["W77"])
        assert cache.resolve_user_id("partner") == "W77"

    @pytest.mark.asyncio
    async def test_slack_connect_skipped_without_capability(self, make_cache, mock_client):
        mock_client.users_list.return_value = {
            "members": [],
            "response_metadata": {"next_cursor": ""},
        }
        cache = make_cache()

        await cache.refresh_users()

        mock_client.client_user_boot.assert_not_called()
        assert cache.users_ready is True

    @pytest.mark.asyncio
    async def test_fetch_failure_leaves_not_ready(self, make_cache, mock_client):
        mock_client.users_list.side_effect = SlackApiError("boom", {"ok": False})
        cache = make_cache()

        with pytest.raises(RefreshFetchError):
            await cache.refresh_users()

        assert cache.users_ready is False

    @pytest.mark.asyncio
    async def test_snapshot_write_failure_not_fatal(
        self, make_cache, mock_client, cache_config, tmp_path, caplog
    ):
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not a directory")
        config = dataclasses.replace(
            cache_config, users_cache_path=str(blocker / "users_cache.json")
        )
        mock_client.users_list.return_value = {
            "members": [{"id": "U1", "name": "a"}],
            "response_metadata": {"next_cursor": ""},
        }
        cache = make_cache(config=config)

        with caplog.at_level(logging.WARNING):
            await cache.refresh_users()

        assert cache.users_ready is True
        assert "Failed to save cache to disk" in caplog.text


class TestChannelMappingUnit:
    def _cache_with_users(self, make_cache, sample_users):
        cache = make_cache()
        cache._users = UsersCache(
            users=sample_users,
            users_inv={u["name"]: uid for uid, u in sample_users.items()},
        )
        return cache

    def test_public_channel(self, make_cache):
        ch = make_cache().map_channel(
            {
                "id": "C1",
                "name": "general",
                "name_normalized": "general",
                "num_members": 40,
                "topic": {"value": "hello"},
                "purpose": {"value": "chat"},
            }
        )
        assert ch.name == "#general"
        assert ch.member_count == 40
        assert ch.topic == "hello"

    def test_im_uses_user_name(self, make_cache, sample_users):
        cache = self._cache_with_users(make_cache, sample_users)
        ch = cache.map_channel(
            {"id": "D1", "is_im": True, "user": "U001", "topic": {"value": "x"}}
        )
        assert ch.name == "@alice"
        assert ch.purpose == "DM with Alice Smith"
        assert ch.member_count == 2
        assert ch.topic == ""

    def test_im_unknown_user(self, make_cache):
        ch = make_cache().map_channel({"id": "D2", "is_im": True, "user": "U404"})
        assert ch.name == "@U404"
        assert ch.purpose == "DM with U404"

    def test_im_deactivated_user(self, make_cache, sample_users):
        cache = self._cache_with_users(make_cache, sample_users)
        ch = cache.map_channel({"id": "D3", "is_im": True, "user": "U003"})
        assert ch.purpose == "DM with Charlie Brown (deactivated)"

    def test_mpim(self, make_cache, sample_users):
        cache = self._cache_with_users(make_cache, sample_users)
        ch = cache.map_channel(
            {
                "id": "G1",
                "is_mpim": True,
                "name": "mpdm-alice--bob-1",
                "name_normalized": "mpdm-alice--bob-1",
                "members": ["U001", "U002", "U404"],
                "num_members": 9,
                "topic": {"value": "old"},
            }
        )
        assert ch.name == "@mpdm-alice--bob-1"
        assert ch.member_count == 3
        assert ch.purpose == "Group DM with Alice Smith, Bob Jones, U404"
        assert ch.topic == ""

    def test_channel_from_record_ignores_unknown_keys(self):
        ch = channel_from_record({"id": "C1", "name": "#x", "unexpected": 1})
        assert ch == CachedChannel(id="C1", name="#x")


class TestEmojiRefreshUnit:
    @pytest.mark.asyncio
    async def test_aliases_folded_and_unicode_merged(self, make_cache, mock_client):
        mock_client.users_list.return_value = {
            "members": [],
            "response_metadata": {"next_cursor": ""},
        }
        mock_client.conversations_list.return_value = {
            "channels": [],
            "response_metadata": {"next_cursor": ""},
        }
        mock_client.emoji_list.return_value = {
            "emoji": {
                "partyparrot": "https://emoji.example/partyparrot.gif",
                "parrot": "alias:partyparrot",
                "orphan": "alias:missing",
                "fire": "https://emoji.example/custom-fire.png",
            }
        }
        cache = make_cache()

        await cache.warm(team_id="T001")

        emojis = cache.emojis.emojis
        assert emojis["partyparrot"].aliases == ["parrot"]
        assert emojis["partyparrot"].team_id == "T001"
        assert "parrot" not in emojis
        assert "orphan" not in emojis
        assert emojis["fire"].is_custom is True
        assert emojis["thumbsup"].url == COMMON_UNICODE_EMOJIS["thumbsup"]
        assert emojis["thumbsup"].is_custom is False
        assert cache.emojis_ready is True

    @pytest.mark.asyncio
    async def test_emoji_failure_does_not_block_warm(self, make_cache, mock_client):
        mock_client.users_list.return_value = {
            "members": [],
            "response_metadata": {"next_cursor": ""},
        }
        mock_client.conversations_list.return_value = {
            "channels": [],
            "response_metadata": {"next_cursor": ""},
        }
        mock_client.emoji_list.side_effect = SlackApiError("missing_scope", {"ok": False})
        cache = make_cache()

        await cache.warm()

        assert cache.is_ready is True
        assert cache.emojis_ready is False
        with pytest.raises(EmojisNotReadyError):
            cache.ensure_emojis_ready()

    @pytest.mark.asyncio
    async def test_channels_failure_aborts_warm(self, make_cache, mock_client):
        mock_client.users_list.return_value = {
            "members": [],
            "response_metadata": {"next_cursor": ""},
        }
        mock_client.conversations_list.side_effect = OSError("connection reset")
        cache = make_cache()

        with pytest.raises(RefreshFetchError):
            await cache.warm()

        assert cache.users_ready is True
        assert cache.channels_ready is False
        mock_client.emoji_list.assert_not_called()


class TestResolveBotUnit:
    @pytest.mark.asyncio
    async def test_matches_user_by_app_id(self, populated_cache, mock_client):
        mock_client.bots_info.return_value = {
            "bot": {"id": "B1", "app_id": "A0LINEAR", "name": "Linear"}
        }
        user = await populated_cache.resolve_bot("B1")
        assert user["id"] == "U004"

    @pytest.mark.asyncio
    async def test_concurrent_misses_share_one_fetch(self, populated_cache, mock_client):
        async def slow_bots_info(*, bot):
            await asyncio.sleep(0.01)
            return {"bot": {"id": bot, "app_id": "A0LINEAR", "name": "Linear"}}

        mock_client.bots_info.side_effect = slow_bots_info

        results = await asyncio.gather(
            populated_cache.resolve_bot("B1"), populated_cache.resolve_bot("B1")
        )

        assert mock_client.bots_info.call_count == 1
        assert results[0] is results[1]

    @pytest.mark.asyncio
    async def test_placeholder_when_no_user(self, populated_cache, mock_client):
        mock_client.bots_info.return_value = {
            "bot": {"id": "B2", "app_id": "A0OTHER", "name": "Deploy Bot"}
        }
        user = await populated_cache.resolve_bot("B2")
        assert user == {
            "id": "B2",
            "name": "deploy bot",
            "real_name": "Deploy Bot",
            "is_bot": True,
        }

        await populated_cache.resolve_bot("B2")
        assert mock_client.bots_info.call_count == 1

    @pytest.mark.asyncio
    async def test_fetch_error_not_cached(self, populated_cache, mock_client):
        mock_client.bots_info.side_effect = [
            SlackApiError("bot_not_found", {"ok": False}),
            {"bot": {"id": "B3", "app_id": "A0LINEAR", "name": "Linear"}},
        ]

        first = await populated_cache.resolve_bot("B3")
        assert first["name"] == "B3"

        second = await populated_cache.resolve_bot("B3")
        assert second["id"] == "U004"

    @pytest.mark.asyncio
    async def test_transport_error_is_placeholder(self, populated_cache, mock_client):
        mock_client.bots_info.side_effect = aiohttp.ServerDisconnectedError()

        user = await populated_cache.resolve_bot("B4")

        assert user == {"id": "B4", "name": "B4", "real_name": "B4", "is_bot": True}


class TestTransportErrorsUnit:
    @pytest.mark.asyncio
    async def test_disconnect_during_emoji_does_not_block_warm(self, make_cache, mock_client):
        mock_client.users_list.return_value = {
            "members": [],
            "response_metadata": {"next_cursor": ""},
        }
        mock_client.conversations_list.return_value = {
            "channels": [],
            "response_metadata": {"next_cursor": ""},
        }
        mock_client.emoji_list.side_effect = aiohttp.ServerDisconnectedError()
        cache = make_cache()

        await cache.warm()

        assert cache.is_ready is True
        assert cache.emojis_ready is False

    @pytest.mark.asyncio
    async def test_truncated_users_page(self, make_cache, mock_client):
        mock_client.users_list.side_effect = aiohttp.ClientPayloadError("truncated")
        cache = make_cache()

        with pytest.raises(RefreshFetchError) as excinfo:
            await cache.refresh_users()

        assert isinstance(excinfo.value.__cause__, aiohttp.ClientPayloadError)
        assert cache.users_ready is False

    @pytest.mark.asyncio
    async def test_disconnect_during_channels(self, make_cache, mock_client):
        mock_client.conversations_list.side_effect = aiohttp.ServerDisconnectedError()
        cache = make_cache()

        with pytest.raises(RefreshFetchError):
            await cache.refresh_channels()

        assert cache.channels_ready is False


class CountingLimiter:
    def __init__(self) -> None:
        self.acquired = 0

    async def __aenter__(self) -> None:
        self.acquired += 1

    async def __aexit__(self, *exc_info) -> None:
        return None


class TestRateLimitUnit:
    @pytest.mark.asyncio
    async def test_one_acquisition_per_users_page(self, mock_client, cache_config):
        limiter = CountingLimiter()
        mock_client.users_list.side_effect = [
            {"members": [{"id": "U1", "name": "a"}], "response_metadata": {"next_cursor": "p2"}},
            {"members": [{"id": "U2", "name": "b"}], "response_metadata": {"next_cursor": "p3"}},
            {"members": [{"id": "U3", "name": "c"}], "response_metadata": {"next_cursor": ""}},
        ]
        cache = DirectoryCache(mock_client, cache_config, limiter=limiter)

        await cache.refresh_users()

        assert mock_client.users_list.call_count == 3
        assert limiter.acquired == 3

    @pytest.mark.asyncio
    async def test_one_acquisition_per_channels_page(self, mock_client, cache_config):
        limiter = CountingLimiter()
        mock_client.conversations_list.side_effect = [
            {"channels": [{"id": "C1", "name": "a"}], "response_metadata": {"next_cursor": "p2"}},
            {"channels": [{"id": "C2", "name": "b"}], "response_metadata": {"next_cursor": ""}},
        ]
        cache = DirectoryCache(mock_client, cache_config, limiter=limiter)

        await cache.refresh_channels()

        assert mock_client.conversations_list.call_count == 2
        assert limiter.acquired == 2

    @pytest.mark.asyncio
    async def test_cancel_while_waiting_for_limiter(self, mock_client, cache_config):
        limiter = AsyncLimiter(1, 60)
        await limiter.acquire()
        cache = DirectoryCache(mock_client, cache_config, limiter=limiter)

        task = asyncio.create_task(cache.refresh_users())
        await asyncio.sleep(0.05)
        assert not task.done()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        mock_client.users_list.assert_not_called()
        assert cache.users_ready is False
