from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field

import aiohttp
from aiolimiter import AsyncLimiter
from slack_sdk.errors import SlackApiError, SlackClientError

from slack_directory_mcp.config import Config
from slack_directory_mcp.errors import (
    ChannelsNotReadyError,
    EmojisNotReadyError,
    RefreshFetchError,
    SnapshotIOError,
    UsersNotReadyError,
)
from slack_directory_mcp.slack_client import SlackClient
from slack_directory_mcp.snapshot import read_snapshot, write_snapshot

logger = logging.getLogger(__name__)

ALL_CHANNEL_TYPES = ("public_channel", "private_channel", "im", "mpim")

# Not returned by emoji.list but always usable in reactions
COMMON_UNICODE_EMOJIS: dict[str, str] = {
    "thumbsup": "👍",
    "thumbsdown": "👎",
    "heart": "❤️",
    "smile": "😊",
    "laughing": "😂",
    "cry": "😢",
    "angry": "😠",
    "clap": "👏",
    "fire": "🔥",
    "eyes": "👀",
    "rocket": "🚀",
    "100": "💯",
    "pray": "🙏",
    "tada": "🎉",
    "white_check_mark": "✅",
    "x": "❌",
    "warning": "⚠️",
    "question": "❓",
    "exclamation": "❗",
    "heavy_plus_sign": "➕",
    "heavy_minus_sign": "➖",
}

_FETCH_ERRORS = (
    SlackApiError,
    SlackClientError,
    aiohttp.ClientError,
    OSError,
    asyncio.TimeoutError,
)


@dataclass
class CachedChannel:
    id: str
    name: str
    name_normalized: str = ""
    topic: str = ""
    purpose: str = ""
    member_count: int = 0
    members: list[str] = field(default_factory=list)
    is_im: bool = False
    is_mpim: bool = False
    is_private: bool = False
    is_archived: bool = False
    is_member: bool = False
    is_general: bool = False
    is_shared: bool = False
    is_ext_shared: bool = False
    is_org_shared: bool = False
    creator: str = ""
    created: int = 0
    user: str = ""

    def __post_init__(self) -> None:
        if self.is_im:
            self.member_count = 2
            self.topic = ""


@dataclass
class CachedEmoji:
    name: str
    url: str = ""
    is_custom: bool = False
    aliases: list[str] = field(default_factory=list)
    team_id: str = ""
    user_id: str = ""


@dataclass
class UsersCache:
    users: dict[str, dict] = field(default_factory=dict)
    users_inv: dict[str, str] = field(default_factory=dict)


@dataclass
class ChannelsCache:
    channels: dict[str, CachedChannel] = field(default_factory=dict)
    channels_inv: dict[str, str] = field(default_factory=dict)


@dataclass
class EmojiCache:
    emojis: dict[str, CachedEmoji] = field(default_factory=dict)


_CHANNEL_FIELDS = frozenset(f.name for f in dataclasses.fields(CachedChannel))
_EMOJI_FIELDS = frozenset(f.name for f in dataclasses.fields(CachedEmoji))


def build_users_cache(records: list[dict]) -> UsersCache:
    users_map: dict[str, dict] = {}
    users_inv: dict[str, str] = {}
    for u in records:
        uid = u.get("id", "")
        if not uid:
            continue
        users_map[uid] = u
    for uid, u in users_map.items():
        name = u.get("name", "")
        if name:
            users_inv[name] = uid
    return UsersCache(users=users_map, users_inv=users_inv)


def build_channels_cache(channels: list[CachedChannel]) -> ChannelsCache:
    channels_map: dict[str, CachedChannel] = {}
    channels_inv: dict[str, str] = {}
    for ch in channels:
        if ch.id:
            channels_map[ch.id] = ch
    for cid, ch in channels_map.items():
        if ch.name:
            channels_inv[ch.name] = cid
    return ChannelsCache(channels=channels_map, channels_inv=channels_inv)


def channel_from_record(rec: dict) -> CachedChannel:
    return CachedChannel(**{k: v for k, v in rec.items() if k in _CHANNEL_FIELDS})


def emoji_from_record(rec: dict) -> CachedEmoji:
    return CachedEmoji(**{k: v for k, v in rec.items() if k in _EMOJI_FIELDS})


def _display_name(user: dict) -> str:
    name = user.get("real_name", "") or user.get("profile", {}).get("real_name", "")
    if user.get("deleted", False) and name:
        name += " (deactivated)"
    return name


class DirectoryCache:
    """In-memory directory of users, channels and emoji.

    Populated once at startup by the ``refresh_*`` methods (snapshot first,
    Slack API on a miss) and read-only afterwards, apart from the bot
    identity side cache which only ever grows.
    """

    def __init__(
        self,
        client: SlackClient,
        config: Config,
        *,
        limiter: AsyncLimiter | None = None,
    ) -> None:
        self._client = client
        self._config = config
        self._limiter = limiter or AsyncLimiter(config.rate_limit_per_minute, 60)
        self._users = UsersCache()
        self._channels = ChannelsCache()
        self._emojis = EmojiCache()
        self._users_ready = False
        self._channels_ready = False
        self._emojis_ready = False
        self._team_id = ""

        self._bot_id_to_user: dict[str, dict] = {}
        self._app_id_to_user: dict[str, dict] = {}
        self._bot_locks: dict[str, asyncio.Lock] = {}

    @property
    def users(self) -> UsersCache:
        return self._users

    @property
    def channels(self) -> ChannelsCache:
        return self._channels

    @property
    def emojis(self) -> EmojiCache:
        return self._emojis

    # --- readiness gate ---

    @property
    def users_ready(self) -> bool:
        return self._users_ready

    @property
    def channels_ready(self) -> bool:
        return self._channels_ready

    @property
    def emojis_ready(self) -> bool:
        return self._emojis_ready

    @property
    def is_ready(self) -> bool:
        return self._users_ready and self._channels_ready

    def ensure_ready(self) -> None:
        if not self._users_ready:
            raise UsersNotReadyError()
        if not self._channels_ready:
            raise ChannelsNotReadyError()

    def ensure_emojis_ready(self) -> None:
        if not self._emojis_ready:
            raise EmojisNotReadyError()

    def _mark_ready(self, entity: str) -> None:
        if entity == "users":
            self._users_ready = True
        elif entity == "channels":
            self._channels_ready = True
        elif entity == "emojis":
            self._emojis_ready = True
        else:
            raise ValueError(f"unknown entity type: {entity}")

    # --- refresh pipeline ---

    async def warm(self, *, team_id: str = "") -> None:
        """Populate every cache. Users and channels are mandatory, emoji is not."""
        self._team_id = team_id
        await self.refresh_users()
        await self.refresh_channels()
        try:
            await self.refresh_emojis()
        except RefreshFetchError:
            logger.warning("Emoji cache unavailable, continuing without it", exc_info=True)

    async def refresh_users(self) -> None:
        if self._load_users_snapshot():
            self._mark_ready("users")
            return

        logger.info("Fetching users from Slack API...")
        try:
            all_users = await self._fetch_all_users()
            all_users.extend(await self._fetch_slack_connect_users(all_users))
        except _FETCH_ERRORS as exc:
            logger.error("Failed to fetch users: %s", exc)
            raise RefreshFetchError("users", str(exc)) from exc

        self._users = build_users_cache(all_users)
        self._save_snapshot(self._config.users_cache_path, list(self._users.users.values()))
        self._mark_ready("users")
        logger.info("Users cache refreshed: %d users", len(self._users.users))

    async def refresh_channels(self) -> None:
        if self._load_channels_snapshot():
            self._mark_ready("channels")
            return

        logger.info("Fetching channels from Slack API...")
        try:
            raw_channels = await self._fetch_all_channels()
        except _FETCH_ERRORS as exc:
            logger.error("Failed to fetch channels: %s", exc)
            raise RefreshFetchError("channels", str(exc)) from exc

        self._channels = build_channels_cache([self.map_channel(ch) for ch in raw_channels])
        self._save_snapshot(
            self._config.channels_cache_path,
            [dataclasses.asdict(ch) for ch in self._channels.channels.values()],
        )
        self._mark_ready("channels")
        logger.info("Channels cache refreshed: %d channels", len(self._channels.channels))

    async def refresh_emojis(self) -> None:
        if self._load_emojis_snapshot():
            self._mark_ready("emojis")
            return

        logger.info("Fetching emoji from Slack API...")
        try:
            async with self._limiter:
                resp = await self._client.emoji_list()
        except _FETCH_ERRORS as exc:
            logger.error("Failed to fetch emoji: %s", exc)
            raise RefreshFetchError("emojis", str(exc)) from exc

        emojis = self._build_emojis(resp.get("emoji", {}))
        self._emojis = EmojiCache(emojis=emojis)
        self._save_snapshot(
            self._config.emojis_cache_path,
            [dataclasses.asdict(e) for e in emojis.values()],
        )
        self._mark_ready("emojis")
        logger.info("Emoji cache refreshed: %d emoji", len(emojis))

    async def _fetch_all_users(self) -> list[dict]:
        all_users: list[dict] = []
        cursor = ""
        while True:
            async with self._limiter:
                resp = await self._client.users_list(cursor=cursor, limit=200)
            all_users.extend(resp.get("members", []))
            cursor = resp.get("response_metadata", {}).get("next_cursor", "")
            if not cursor:
                break
        return all_users

    async def _fetch_slack_connect_users(self, known: list[dict]) -> list[dict]:
        if not self._client.supports_client_boot:
            return []

        async with self._limiter:
            boot = await self._client.client_user_boot()

        known_ids = {u.get("id", "") for u in known}
        collected: list[str] = []
        for im in boot.get("ims", []):
            if not im.get("is_shared") and not im.get("is_ext_shared"):
                continue
            uid = im.get("user", "")
            if uid and uid not in known_ids and uid not in collected:
                collected.append(uid)

        if not collected:
            return []

        logger.info("Fetching %d Slack Connect users", len(collected))
        async with self._limiter:
            resp = await self._client.users_info_batch(users=collected)
        return list(resp.get("users", []))

    async def _fetch_all_channels(self) -> list[dict]:
        all_channels: list[dict] = []
        types_str = ",".join(ALL_CHANNEL_TYPES)
        cursor = ""
        while True:
            async with self._limiter:
                resp = await self._client.conversations_list(
                    types=types_str, limit=1000, cursor=cursor
                )
            all_channels.extend(resp.get("channels", []))
            cursor = resp.get("response_metadata", {}).get("next_cursor", "")
            if not cursor:
                break
        return all_channels

    def _build_emojis(self, raw: dict[str, str]) -> dict[str, CachedEmoji]:
        emojis: dict[str, CachedEmoji] = {}
        aliases: list[tuple[str, str]] = []
        for name, url in raw.items():
            if url.startswith("alias:"):
                aliases.append((name, url[len("alias:"):]))
                continue
            emojis[name] = CachedEmoji(
                name=name, url=url, is_custom=True, team_id=self._team_id
            )

        for alias, target in aliases:
            if target in emojis:
                emojis[target].aliases.append(alias)

        for name, glyph in COMMON_UNICODE_EMOJIS.items():
            if name not in emojis:
                emojis[name] = CachedEmoji(name=name, url=glyph, is_custom=False)
        return emojis

    def map_channel(self, ch: dict) -> CachedChannel:
        is_im = ch.get("is_im", False)
        is_mpim = ch.get("is_mpim", False)
        name_normalized = ch.get("name_normalized", "")
        members = list(ch.get("members", []) or [])
        topic = (
            ch.get("topic", {}).get("value", "")
            if isinstance(ch.get("topic"), dict)
            else ""
        )
        purpose = (
            ch.get("purpose", {}).get("value", "")
            if isinstance(ch.get("purpose"), dict)
            else ""
        )
        member_count = ch.get("num_members", 0)
        users = self._users.users

        if is_im:
            user_id = ch.get("user", "")
            user_data = users.get(user_id)
            if user_data:
                name = f"@{user_data.get('name', user_id)}"
                purpose = f"DM with {_display_name(user_data) or user_id}"
            else:
                name = f"@{user_id}"
                purpose = f"DM with {user_id}"
        elif is_mpim:
            name = f"@{name_normalized or ch.get('name', '')}"
            if members:
                member_count = len(members)
                names = [
                    _display_name(users[uid]) or uid if uid in users else uid
                    for uid in members
                ]
                purpose = "Group DM with " + ", ".join(names)
                topic = ""
        else:
            raw_name = name_normalized or ch.get("name", "")
            name = f"#{raw_name}" if raw_name else ""

        return CachedChannel(
            id=ch.get("id", ""),
            name=name,
            name_normalized=name_normalized,
            topic=topic,
            purpose=purpose,
            member_count=member_count,
            members=members,
            is_im=is_im,
            is_mpim=is_mpim,
            is_private=ch.get("is_private", False),
            is_archived=ch.get("is_archived", False),
            is_member=ch.get("is_member", False),
            is_general=ch.get("is_general", False),
            is_shared=ch.get("is_shared", False),
            is_ext_shared=ch.get("is_ext_shared", False),
            is_org_shared=ch.get("is_org_shared", False),
            creator=ch.get("creator", ""),
            created=ch.get("created", 0),
            user=ch.get("user", ""),
        )

    # --- lookups ---

    def resolve_channel_id(self, name: str) -> str | None:
        cid = self._channels.channels_inv.get(name)
        if cid:
            return cid
        return None

    def resolve_user_id(self, name: str) -> str | None:
        return self._users.users_inv.get(name.lstrip("@")) or None

    async def resolve_bot(self, bot_id: str) -> dict:
        """Resolve a bot ID to a displayable user record.

        Concurrent misses for the same bot share one ``bots.info`` call.
        """
        user = self._bot_id_to_user.get(bot_id)
        if user is not None:
            return user

        lock = self._bot_locks.setdefault(bot_id, asyncio.Lock())
        async with lock:
            user = self._bot_id_to_user.get(bot_id)
            if user is not None:
                return user

            try:
                resp = await self._client.bots_info(bot=bot_id)
            except (SlackApiError, SlackClientError, aiohttp.ClientError, OSError) as exc:
                logger.debug("Failed to fetch bot info for %s: %s", bot_id, exc)
                return {"id": bot_id, "name": bot_id, "real_name": bot_id, "is_bot": True}

            bot = resp.get("bot", {})
            app_id = bot.get("app_id", "")
            bot_name = bot.get("name", "") or bot_id

            user = self._app_id_to_user.get(app_id) if app_id else None
            if user is None and app_id:
                for candidate in self._users.users.values():
                    if (
                        candidate.get("is_bot", False)
                        and candidate.get("profile", {}).get("api_app_id", "") == app_id
                    ):
                        user = candidate
                        self._app_id_to_user[app_id] = candidate
                        logger.debug(
                            "Bot %s resolved to user %s via app %s",
                            bot_id,
                            candidate.get("id", ""),
                            app_id,
                        )
                        break

            if user is None:
                logger.debug("No user for bot %s (app %s), using bot name", bot_id, app_id)
                user = {
                    "id": bot_id,
                    "name": bot_name.lower(),
                    "real_name": bot_name,
                    "is_bot": True,
                }

            self._bot_id_to_user[bot_id] = user
            return user

    # --- snapshots ---

    def _load_users_snapshot(self) -> bool:
        path = self._config.users_cache_path
        try:
            records = read_snapshot(path)
        except SnapshotIOError as exc:
            logger.info("Users snapshot not loaded, will fetch: %s", exc)
            return False
        self._users = build_users_cache(records)
        logger.info("Loaded %d users from cache %s", len(self._users.users), path)
        return True

    def _load_channels_snapshot(self) -> bool:
        path = self._config.channels_cache_path
        try:
            records = read_snapshot(path)
            channels = [channel_from_record(rec) for rec in records]
        except SnapshotIOError as exc:
            logger.info("Channels snapshot not loaded, will fetch: %s", exc)
            return False
        except TypeError as exc:
            logger.warning("Channels snapshot %s has an unexpected schema: %s", path, exc)
            return False
        self._channels = build_channels_cache(channels)
        logger.info("Loaded %d channels from cache %s", len(self._channels.channels), path)
        return True

    def _load_emojis_snapshot(self) -> bool:
        path = self._config.emojis_cache_path
        try:
            records = read_snapshot(path)
            emojis = [emoji_from_record(rec) for rec in records]
        except SnapshotIOError as exc:
            logger.info("Emoji snapshot not loaded, will fetch: %s", exc)
            return False
        except TypeError as exc:
            logger.warning("Emoji snapshot %s has an unexpected schema: %s", path, exc)
            return False
        self._emojis = EmojiCache(emojis={e.name: e for e in emojis if e.name})
        logger.info("Loaded %d emoji from cache %s", len(self._emojis.emojis), path)
        return True

    def _save_snapshot(self, path: str, records: list[dict]) -> None:
        try:
            write_snapshot(path, records)
        except SnapshotIOError:
            logger.warning("Failed to save cache to disk", exc_info=True)
            return
        logger.info("Wrote %d records to cache %s", len(records), path)
