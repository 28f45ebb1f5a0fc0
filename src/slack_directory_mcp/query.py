"""Search, filter and sort stages applied to cache snapshots before paging.

Every stage works on the full matching set so the totals reported next to
a page are pre-pagination counts and page boundaries stay stable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from slack_directory_mcp.cache import (
    ALL_CHANNEL_TYPES,
    CachedChannel,
    CachedEmoji,
    DirectoryCache,
)
from slack_directory_mcp.pagination import Page, order_for_pagination, paginate

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL_TYPES = ("public_channel", "private_channel")
USER_TYPES = frozenset({"all", "org_member", "external", "deleted"})
USER_FILTERS = frozenset({"all", "active", "deleted", "bots", "humans", "admins"})
EMOJI_TYPES = frozenset({"all", "custom", "unicode"})


@dataclass
class UserStats:
    total_in_cache: int = 0
    org_member_active: int = 0
    org_member_deactivated: int = 0
    external_active: int = 0
    external_deactivated: int = 0
    bots: int = 0
    enterprise_name: str = ""

    @property
    def deactivated(self) -> int:
        return self.org_member_deactivated + self.external_deactivated


@dataclass
class OrgOverview:
    stats: UserStats
    title_counts: list[tuple[str, int]] = field(default_factory=list)


def _contains(needle: str, *haystacks: str) -> bool:
    return any(needle in (h or "").lower() for h in haystacks)


# --- channels ---


def parse_channel_types(channel_types: str) -> list[str]:
    requested: list[str] = []
    for t in channel_types.split(","):
        t = t.strip()
        if t in ALL_CHANNEL_TYPES:
            if t not in requested:
                requested.append(t)
        elif t:
            logger.warning("Invalid channel type ignored: %s", t)
    if not requested:
        requested = list(DEFAULT_CHANNEL_TYPES)
    return requested


def search_channels(channels: Iterable[CachedChannel], query: str) -> list[CachedChannel]:
    if not query:
        return list(channels)
    needle = query.lower()
    return [ch for ch in channels if _contains(needle, ch.name, ch.topic, ch.purpose)]


def filter_channels_by_types(
    channels: Iterable[CachedChannel], types: Iterable[str]
) -> list[CachedChannel]:
    type_set = set(types)
    result: list[CachedChannel] = []

    for ch in channels:
        if (
            "public_channel" in type_set
            and not ch.is_private
            and not ch.is_im
            and not ch.is_mpim
        ):
            result.append(ch)
        elif (
            "private_channel" in type_set
            and ch.is_private
            and not ch.is_im
            and not ch.is_mpim
        ):
            result.append(ch)
        elif "im" in type_set and ch.is_im:
            result.append(ch)
        elif "mpim" in type_set and ch.is_mpim:
            result.append(ch)

    return result


def query_channels(
    cache: DirectoryCache,
    *,
    query: str = "",
    channel_types: str = "public_channel",
    min_members: int = 0,
    sort: str = "popularity",
    limit: int,
    cursor: str = "",
) -> Page[CachedChannel]:
    cache.ensure_ready()

    channels = search_channels(cache.channels.channels.values(), query.strip())
    channels = filter_channels_by_types(channels, parse_channel_types(channel_types))
    if min_members > 0:
        channels = [ch for ch in channels if ch.member_count >= min_members]

    if sort == "popularity":
        channels.sort(key=lambda c: (-c.member_count, c.id))
        ordered = order_for_pagination(channels, key=lambda c: c.id, presorted=True)
    else:
        ordered = order_for_pagination(channels, key=lambda c: c.id, presorted=False)

    logger.debug("Channels matching: %d (sort=%s)", len(ordered), sort)
    return paginate(ordered, cursor, limit, id_key=lambda c: c.id)


# --- users ---


def classify_user(user: dict, enterprise_id: str) -> tuple[bool, bool, bool]:
    """Return ``(is_org_member, is_external, is_bot)`` for a Slack user."""
    if user.get("is_bot", False):
        return False, False, True

    user_enterprise = user.get("enterprise_user", {}).get("enterprise_id", "")

    if enterprise_id and user_enterprise == enterprise_id:
        return True, False, False

    # Slack Connect users carry another org's enterprise ID as team
    if user.get("team_id", "").startswith("E"):
        return False, True, False

    if user_enterprise and user_enterprise != enterprise_id:
        return False, True, False

    if enterprise_id and not user_enterprise:
        return False, True, False

    return True, False, False


def is_admin(user: dict) -> bool:
    return bool(
        user.get("is_admin", False)
        or user.get("is_owner", False)
        or user.get("is_primary_owner", False)
    )


def user_stats(users: Iterable[dict], enterprise_id: str) -> UserStats:
    stats = UserStats()
    for user in users:
        stats.total_in_cache += 1
        is_org_member, is_external, is_bot = classify_user(user, enterprise_id)
        deleted = user.get("deleted", False)
        if is_bot:
            stats.bots += 1
        elif is_org_member:
            if deleted:
                stats.org_member_deactivated += 1
            else:
                stats.org_member_active += 1
            if not stats.enterprise_name:
                stats.enterprise_name = user.get("enterprise_user", {}).get(
                    "enterprise_name", ""
                )
        elif is_external:
            if deleted:
                stats.external_deactivated += 1
            else:
                stats.external_active += 1
    return stats


def search_users(users: Iterable[dict], query: str) -> list[dict]:
    if not query:
        return list(users)
    needle = query.lower()
    result: list[dict] = []
    for user in users:
        profile = user.get("profile", {})
        if _contains(
            needle,
            user.get("name", ""),
            user.get("real_name", ""),
            profile.get("display_name", ""),
            profile.get("real_name", ""),
        ):
            result.append(user)
    return result


def _matches_user_type(user: dict, user_type: str, enterprise_id: str) -> bool:
    if user_type not in ("org_member", "external", "deleted"):
        return True
    is_org_member, is_external, _ = classify_user(user, enterprise_id)
    if user_type == "org_member":
        return is_org_member
    if user_type == "external":
        return is_external
    # former employees: deactivated org members only
    return is_org_member and user.get("deleted", False)


def _matches_filter(user: dict, status_filter: str) -> bool:
    deleted = user.get("deleted", False)
    is_bot = user.get("is_bot", False)
    if status_filter == "active":
        return not deleted
    if status_filter == "deleted":
        return deleted
    if status_filter == "bots":
        return is_bot
    if status_filter == "humans":
        return not is_bot
    if status_filter == "admins":
        return is_admin(user)
    return True


def filter_users(
    users: Iterable[dict],
    *,
    user_type: str = "all",
    status_filter: str = "all",
    include_deleted: bool = False,
    include_bots: bool = True,
    enterprise_id: str = "",
) -> list[dict]:
    result: list[dict] = []
    for user in users:
        if not _matches_user_type(user, user_type, enterprise_id):
            continue
        if user.get("deleted", False) and not include_deleted and user_type != "deleted":
            continue
        if user.get("is_bot", False) and not include_bots:
            continue
        if not _matches_filter(user, status_filter):
            continue
        result.append(user)
    return result


def query_users(
    cache: DirectoryCache,
    *,
    query: str = "",
    user_type: str = "all",
    status_filter: str = "all",
    include_deleted: bool = False,
    include_bots: bool = True,
    enterprise_id: str = "",
    limit: int,
    cursor: str = "",
) -> Page[dict]:
    cache.ensure_ready()

    users = search_users(cache.users.users.values(), query.strip())
    users = filter_users(
        users,
        user_type=user_type,
        status_filter=status_filter,
        include_deleted=include_deleted,
        include_bots=include_bots,
        enterprise_id=enterprise_id,
    )
    ordered = order_for_pagination(users, key=lambda u: u.get("id", ""), presorted=False)

    logger.debug("Users matching: %d", len(ordered))
    return paginate(ordered, cursor, limit, id_key=lambda u: u.get("id", ""))


def org_overview(users: Iterable[dict], enterprise_id: str) -> OrgOverview:
    users = list(users)
    stats = user_stats(users, enterprise_id)

    titles: dict[str, int] = {}
    for user in users:
        is_org_member, _, _ = classify_user(user, enterprise_id)
        if not is_org_member or user.get("deleted", False):
            continue
        title = user.get("profile", {}).get("title", "") or "(no title)"
        titles[title] = titles.get(title, 0) + 1

    title_counts = sorted(titles.items(), key=lambda kv: (-kv[1], kv[0]))
    return OrgOverview(stats=stats, title_counts=title_counts)


# --- emoji ---


def search_emojis(emojis: Iterable[CachedEmoji], query: str) -> list[CachedEmoji]:
    if not query:
        return list(emojis)
    needle = query.lower()
    return [e for e in emojis if _contains(needle, e.name, *e.aliases)]


def filter_emojis_by_type(emojis: Iterable[CachedEmoji], emoji_type: str) -> list[CachedEmoji]:
    if emoji_type == "custom":
        return [e for e in emojis if e.is_custom]
    if emoji_type == "unicode":
        return [e for e in emojis if not e.is_custom]
    return list(emojis)


def query_emojis(
    cache: DirectoryCache,
    *,
    query: str = "",
    emoji_type: str = "all",
    limit: int,
    cursor: str = "",
) -> Page[CachedEmoji]:
    cache.ensure_emojis_ready()

    emojis = search_emojis(cache.emojis.emojis.values(), query.strip())
    emojis = filter_emojis_by_type(emojis, emoji_type)
    ordered = order_for_pagination(emojis, key=lambda e: e.name, presorted=False)

    logger.debug("Emoji matching: %d", len(ordered))
    return paginate(ordered, cursor, limit, id_key=lambda e: e.name)
