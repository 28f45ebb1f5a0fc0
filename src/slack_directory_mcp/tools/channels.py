from __future__ import annotations

import logging

import aiohttp
from fastmcp import Context
from slack_sdk.errors import SlackApiError, SlackClientError

from slack_directory_mcp.cache import DirectoryCache
from slack_directory_mcp.formatting import page_metadata, parse_fields, to_csv
from slack_directory_mcp.pagination import clamp_limit
from slack_directory_mcp.query import query_channels
from slack_directory_mcp.sanitize import wrap_slack_content
from slack_directory_mcp.server import mcp
from slack_directory_mcp.slack_client import SlackClient
from slack_directory_mcp.types import ChannelInfo, MemberInfo

logger = logging.getLogger(__name__)

CHANNEL_FIELDS = ("id", "name", "topic", "purpose", "member_count")
DEFAULT_CHANNEL_FIELDS = ("id", "name")
MEMBER_FIELDS = ("user_id", "user_name", "real_name", "is_bot", "is_admin", "status")


async def channels_list(
    cache: DirectoryCache,
    *,
    channel_types: str = "public_channel",
    query: str = "",
    fields: str = "id,name",
    min_members: int = 0,
    sort: str = "popularity",
    limit: int = 1000,
    cursor: str = "",
) -> str:
    limit = clamp_limit(limit)
    selected = parse_fields(
        fields,
        allowed=CHANNEL_FIELDS,
        defaults=DEFAULT_CHANNEL_FIELDS,
        aliases={"membercount": "member_count"},
    )

    page = query_channels(
        cache,
        query=query,
        channel_types=channel_types,
        min_members=min_members,
        sort=sort,
        limit=limit,
        cursor=cursor,
    )

    rows = [
        ChannelInfo(
            id=ch.id,
            name=ch.name,
            topic=wrap_slack_content(ch.topic),
            purpose=wrap_slack_content(ch.purpose),
            member_count=ch.member_count,
        )
        for ch in page.items
    ]

    logger.debug(
        "channels_list returned %d of %d (has_more=%s)",
        len(rows),
        page.total,
        page.has_more,
    )
    return page_metadata("channels", page.total, len(rows), page.next_cursor) + to_csv(
        ChannelInfo, rows, selected
    )


def _member_status(user: dict) -> str:
    if user.get("deleted", False):
        return "deleted"
    if user.get("is_bot", False):
        return "bot"
    if user.get("is_restricted", False):
        return "restricted"
    if user.get("is_ultra_restricted", False):
        return "guest"
    return "active"


def _member_row(cache: DirectoryCache, user_id: str) -> MemberInfo:
    user = cache.users.users.get(user_id)
    if user is None:
        return MemberInfo(
            user_id=user_id,
            user_name="unknown",
            real_name="Unknown User",
            status="unknown",
        )
    return MemberInfo(
        user_id=user.get("id", user_id),
        user_name=wrap_slack_content(user.get("name", "")),
        real_name=wrap_slack_content(user.get("real_name", "")),
        is_bot=user.get("is_bot", False),
        is_admin=user.get("is_admin", False),
        status=_member_status(user),
    )


async def channel_members(
    client: SlackClient,
    cache: DirectoryCache,
    *,
    channel_id: str,
    self_user_id: str = "",
    limit: int = 100,
    cursor: str = "",
) -> str:
    """Members of a channel, group DM or DM, enriched from the users cache.

    A DM lists the authenticated user and the other participant. Anything
    else pages ``conversations.members`` with Slack's own cursor.
    """
    channel_id = channel_id.strip()
    if not channel_id:
        raise ValueError("channel_id must be provided")

    cache.ensure_ready()

    if channel_id.startswith(("#", "@")):
        resolved = cache.resolve_channel_id(channel_id)
        if not resolved:
            raise ValueError(f"channel {channel_id!r} not found")
        channel_id = resolved

    limit = clamp_limit(limit, default=100)
    channel = cache.channels.channels.get(channel_id)
    next_cursor = ""

    try:
        if channel is not None and channel.is_im:
            other = channel.user
            if not other:
                info = await client.conversations_info(channel=channel_id)
                other = info.get("channel", {}).get("user", "")
            user_ids = [self_user_id] if self_user_id else []
            if other and other != self_user_id:
                user_ids.append(other)
        else:
            resp = await client.conversations_members(
                channel=channel_id, cursor=cursor, limit=limit
            )
            user_ids = list(resp.get("members", []))
            next_cursor = resp.get("response_metadata", {}).get("next_cursor", "")
    except (SlackApiError, SlackClientError, aiohttp.ClientError) as exc:
        raise ValueError(f"failed to get members of {channel_id}: {exc}") from exc

    rows = [_member_row(cache, uid) for uid in user_ids]
    logger.debug(
        "channel_members %s returned %d (has_more=%s)", channel_id, len(rows), bool(next_cursor)
    )

    header = f"# Channel: {channel_id}\n"
    header += f"# Total members returned: {len(rows)}\n"
    if next_cursor:
        header += f"# Next cursor: {next_cursor}\n"
    else:
        header += "# Next cursor: (none - all members returned)\n"
    return header + to_csv(MemberInfo, rows, MEMBER_FIELDS)


# --- MCP tool wrappers ---


@mcp.tool(
    name="channels_list",
    description="List channels, DMs, and group DMs from the workspace directory.",
)
async def tool_channels_list(
    channel_types: str = "public_channel",
    query: str = "",
    fields: str = "id,name",
    min_members: int = 0,
    sort: str = "popularity",
    limit: int = 1000,
    cursor: str = "",
    ctx: Context = None,
) -> str:
    """List channels.

    Args:
        channel_types: Comma-separated types: public_channel, private_channel, im, mpim.
        query: Case-insensitive text matched against name, topic and purpose.
        fields: Comma-separated columns: id, name, topic, purpose, member_count, or 'all'.
        min_members: Only channels with at least this many members.
        sort: 'popularity' (member count, descending) or 'id'.
        limit: Max items (1-1000). Default 1000.
        cursor: Pagination cursor from previous response.
    """
    app_ctx = ctx.request_context.lifespan_context
    return await channels_list(
        app_ctx["cache"],
        channel_types=channel_types,
        query=query,
        fields=fields,
        min_members=min_members,
        sort=sort,
        limit=limit,
        cursor=cursor,
    )


@mcp.tool(
    name="list_channel_members",
    description="List members of a channel, DM, or group DM with their directory status.",
)
async def tool_list_channel_members(
    channel_id: str,
    limit: int = 100,
    cursor: str = "",
    ctx: Context = None,
) -> str:
    """List channel members.

    Args:
        channel_id: Channel ID (C..., D..., G...) or name (#general, @user_dm).
        limit: Max members (1-1000). Default 100.
        cursor: Pagination cursor from previous response.
    """
    app_ctx = ctx.request_context.lifespan_context
    return await channel_members(
        app_ctx["client"],
        app_ctx["cache"],
        channel_id=channel_id,
        self_user_id=app_ctx["user_id"],
        limit=limit,
        cursor=cursor,
    )
