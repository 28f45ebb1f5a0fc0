from __future__ import annotations

import logging

import aiohttp
from fastmcp import Context
from slack_sdk.errors import SlackApiError, SlackClientError

from slack_directory_mcp.cache import DirectoryCache
from slack_directory_mcp.formatting import page_metadata, parse_fields, rows_to_csv, to_csv
from slack_directory_mcp.pagination import clamp_limit
from slack_directory_mcp.query import classify_user, is_admin, org_overview, query_users, user_stats
from slack_directory_mcp.sanitize import wrap_slack_content
from slack_directory_mcp.server import mcp
from slack_directory_mcp.slack_client import SlackClient
from slack_directory_mcp.types import UserDetail, UserInfo

logger = logging.getLogger(__name__)

USER_FIELDS = (
    "id",
    "name",
    "real_name",
    "email",
    "status",
    "is_bot",
    "is_admin",
    "time_zone",
    "title",
    "phone",
    "enterprise_id",
    "enterprise_name",
    "team_id",
    "is_org_member",
)
DEFAULT_USER_FIELDS = ("id", "name", "real_name", "status")
USER_FIELD_ALIASES = {
    "realname": "real_name",
    "isbot": "is_bot",
    "isadmin": "is_admin",
    "timezone": "time_zone",
}

USER_DETAIL_FIELDS = tuple(UserDetail.model_fields)
DEFAULT_USER_DETAIL_FIELDS = (
    "id",
    "name",
    "real_name",
    "display_name",
    "email",
    "title",
    "status_text",
    "is_admin",
    "is_bot",
)


def _user_row(user: dict, enterprise_id: str) -> UserInfo:
    profile = user.get("profile", {})
    enterprise = user.get("enterprise_user", {})
    is_org_member, _, _ = classify_user(user, enterprise_id)
    return UserInfo(
        id=user.get("id", ""),
        name=wrap_slack_content(user.get("name", "")),
        real_name=wrap_slack_content(user.get("real_name", "")),
        email=profile.get("email", ""),
        status="deleted" if user.get("deleted", False) else "active",
        is_bot=user.get("is_bot", False),
        is_admin=is_admin(user),
        time_zone=user.get("tz", ""),
        title=profile.get("title", ""),
        phone=profile.get("phone", ""),
        enterprise_id=enterprise.get("enterprise_id", ""),
        enterprise_name=enterprise.get("enterprise_name", ""),
        team_id=user.get("team_id", ""),
        is_org_member=is_org_member,
    )


async def users_list(
    cache: DirectoryCache,
    *,
    enterprise_id: str = "",
    query: str = "",
    user_type: str = "all",
    filter: str = "all",
    fields: str = "id,name,real_name,status",
    include_deleted: bool = False,
    include_bots: bool = True,
    limit: int = 1000,
    cursor: str = "",
) -> str:
    limit = clamp_limit(limit)
    selected = parse_fields(
        fields,
        allowed=USER_FIELDS,
        defaults=DEFAULT_USER_FIELDS,
        aliases=USER_FIELD_ALIASES,
    )

    page = query_users(
        cache,
        query=query,
        user_type=user_type,
        status_filter=filter,
        include_deleted=include_deleted,
        include_bots=include_bots,
        enterprise_id=enterprise_id,
        limit=limit,
        cursor=cursor,
    )
    stats = user_stats(cache.users.users.values(), enterprise_id)

    lines: list[str] = []
    if stats.enterprise_name:
        lines.append(f"# Organization: {stats.enterprise_name}")
    lines.append(f"# Total in cache: {stats.total_in_cache}")
    lines.append(
        f"#   Org Members: {stats.org_member_active} active, "
        f"{stats.org_member_deactivated} deactivated"
    )
    lines.append(
        f"#   External (Slack Connect): {stats.external_active} active, "
        f"{stats.external_deactivated} deactivated"
    )
    lines.append(f"#   Bots: {stats.bots}")
    lines.append("#")
    if not include_deleted and stats.deactivated:
        lines.append(
            f"# Hidden: {stats.deactivated} deactivated (use include_deleted=true to see)"
        )
    if not include_bots and stats.bots:
        lines.append(f"# Hidden: {stats.bots} bots (include_bots defaults to true)")

    rows = [_user_row(u, enterprise_id) for u in page.items]
    return (
        "\n".join(lines)
        + "\n"
        + page_metadata("users", page.total, len(rows), page.next_cursor)
        + to_csv(UserInfo, rows, selected)
    )


async def _lookup_user(client: SlackClient, cache: DirectoryCache, user_id: str) -> dict:
    if user_id.startswith("B"):
        return await cache.resolve_bot(user_id)

    try:
        resp = await client.users_info(user=user_id)
        return resp.get("user", {})
    except (SlackApiError, SlackClientError, aiohttp.ClientError) as exc:
        cached = cache.users.users.get(user_id)
        if cached is None:
            raise ValueError(f"failed to get user info for {user_id}: {exc}") from exc
        logger.warning("users.info failed for %s, using cached record: %s", user_id, exc)
        return cached


async def user_info(
    client: SlackClient,
    cache: DirectoryCache,
    *,
    user_id: str,
    fields: str = "",
) -> str:
    user_id = user_id.strip()
    if not user_id:
        raise ValueError("user_id must be provided")

    cache.ensure_ready()

    if user_id.startswith("@"):
        resolved = cache.resolve_user_id(user_id)
        if not resolved:
            raise ValueError(f"user {user_id} not found")
        user_id = resolved

    user = await _lookup_user(client, cache, user_id)
    profile = user.get("profile", {})
    enterprise = user.get("enterprise_user", {})

    detail = UserDetail(
        id=user.get("id", user_id),
        team_id=user.get("team_id", ""),
        name=wrap_slack_content(user.get("name", "")),
        deleted=user.get("deleted", False),
        real_name=wrap_slack_content(user.get("real_name", "")),
        display_name=wrap_slack_content(profile.get("display_name", "")),
        email=profile.get("email", ""),
        phone=profile.get("phone", ""),
        title=profile.get("title", ""),
        status_text=wrap_slack_content(profile.get("status_text", "")),
        status_emoji=profile.get("status_emoji", ""),
        tz=user.get("tz", ""),
        tz_label=user.get("tz_label", ""),
        locale=user.get("locale", ""),
        is_admin=user.get("is_admin", False),
        is_owner=user.get("is_owner", False),
        is_restricted=user.get("is_restricted", False),
        is_bot=user.get("is_bot", False),
        image_192=profile.get("image_192", ""),
        enterprise_id=enterprise.get("enterprise_id", ""),
        enterprise_name=enterprise.get("enterprise_name", ""),
    )

    selected = parse_fields(
        fields or ",".join(DEFAULT_USER_DETAIL_FIELDS),
        allowed=USER_DETAIL_FIELDS,
        defaults=DEFAULT_USER_DETAIL_FIELDS,
    )
    header = f"# User: {user.get('real_name', '') or user.get('name', '')} ({detail.id})\n"
    header += f"# Fields returned: {len(selected)}\n"
    return header + to_csv(UserDetail, [detail], selected)


async def get_org_overview(cache: DirectoryCache, *, enterprise_id: str = "") -> str:
    cache.ensure_ready()

    overview = org_overview(cache.users.users.values(), enterprise_id)
    stats = overview.stats

    lines: list[str] = []
    if stats.enterprise_name:
        lines.append(f"# Organization: {stats.enterprise_name} ({enterprise_id})")
    else:
        lines.append("# Organization Overview")
    lines.append("")
    lines.append("## User Breakdown")
    lines.append("")
    lines.append(f"Org Member Active:       {stats.org_member_active}")
    lines.append(f"Org Member Deactivated:  {stats.org_member_deactivated}")
    lines.append(
        f"External (Connect):      {stats.external_active + stats.external_deactivated}"
    )
    lines.append(f"Bots:                    {stats.bots}")
    lines.append("---")
    lines.append(f"Total:                   {stats.total_in_cache}")
    lines.append("")
    lines.append("## By Title (Org Members Only)")
    lines.append("")
    return "\n".join(lines) + "\n" + rows_to_csv(("Title", "Count"), overview.title_counts)


# --- MCP tool wrappers ---


@mcp.tool(
    name="users_list",
    description="List users in the workspace directory with org member vs external counts.",
)
async def tool_users_list(
    query: str = "",
    user_type: str = "all",
    filter: str = "all",
    fields: str = "id,name,real_name,status",
    include_deleted: bool = False,
    include_bots: bool = True,
    limit: int = 1000,
    cursor: str = "",
    ctx: Context = None,
) -> str:
    """List users.

    Args:
        query: Case-insensitive text matched against username, real name and display name.
        user_type: 'all', 'org_member', 'external' or 'deleted' (deactivated org members).
        filter: 'all', 'active', 'deleted', 'bots', 'humans' or 'admins'.
        fields: Comma-separated columns, or 'all'.
        include_deleted: Include deactivated users. Default false.
        include_bots: Include bot users. Default true.
        limit: Max items (1-1000). Default 1000.
        cursor: Pagination cursor from previous response.
    """
    app_ctx = ctx.request_context.lifespan_context
    return await users_list(
        app_ctx["cache"],
        enterprise_id=app_ctx["enterprise_id"],
        query=query,
        user_type=user_type,
        filter=filter,
        fields=fields,
        include_deleted=include_deleted,
        include_bots=include_bots,
        limit=limit,
        cursor=cursor,
    )


@mcp.tool(
    name="user_info",
    description="Get details for one user by ID (U...), username (@name) or bot ID (B...).",
)
async def tool_user_info(
    user_id: str,
    fields: str = "",
    ctx: Context = None,
) -> str:
    """Get user info.

    Args:
        user_id: User ID, @username, or bot ID.
        fields: Comma-separated columns, or 'all'.
    """
    app_ctx = ctx.request_context.lifespan_context
    return await user_info(
        app_ctx["client"],
        app_ctx["cache"],
        user_id=user_id,
        fields=fields,
    )


@mcp.tool(
    name="org_overview",
    description="Summarize the organization's user composition and titles of active members.",
)
async def tool_org_overview(ctx: Context = None) -> str:
    app_ctx = ctx.request_context.lifespan_context
    return await get_org_overview(
        app_ctx["cache"], enterprise_id=app_ctx["enterprise_id"]
    )
