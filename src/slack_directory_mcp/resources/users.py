from __future__ import annotations

from fastmcp import Context

from slack_directory_mcp.cache import DirectoryCache
from slack_directory_mcp.formatting import to_csv
from slack_directory_mcp.pagination import order_for_pagination
from slack_directory_mcp.sanitize import wrap_slack_content
from slack_directory_mcp.server import mcp
from slack_directory_mcp.types import UserInfo

USER_RESOURCE_FIELDS = ("id", "name", "real_name")


def get_users_resource(cache: DirectoryCache) -> str:
    cache.ensure_ready()
    users = order_for_pagination(
        cache.users.users.values(), key=lambda u: u.get("id", ""), presorted=False
    )
    result = [
        UserInfo(
            id=user.get("id", ""),
            name=wrap_slack_content(user.get("name", "")),
            real_name=wrap_slack_content(user.get("real_name", "")),
        )
        for user in users
    ]
    return to_csv(UserInfo, result, USER_RESOURCE_FIELDS)


# --- MCP resource wrapper ---


@mcp.resource("slack://{workspace}/users", mime_type="text/csv")
async def resource_users(workspace: str, ctx: Context = None) -> str:
    """Directory of Slack users."""
    app_ctx = ctx.request_context.lifespan_context
    return get_users_resource(app_ctx["cache"])
