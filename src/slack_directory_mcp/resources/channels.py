from __future__ import annotations

from fastmcp import Context

from slack_directory_mcp.cache import DirectoryCache
from slack_directory_mcp.formatting import to_csv
from slack_directory_mcp.pagination import order_for_pagination
from slack_directory_mcp.sanitize import wrap_slack_content
from slack_directory_mcp.server import mcp
from slack_directory_mcp.types import ChannelInfo

CHANNEL_RESOURCE_FIELDS = ("id", "name", "topic", "purpose", "member_count")


def get_channels_resource(cache: DirectoryCache) -> str:
    cache.ensure_ready()
    channels = order_for_pagination(
        cache.channels.channels.values(), key=lambda c: c.id, presorted=False
    )
    result = [
        ChannelInfo(
            id=ch.id,
            name=ch.name,
            topic=wrap_slack_content(ch.topic),
            purpose=wrap_slack_content(ch.purpose),
            member_count=ch.member_count,
        )
        for ch in channels
    ]
    return to_csv(ChannelInfo, result, CHANNEL_RESOURCE_FIELDS)


# --- MCP resource wrapper ---


@mcp.resource("slack://{workspace}/channels", mime_type="text/csv")
async def resource_channels(workspace: str, ctx: Context = None) -> str:
    """Directory of Slack channels."""
    app_ctx = ctx.request_context.lifespan_context
    return get_channels_resource(app_ctx["cache"])
