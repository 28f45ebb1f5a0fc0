from __future__ import annotations

from fastmcp import Context

from slack_directory_mcp.cache import DirectoryCache
from slack_directory_mcp.formatting import page_metadata, to_csv
from slack_directory_mcp.pagination import clamp_limit
from slack_directory_mcp.query import query_emojis
from slack_directory_mcp.server import mcp
from slack_directory_mcp.types import EmojiInfo

EMOJI_FIELDS = ("name", "url", "is_custom", "aliases", "team_id", "user_id")


async def emoji_list(
    cache: DirectoryCache,
    *,
    query: str = "",
    emoji_type: str = "all",
    limit: int = 1000,
    cursor: str = "",
) -> str:
    page = query_emojis(
        cache,
        query=query,
        emoji_type=emoji_type,
        limit=clamp_limit(limit),
        cursor=cursor,
    )
    rows = [
        EmojiInfo(
            name=e.name,
            url=e.url,
            is_custom=e.is_custom,
            aliases="|".join(e.aliases),
            team_id=e.team_id,
            user_id=e.user_id,
        )
        for e in page.items
    ]
    return page_metadata("emojis", page.total, len(rows), page.next_cursor) + to_csv(
        EmojiInfo, rows, EMOJI_FIELDS
    )


# --- MCP tool wrapper ---


@mcp.tool(
    name="emoji_list",
    description="List available emoji for reactions, custom and standard.",
)
async def tool_emoji_list(
    query: str = "",
    type: str = "all",
    limit: int = 1000,
    cursor: str = "",
    ctx: Context = None,
) -> str:
    """List emoji.

    Args:
        query: Case-insensitive text matched against emoji names and aliases.
        type: 'all', 'custom' or 'unicode'. Default 'all'.
        limit: Max items (1-1000). Default 1000.
        cursor: Pagination cursor from previous response.
    """
    app_ctx = ctx.request_context.lifespan_context
    return await emoji_list(
        app_ctx["cache"],
        query=query,
        emoji_type=type,
        limit=limit,
        cursor=cursor,
    )
