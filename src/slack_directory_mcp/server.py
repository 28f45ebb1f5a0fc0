from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import asynccontextmanager

from fastmcp import FastMCP

from slack_directory_mcp.cache import DirectoryCache
from slack_directory_mcp.config import load_config
from slack_directory_mcp.slack_client import SlackClient, workspace_from_url

logger = logging.getLogger("slack_directory_mcp")


@asynccontextmanager
async def lifespan(server: FastMCP):
    config = load_config()

    # Set up logging
    level = getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stderr,
    )

    logger.info("Starting Slack directory MCP server...")

    client = SlackClient(config.token, cookie=config.xoxd_cookie)

    # Auth test
    auth_mode = "cookie (xoxc)" if config.is_cookie_auth else ("bot" if config.is_bot_token else "user")
    logger.info("Authenticating with Slack API (mode=%s)...", auth_mode)
    auth = await client.auth_test()
    workspace = workspace_from_url(auth.get("url", ""))
    enterprise_id = auth.get("enterprise_id", "") or ""
    logger.info(
        "Authenticated: team=%s user=%s workspace=%s enterprise=%s",
        auth.get("team", ""),
        auth.get("user", ""),
        workspace,
        enterprise_id,
    )

    # Users and channels must be loaded before serving; a failure here is fatal
    cache = DirectoryCache(client, config)
    logger.info("Warming caches...")
    await asyncio.wait_for(
        cache.warm(team_id=auth.get("team_id", "")),
        timeout=config.refresh_timeout_seconds,
    )
    logger.info(
        "Caches ready (users=%s channels=%s emojis=%s)",
        cache.users_ready,
        cache.channels_ready,
        cache.emojis_ready,
    )

    # Store context for tools
    ctx = {
        "client": client,
        "cache": cache,
        "config": config,
        "workspace": workspace,
        "enterprise_id": enterprise_id,
        "user_id": auth.get("user_id", ""),
    }
    yield ctx


mcp = FastMCP("Slack Directory MCP Server", lifespan=lifespan)

# Importing tool modules triggers @mcp.tool() decorator registration
from slack_directory_mcp.tools import (  # noqa: E402, F401
    channels,
    emojis,
    users,
)

# Importing resource modules triggers @mcp.resource() decorator registration
from slack_directory_mcp.resources import (  # noqa: E402, F401
    channels as _channels_res,
    users as _users_res,
)
