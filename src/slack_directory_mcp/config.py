from __future__ import annotations

import os
import sys
from dataclasses import dataclass


@dataclass(frozen=True)
class Config:
    token: str
    is_bot_token: bool
    xoxd_cookie: str = ""
    log_level: str = "info"
    cache_dir: str = ""
    users_cache_path: str = ""
    channels_cache_path: str = ""
    emojis_cache_path: str = ""
    rate_limit_per_minute: int = 20
    refresh_timeout_seconds: int = 300

    @property
    def is_cookie_auth(self) -> bool:
        return bool(self.xoxd_cookie)


def load_config() -> Config:
    xoxp = os.environ.get("SLACK_MCP_XOXP_TOKEN", "")
    xoxb = os.environ.get("SLACK_MCP_XOXB_TOKEN", "")
    xoxc = os.environ.get("SLACK_MCP_XOXC_TOKEN", "")
    xoxd = os.environ.get("SLACK_MCP_XOXD_TOKEN", "")

    if xoxp:
        token = xoxp
        is_bot = False
        xoxd_cookie = ""
    elif xoxb:
        token = xoxb
        is_bot = True
        xoxd_cookie = ""
    elif xoxc and xoxd:
        token = xoxc
        is_bot = False
        xoxd_cookie = xoxd
    elif xoxc or xoxd:
        print(
            "Fatal: SLACK_MCP_XOXC_TOKEN and SLACK_MCP_XOXD_TOKEN must both be set for cookie auth",
            file=sys.stderr,
        )
        sys.exit(1)
    else:
        print(
            "Fatal: set SLACK_MCP_XOXP_TOKEN, SLACK_MCP_XOXB_TOKEN, or both SLACK_MCP_XOXC_TOKEN and SLACK_MCP_XOXD_TOKEN",
            file=sys.stderr,
        )
        sys.exit(1)

    cache_dir = _get_cache_dir()

    # Channel records from cookie sessions carry the extended boot-data schema
    channels_file = "channels_cache_v2.json" if xoxd_cookie else "channels_cache.json"

    users_cache = os.environ.get(
        "SLACK_MCP_USERS_CACHE",
        os.path.join(cache_dir, "users_cache.json"),
    )
    channels_cache = os.environ.get(
        "SLACK_MCP_CHANNELS_CACHE",
        os.path.join(cache_dir, channels_file),
    )
    emojis_cache = os.environ.get(
        "SLACK_MCP_EMOJIS_CACHE",
        os.path.join(cache_dir, "emojis_cache.json"),
    )

    return Config(
        token=token,
        is_bot_token=is_bot,
        xoxd_cookie=xoxd_cookie,
        log_level=os.environ.get("SLACK_MCP_LOG_LEVEL", "info").lower(),
        cache_dir=cache_dir,
        users_cache_path=users_cache,
        channels_cache_path=channels_cache,
        emojis_cache_path=emojis_cache,
        rate_limit_per_minute=_parse_rate_limit(
            os.environ.get("SLACK_MCP_RATE_LIMIT", "")
        ),
        refresh_timeout_seconds=_parse_duration(
            os.environ.get("SLACK_MCP_REFRESH_TIMEOUT", ""), default=300
        ),
    )


def _parse_rate_limit(val: str) -> int:
    if not val:
        return 20
    try:
        per_minute = int(val)
    except ValueError:
        return 20
    return per_minute if per_minute > 0 else 20


def _parse_duration(val: str, *, default: int) -> int:
    if not val:
        return default

    # Try as plain integer (seconds)
    try:
        secs = int(val)
        return secs if secs > 0 else default
    except ValueError:
        pass

    # Try as duration string like "1h", "30m", "300s"
    multipliers = {"h": 3600, "m": 60, "s": 1}
    unit = val[-1:]
    if unit not in multipliers:
        return default
    try:
        secs = int(val[:-1]) * multipliers[unit]
    except ValueError:
        return default
    return secs if secs > 0 else default


def _get_cache_dir() -> str:
    explicit = os.environ.get("SLACK_MCP_CACHE_DIR", "")
    if explicit:
        return explicit
    cache_home = os.environ.get("XDG_CACHE_HOME", "")
    if not cache_home:
        cache_home = os.path.join(os.path.expanduser("~"), ".cache")
    return os.path.join(cache_home, "slack-directory-mcp")
