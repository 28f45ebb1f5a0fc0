from __future__ import annotations

import time
from urllib.parse import urlparse

from slack_sdk.http_retry.builtin_async_handlers import AsyncRateLimitErrorRetryHandler
from slack_sdk.web.async_client import AsyncWebClient


_BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)


class SlackClient:
    """Async facade over the Slack Web API used by the directory cache.

    ``supports_client_boot`` is resolved once here: ``client.userBoot`` only
    answers browser session (xoxc + d cookie) credentials.
    """

    supports_client_boot: bool = False

    def __init__(self, token: str, cookie: str = "") -> None:
        headers: dict[str, str] = {}
        if cookie:
            headers["cookie"] = f"d={cookie}; d-s={int(time.time()) - 10}"
            headers["User-Agent"] = _BROWSER_USER_AGENT
        self._client = AsyncWebClient(token=token, headers=headers)
        self._client.retry_handlers.append(AsyncRateLimitErrorRetryHandler(max_retry_count=3))
        self.supports_client_boot = bool(cookie)

    async def auth_test(self) -> dict:
        resp = await self._client.auth_test()
        return resp.data

    async def users_list(self, *, cursor: str = "", limit: int = 200) -> dict:
        kwargs: dict = {"limit": limit}
        if cursor:
            kwargs["cursor"] = cursor
        resp = await self._client.users_list(**kwargs)
        return resp.data

    async def users_info(self, *, user: str) -> dict:
        resp = await self._client.users_info(user=user)
        return resp.data

    async def users_info_batch(self, *, users: list[str]) -> dict:
        # users.info accepts a comma separated "users" list, not exposed by slack_sdk
        resp = await self._client.api_call(
            "users.info", params={"users": ",".join(users)}
        )
        return resp.data

    async def conversations_list(
        self,
        *,
        types: str = "public_channel",
        limit: int = 200,
        cursor: str = "",
        exclude_archived: bool = True,
    ) -> dict:
        kwargs: dict = {
            "types": types,
            "limit": limit,
            "exclude_archived": exclude_archived,
        }
        if cursor:
            kwargs["cursor"] = cursor
        resp = await self._client.conversations_list(**kwargs)
        return resp.data

    async def conversations_info(self, *, channel: str) -> dict:
        resp = await self._client.conversations_info(channel=channel)
        return resp.data

    async def conversations_members(
        self, *, channel: str, cursor: str = "", limit: int = 100
    ) -> dict:
        kwargs: dict = {"channel": channel, "limit": limit}
        if cursor:
            kwargs["cursor"] = cursor
        resp = await self._client.conversations_members(**kwargs)
        return resp.data

    async def emoji_list(self) -> dict:
        resp = await self._client.emoji_list()
        return resp.data

    async def bots_info(self, *, bot: str) -> dict:
        resp = await self._client.bots_info(bot=bot)
        return resp.data

    async def client_user_boot(self) -> dict:
        if not self.supports_client_boot:
            raise RuntimeError("client.userBoot requires cookie (xoxc) authentication")
        resp = await self._client.api_call(
            "client.userBoot",
            data={
                "only_self_subteams": "true",
                "flannel_api_ver": "4",
                "include_min_version_bump_check": "1",
                "version_ts": "0",
            },
        )
        return resp.data


def workspace_from_url(url: str) -> str:
    """Workspace subdomain from an ``auth.test`` URL, e.g. ``acme`` for acme.slack.com."""
    subdomain, _, domain = (urlparse(url).hostname or "").partition(".")
    if not subdomain or "." not in domain:
        raise ValueError(f"invalid Slack URL: {url!r}")
    return subdomain
