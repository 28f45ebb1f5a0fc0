from __future__ import annotations


class SlackDirectoryError(Exception):
    """Base class for directory cache errors."""


class NotReadyError(SlackDirectoryError):
    entity = ""

    def __init__(self, entity: str = "") -> None:
        if entity:
            self.entity = entity
        super().__init__(
            f"{self.entity} cache is not ready yet, sync process is still running... please wait"
        )


class UsersNotReadyError(NotReadyError):
    entity = "users"


class ChannelsNotReadyError(NotReadyError):
    entity = "channels"


class EmojisNotReadyError(NotReadyError):
    entity = "emojis"


class RefreshFetchError(SlackDirectoryError):
    def __init__(self, entity: str, reason: str = "") -> None:
        self.entity = entity
        msg = f"failed to fetch {entity} from Slack"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class InvalidCursorError(SlackDirectoryError, ValueError):
    def __init__(self, cursor: str, reason: str = "") -> None:
        self.cursor = cursor
        msg = f"invalid cursor: {cursor!r}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class SnapshotIOError(SlackDirectoryError):
    def __init__(self, path: str, reason: str = "") -> None:
        self.path = path
        msg = f"snapshot {path!r} unavailable"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)
