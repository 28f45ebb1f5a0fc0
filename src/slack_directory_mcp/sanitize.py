from __future__ import annotations

_OPEN = "[SLACK_CONTENT]"
_CLOSE = "[/SLACK_CONTENT]"


def wrap_slack_content(text: str) -> str:
    """Mark user-authored directory text (names, topics, purposes) as data.

    Markers already present in the text are dropped so content cannot close
    the wrapper early.
    """
    if not text:
        return text
    text = text.replace(_OPEN, "").replace(_CLOSE, "")
    return f"{_OPEN}{text}{_CLOSE}"
