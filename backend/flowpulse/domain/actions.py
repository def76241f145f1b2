"""Server-side action kinds."""

from enum import Enum
from typing import Any, Optional


class ActionKind(str, Enum):
    WEBHOOK = "webhook"
    TRACK_EVENT = "track_event"
    ADD_TAG = "add_tag"
    REMOVE_TAG = "remove_tag"


# Node titles as authored in the workflow builder.
_TITLES = {
    "webhook": ActionKind.WEBHOOK,
    "send webhook": ActionKind.WEBHOOK,
    "track event": ActionKind.TRACK_EVENT,
    "add tag": ActionKind.ADD_TAG,
    "add visitor tag": ActionKind.ADD_TAG,
    "remove tag": ActionKind.REMOVE_TAG,
    "remove visitor tag": ActionKind.REMOVE_TAG,
}


def action_kind_for(node: dict[str, Any]) -> Optional[ActionKind]:
    """Return the action kind of an Action node, ``None`` for anything else."""
    data = node.get("data") or {}
    if data.get("type") != "Action":
        return None
    title = str(data.get("title") or "").strip().lower()
    return _TITLES.get(title)
