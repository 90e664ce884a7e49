"""Folder events pushed by the server while the watcher waits."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class MessagesArrived:
    """Untagged ``EXISTS``: the folder now holds ``count`` messages."""

    count: int


@dataclass(frozen=True)
class MessageExpunged:
    """Untagged ``EXPUNGE`` for the message at 1-based sequence number ``index``."""

    index: int


@dataclass(frozen=True)
class FlagsChanged:
    """Untagged ``FETCH`` carrying new flags for message ``index``."""

    index: int
    flags: tuple[str, ...] = ()


FolderEvent = Union[MessagesArrived, MessageExpunged, FlagsChanged]
