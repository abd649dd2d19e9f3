"""Conversations and their on-disk storage."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from pathlib import Path

from .repo import Repo

_HEAD = struct.Struct("<?I")
_UID = struct.Struct("<Q")


@dataclass
class Convo:
    """A conversation with one friend: message uids in order, plus an unread flag."""

    uid: int = 0
    messages: list[int] = field(default_factory=list)
    unread: bool = False


class ConvoRepo(Repo[Convo]):
    def __init__(self, directory: str | Path, cached: bool = False):
        super().__init__(directory, Convo, cached)

    def encode(self, obj: Convo) -> bytes:
        head = _HEAD.pack(obj.unread, len(obj.messages))
        return head + b"".join(_UID.pack(uid) for uid in obj.messages)

    def decode(self, uid: int, data: bytes) -> Convo:
        if len(data) < _HEAD.size:
            raise ValueError("conversation record too short")
        unread, count = _HEAD.unpack_from(data)
        end = _HEAD.size + count * _UID.size
        if len(data) < end:
            raise ValueError("conversation record truncated")
        messages = [message for (message,) in _UID.iter_unpack(data[_HEAD.size:end])]
        return Convo(uid=uid, messages=messages, unread=unread)