"""Chat messages and their on-disk storage."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path

from .repo import Repo

_HEAD = struct.Struct("<QQ??B")
_TEXT_SIZE = struct.Struct("<I")


class MessageType(IntEnum):
    TEXT = 0
    PIC = 1


@dataclass
class Message:
    """A chat message: either text or a picture index."""

    uid: int = 0
    convo: int = 0
    outgoing: bool = False
    received: bool = False
    type: MessageType = MessageType.TEXT
    text: str = ""
    pic: int = 0


class MessageRepo(Repo[Message]):
    def __init__(self, directory: str | Path, cached: bool = False):
        super().__init__(directory, Message, cached)

    def encode(self, obj: Message) -> bytes:
        head = _HEAD.pack(obj.uid, obj.convo, obj.outgoing, obj.received, obj.type)
        if obj.type is MessageType.TEXT:
            text = obj.text.encode("utf-8")
            return head + _TEXT_SIZE.pack(len(text)) + text
        return head + bytes((obj.pic,))

    def decode(self, uid: int, data: bytes) -> Message:
        if len(data) < _HEAD.size:
            raise ValueError("message record too short")
        _, convo, outgoing, received, kind = _HEAD.unpack_from(data)
        try:
            message_type = MessageType(kind)
        except ValueError:
            raise ValueError(f"unknown message type {kind}") from None

        message = Message(
            uid=uid, convo=convo, outgoing=outgoing, received=received, type=message_type
        )
        body = data[_HEAD.size:]
        if message_type is MessageType.TEXT:
            if len(body) < _TEXT_SIZE.size:
                raise ValueError("message text size missing")
            (size,) = _TEXT_SIZE.unpack_from(body)
            text = body[_TEXT_SIZE.size:_TEXT_SIZE.size + size]
            if len(text) < size:
                raise ValueError("message text truncated")
            message.text = text.decode("utf-8", "replace")
        else:
            if not body:
                raise ValueError("message picture index missing")
            message.pic = body[0]
        return message