"""Over-the-air packet formats exchanged between devices."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Generic, TypeVar

NICKNAME_LENGTH = 15
KEY_SIZE = 32
MAX_TEXT_LENGTH = 60
MAX_CONTENT_SIZE = 80

PACKET_HEADER = bytes((0xBA, 0xAA, 0xAD, 0xFF, 0xCA, 0xFF, 0xEE, 0xA0))
PACKET_TRAILER = bytes((0xAB, 0xAA, 0xDA, 0xFF, 0xAC, 0xFF, 0xEE, 0x0A))

_UID = struct.Struct("<Q")
_PROFILE = struct.Struct("<16sBH")
# header, checksum, sender, receiver, profile hash, type, content size
_FRAME = struct.Struct("<8sI4xQQIB3xI")

PROFILE_SIZE = _PROFILE.size
FRAME_HEADER_SIZE = _FRAME.size
FRAME_SIZE_OFFSET = FRAME_HEADER_SIZE - 4

T = TypeVar("T")


def _require(data: bytes, size: int, what: str) -> None:
    if len(data) < size:
        raise ValueError(f"{what} needs {size} bytes, got {len(data)}")


class PacketType(IntEnum):
    """Kind of payload carried by a radio frame."""

    MSG = 0
    PROF = 1
    PAIR_REQ = 2
    PAIR_BROADCAST = 3
    PAIR_ACK = 4


class MessageKind(IntEnum):
    TEXT = 0
    PIC = 1
    ACK = 2


class ProfileKind(IntEnum):
    REQ = 0
    RESP = 1


@dataclass
class Profile:
    """A user's public profile: nickname, avatar index and colour hue."""

    nickname: str = ""
    avatar: int = 0
    hue: int = 0

    def pack(self) -> bytes:
        name = self.nickname.encode("utf-8")[:NICKNAME_LENGTH]
        return _PROFILE.pack(name, self.avatar, self.hue)

    @classmethod
    def unpack(cls, data: bytes) -> Profile:
        _require(data, PROFILE_SIZE, "profile")
        name, avatar, hue = _PROFILE.unpack_from(data)
        nickname = name.split(b"\0", 1)[0].decode("utf-8", "replace")
        return cls(nickname, avatar, hue)


_MESSAGE_PREFIX = 1 + _UID.size


@dataclass
class MessagePacket:
    """A chat packet; on its own it acknowledges the message with this uid."""

    uid: int = 0
    kind: MessageKind = MessageKind.ACK

    def pack(self) -> bytes:
        return bytes((self.kind,)) + _UID.pack(self.uid)

    @classmethod
    def unpack(cls, data: bytes) -> MessagePacket:
        _require(data, _MESSAGE_PREFIX, "message packet")
        try:
            kind = MessageKind(data[0])
        except ValueError:
            raise ValueError(f"unknown message packet type {data[0]}") from None
        (uid,) = _UID.unpack_from(data, 1)
        body = bytes(data[_MESSAGE_PREFIX:])
        if kind is MessageKind.TEXT:
            _require(body, 1, "text message")
            size = body[0]
            _require(body, 1 + size, "text message")
            text = body[1 : 1 + size].decode("utf-8", "replace")
            return TextMessage(uid=uid, text=text)
        if kind is MessageKind.PIC:
            _require(body, 1, "picture message")
            return PicMessage(uid=uid, index=body[0])
        return MessagePacket(uid=uid, kind=kind)


@dataclass
class TextMessage(MessagePacket):
    kind: MessageKind = field(default=MessageKind.TEXT, init=False)
    text: str = ""

    def pack(self) -> bytes:
        encoded = self.text.encode("utf-8")[:MAX_TEXT_LENGTH]
        return super().pack() + bytes((len(encoded),)) + encoded

    @classmethod
    def unpack(cls, data: bytes) -> TextMessage:
        packet = MessagePacket.unpack(data)
        if not isinstance(packet, TextMessage):
            raise ValueError("not a text message")
        return packet


@dataclass
class PicMessage(MessagePacket):
    kind: MessageKind = field(default=MessageKind.PIC, init=False)
    index: int = 0

    def pack(self) -> bytes:
        return super().pack() + bytes((self.index,))

    @classmethod
    def unpack(cls, data: bytes) -> PicMessage:
        packet = MessagePacket.unpack(data)
        if not isinstance(packet, PicMessage):
            raise ValueError("not a picture message")
        return packet


@dataclass
class ProfilePacket:
    """A profile exchange packet; on its own it requests the peer's profile."""

    kind: ProfileKind = ProfileKind.REQ

    def pack(self) -> bytes:
        return bytes((self.kind,))

    @classmethod
    def unpack(cls, data: bytes) -> ProfilePacket:
        _require(data, 1, "profile packet")
        try:
            kind = ProfileKind(data[0])
        except ValueError:
            raise ValueError(f"unknown profile packet type {data[0]}") from None
        if kind is ProfileKind.RESP:
            return ProfileResponse(profile=Profile.unpack(bytes(data[1:])))
        return ProfilePacket(kind)


@dataclass
class ProfileResponse(ProfilePacket):
    kind: ProfileKind = field(default=ProfileKind.RESP, init=False)
    profile: Profile = field(default_factory=Profile)

    def pack(self) -> bytes:
        return super().pack() + self.profile.pack()

    @classmethod
    def unpack(cls, data: bytes) -> ProfileResponse:
        packet = ProfilePacket.unpack(data)
        if not isinstance(packet, ProfileResponse):
            raise ValueError("not a profile response")
        return packet


@dataclass
class AdvertisePair:
    """Broadcast announcing that this device is open for pairing."""

    profile: Profile = field(default_factory=Profile)

    def pack(self) -> bytes:
        return self.profile.pack()

    @classmethod
    def unpack(cls, data: bytes) -> AdvertisePair:
        return cls(Profile.unpack(data))


def _pack_key(key: bytes) -> bytes:
    if len(key) != KEY_SIZE:
        raise ValueError(f"key must be {KEY_SIZE} bytes, got {len(key)}")
    return bytes(key)


def _unpack_key(data: bytes) -> bytes:
    _require(data, KEY_SIZE, "key packet")
    return bytes(data[:KEY_SIZE])


@dataclass
class RequestPair:
    """Pairing request carrying the sender's half of the shared key."""

    enc_key: bytes = bytes(KEY_SIZE)

    def pack(self) -> bytes:
        return _pack_key(self.enc_key)

    @classmethod
    def unpack(cls, data: bytes) -> RequestPair:
        return cls(_unpack_key(data))


@dataclass
class AckPair:
    """Pairing acknowledgement carrying the combined key."""

    enc_key: bytes = bytes(KEY_SIZE)

    def pack(self) -> bytes:
        return _pack_key(self.enc_key)

    @classmethod
    def unpack(cls, data: bytes) -> AckPair:
        return cls(_unpack_key(data))


@dataclass
class Frame:
    """A radio frame: fixed header followed by content and a trailer."""

    sender: int
    receiver: int
    packet_type: PacketType
    profile_hash: int = 0
    checksum: int = 1
    content: bytes = b""
    header: bytes = PACKET_HEADER

    def pack_header(self) -> bytes:
        return _FRAME.pack(
            self.header,
            self.checksum,
            self.sender,
            self.receiver,
            self.profile_hash,
            self.packet_type,
            len(self.content),
        )

    @classmethod
    def unpack_header(cls, data: bytes) -> tuple[Frame, int]:
        """Parse a frame header; return the frame without content and the content size."""
        _require(data, FRAME_HEADER_SIZE, "frame header")
        header, checksum, sender, receiver, profile_hash, kind, size = _FRAME.unpack_from(data)
        try:
            packet_type = PacketType(kind)
        except ValueError:
            raise ValueError(f"unknown frame type {kind}") from None
        frame = cls(
            sender=sender,
            receiver=receiver,
            packet_type=packet_type,
            profile_hash=profile_hash,
            checksum=checksum,
            header=header,
        )
        return frame, size


@dataclass
class ReceivedPacket(Generic[T]):
    """A decoded packet together with the uid of the device that sent it."""

    sender: int
    content: T