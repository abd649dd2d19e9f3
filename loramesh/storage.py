"""Friends and the set of repositories that make up device storage."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from pathlib import Path

from .convo_repo import ConvoRepo
from .message_repo import MessageRepo
from .packets import KEY_SIZE, PROFILE_SIZE, Profile
from .repo import Repo

_UID = struct.Struct("<Q")
_FRIEND_SIZE = _UID.size + PROFILE_SIZE + KEY_SIZE


@dataclass
class Friend:
    """A paired device: its uid, profile and shared encryption key."""

    uid: int = 0
    profile: Profile = field(default_factory=Profile)
    enc_key: bytes = bytes(KEY_SIZE)


class FriendRepo(Repo[Friend]):
    def __init__(self, directory: str | Path, cached: bool = False):
        super().__init__(directory, Friend, cached)

    def encode(self, obj: Friend) -> bytes:
        if len(obj.enc_key) != KEY_SIZE:
            raise ValueError(f"friend key must be {KEY_SIZE} bytes")
        return _UID.pack(obj.uid) + obj.profile.pack() + bytes(obj.enc_key)

    def decode(self, uid: int, data: bytes) -> Friend:
        if len(data) < _FRIEND_SIZE:
            raise ValueError("friend record too short")
        profile = Profile.unpack(data[_UID.size:_UID.size + PROFILE_SIZE])
        key = bytes(data[_UID.size + PROFILE_SIZE:_FRIEND_SIZE])
        return Friend(uid=uid, profile=profile, enc_key=key)


class Repositories:
    """Messages, conversations and friends stored under one root directory."""

    def __init__(self, root: str | Path):
        root = Path(root)
        self.messages = MessageRepo(root / "Repo" / "Msg")
        self.convos = ConvoRepo(root / "Repo" / "Convo", cached=True)
        self.friends = FriendRepo(root / "Repo" / "Friends", cached=True)

    def begin(self) -> None:
        self.messages.begin()
        self.convos.begin(True)
        self.friends.begin(True)