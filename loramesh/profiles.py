"""Profile service: this device's profile and keeping friends' profiles current."""

from __future__ import annotations

import logging
from itertools import cycle
from typing import Any, Callable

from .lora import UnknownRecipientError
from .packets import (
    NICKNAME_LENGTH,
    PacketType,
    Profile,
    ProfileKind,
    ProfilePacket,
    ProfileResponse,
    ReceivedPacket,
)
from .storage import Friend

log = logging.getLogger(__name__)

DEFAULT_NAMES = (
    "George", "Vicki", "Johnnie", "Michele", "Mandy", "Mark", "Bobbie", "Rene",
    "Michael", "Laura", "Ruby", "Erik", "Kim", "Hannah", "Ellen", "Kevin",
    "Laurie", "Caleb", "Sarah", "Chester", "Dianna", "Lamar", "Bessie", "Phil",
    "Wanda",
)
PRIMES = (2, 3, 5, 7, 11, 13, 17, 19, 23, 29, 31, 37, 41, 43, 47, 53, 59)
HASH_CHECK_INTERVAL = 10_000_000  # microseconds

ProfileListener = Callable[[Friend], None]


def generate_hash(profile: Profile) -> int:
    """Weighted byte sum of the packed profile, used to detect profile changes."""
    total = sum(byte * prime for byte, prime in zip(profile.pack(), cycle(PRIMES)))
    return total & 0xFFFFFFFF


class ProfileService:
    """Holds this device's profile and fetches friends' profiles when their hash changes."""

    def __init__(self, storage: Any, lora: Any):
        self.storage = storage
        self.lora = lora
        self.my_profile = Profile()
        self.my_hash = 0
        self._hash_check_time = 0
        self._listeners: list[ProfileListener] = []

    def begin(self) -> None:
        """Load this device's profile, creating a random default one if none is stored."""
        me = self.storage.friends.get(self.lora.uid)
        if me is None:
            name = DEFAULT_NAMES[self.lora.rand(len(DEFAULT_NAMES))]
            profile = Profile(
                nickname=name[:NICKNAME_LENGTH],
                avatar=self.lora.rand(15),
                hue=self.lora.rand(360),
            )
            if not self.storage.friends.add(Friend(uid=self.lora.uid, profile=profile)):
                log.error("error applying default profile")
            self.my_profile = profile
        else:
            self.my_profile = me.profile
        self.my_hash = generate_hash(self.my_profile)

    def loop(self, micros: int) -> None:
        self._hash_check_time += micros
        if self._hash_check_time >= HASH_CHECK_INTERVAL:
            self._hash_check_time = 0
            self._check_hashes()

        packet = self.lora.get_profile()
        if packet is None or not self.storage.friends.exists(packet.sender):
            return
        if packet.content.kind is ProfileKind.REQ:
            self._send(packet.sender, ProfileResponse(profile=self.my_profile))
        elif isinstance(packet.content, ProfileResponse):
            self._receive_response(packet)

    def set_my_profile(self, profile: Profile) -> None:
        self.my_profile = profile
        me = self.storage.friends.get(self.lora.uid)
        if me is None:
            log.error("error updating my profile")
        else:
            me.profile = profile
            if not self.storage.friends.update(me):
                log.error("error updating my profile")
        self.my_hash = generate_hash(profile)

    def add_listener(self, listener: ProfileListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ProfileListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _receive_response(self, packet: ReceivedPacket[ProfileResponse]) -> None:
        friend = self.storage.friends.get(packet.sender)
        if friend is None:
            return
        friend.profile = packet.content.profile
        if not self.storage.friends.update(friend):
            log.error("error updating friend")
        for listener in list(self._listeners):
            listener(friend)

    def _check_hashes(self) -> None:
        for uid, advertised in self.lora.hashmap_copy().items():
            if uid == self.lora.uid:
                continue
            friend = self.storage.friends.get(uid)
            stored = friend.profile if friend is not None else Profile()
            if generate_hash(stored) != advertised:
                self._send(uid, ProfilePacket(ProfileKind.REQ))

    def _send(self, receiver: int, packet: ProfilePacket) -> None:
        try:
            self.lora.send(receiver, PacketType.PROF, packet)
        except UnknownRecipientError:
            log.warning("recipient not found: %016x", receiver)