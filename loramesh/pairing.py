"""Pairing with nearby devices: advertise, exchange key halves, confirm."""

from __future__ import annotations

import logging
import struct
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from .convo_repo import Convo
from .lora import UnknownRecipientError
from .packets import (
    KEY_SIZE,
    AckPair,
    AdvertisePair,
    PacketType,
    Profile,
    RequestPair,
)
from .storage import Friend

log = logging.getLogger(__name__)

ADVERT_INTERVAL = 2_000_000  # microseconds
SEND_INTERVAL = 1_000_000  # microseconds
JITTER_BOUND = 1_000_001  # random extra delay is drawn from [0, this)
ACKS_TO_SEND = 5

_WORD = struct.Struct("<I")


class State(ABC):
    """One phase of the pairing exchange, driven by the service's loop."""

    def __init__(self, service: PairService):
        self.service = service

    @abstractmethod
    def loop(self, micros: int) -> None:
        """Advance the phase by ``micros`` microseconds."""


class BroadcastState(State):
    """Collects adverts from nearby devices into the service's found lists."""

    def __init__(self, service: PairService):
        super().__init__(service)
        self._buffer_cleared = False

    def loop(self, micros: int) -> None:
        pair = self.service
        if not self._buffer_cleared:
            # Stale pairing traffic is dropped the first time the phase runs.
            self._buffer_cleared = True
            pair.lora.clear_pair_packets()

        packet = pair.lora.get_pair_broadcast()
        if packet is None:
            return

        profile = packet.content.profile
        if packet.sender in pair.found_uids:
            index = pair.found_uids.index(packet.sender)
            if pair.found_profiles[index] != profile:
                pair.found_profiles[index] = profile
                if pair.on_user_changed is not None:
                    pair.on_user_changed(profile, index)
        else:
            pair.found_uids.append(packet.sender)
            pair.found_profiles.append(profile)
            if pair.on_user_found is not None:
                pair.on_user_found(profile)


class RequestState(State):
    """Sends this device's key half to the chosen peer until the peer's half arrives."""

    def __init__(self, uid: int, service: PairService):
        super().__init__(service)
        self.uid = uid
        lora = service.lora
        service.my_key_part = b"".join(
            _WORD.pack(lora.rand()) for _ in range(KEY_SIZE // _WORD.size)
        )
        self._jitter = lora.rand(0, JITTER_BOUND)
        self._elapsed = SEND_INTERVAL

    def loop(self, micros: int) -> None:
        pair = self.service
        self._elapsed += micros
        if self._elapsed >= SEND_INTERVAL + self._jitter:
            self._elapsed = 0
            self._jitter = pair.lora.rand(0, JITTER_BOUND)
            pair._send(self.uid, PacketType.PAIR_REQ, RequestPair(pair.my_key_part))

        packet = pair.lora.get_pair_request()
        if packet is None or packet.sender != self.uid:
            return

        pair.friend_key_part = packet.content.enc_key
        pair.pair_key = bytes(
            mine ^ theirs for mine, theirs in zip(pair.my_key_part, pair.friend_key_part)
        )
        pair._request_received()


class AcknowledgeState(State):
    """Confirms the combined key with the peer, alternating requests and acks."""

    def __init__(self, uid: int, key: bytes, service: PairService):
        super().__init__(service)
        self.uid = uid
        self.key = bytes(key)
        self.acks_sent = 0
        self.acks_received = 0
        self._send_ack_next = True
        self._jitter = service.lora.rand(0, JITTER_BOUND)
        self._elapsed = 0

    def loop(self, micros: int) -> None:
        pair = self.service
        packet = pair.lora.get_pair_ack()
        if packet is not None and packet.sender == self.uid:
            if packet.content.enc_key == self.key:
                self.acks_received += 1

        self._elapsed += micros
        if self._elapsed >= SEND_INTERVAL + self._jitter:
            if self._send_ack_next:
                pair._send(self.uid, PacketType.PAIR_ACK, AckPair(pair.pair_key))
                self.acks_sent += 1
            else:
                pair._send(self.uid, PacketType.PAIR_REQ, RequestPair(pair.my_key_part))
            self._elapsed = 0
            self._jitter = pair.lora.rand(0, JITTER_BOUND)
            self._send_ack_next = not self._send_ack_next

        if self.acks_sent >= ACKS_TO_SEND:
            if self.acks_received > 0:
                pair._pair_done()
            else:
                pair._pair_failed()


class PairService:
    """Finds nearby devices and pairs with one of them, storing it as a friend."""

    def __init__(self, storage: Any, lora: Any, profiles: Any):
        self.storage = storage
        self.lora = lora
        self.profiles = profiles

        self.state: Optional[State] = None
        self.my_key_part = bytes(KEY_SIZE)
        self.friend_key_part = bytes(KEY_SIZE)
        self.pair_key = bytes(KEY_SIZE)
        self.pair_uid = 0
        self.found_profiles: list[Profile] = []
        self.found_uids: list[int] = []
        self.friend_stored = False
        self.done = False

        self.on_user_found: Optional[Callable[[Profile], None]] = None
        self.on_user_changed: Optional[Callable[[Profile, int], None]] = None
        self.on_done: Optional[Callable[[bool], None]] = None
        self.on_response: Optional[Callable[[], None]] = None

        self._advert_elapsed = ADVERT_INTERVAL
        self._advert_jitter = 0

    def __enter__(self) -> PairService:
        self.begin()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def begin(self) -> None:
        if self.state is not None:
            return
        self.lora.clear_pair_packets()
        self.state = BroadcastState(self)
        self._advert_elapsed = ADVERT_INTERVAL
        self._advert_jitter = self.lora.rand(0, JITTER_BOUND)

    def close(self) -> None:
        """Stop pairing; a friend stored by an unfinished pairing is removed again."""
        self.state = None
        if self.friend_stored and not self.done:
            self.storage.friends.remove(self.pair_uid)
            self.lora.copy_enc_keys()
            self.friend_stored = False
        self.lora.clear_pair_packets()

    def loop(self, micros: int) -> None:
        # Adverts stop once the peer is stored and only acks and requests matter.
        if not self.friend_stored:
            self._advert_elapsed += micros
            if self._advert_elapsed >= ADVERT_INTERVAL + self._advert_jitter:
                self._advert_elapsed = 0
                self._advert_jitter = self.lora.rand(0, JITTER_BOUND)
                self._send(0, PacketType.PAIR_BROADCAST, AdvertisePair(self.profiles.my_profile))

        if self.state is not None:
            self.state.loop(micros)

    def request_pair(self, index: int) -> bool:
        """Start pairing with the found device at ``index``; False if that is not possible."""
        if self.friend_stored or self.pair_uid != 0 or not 0 <= index < len(self.found_uids):
            return False
        self.pair_uid = self.found_uids[index]
        self.state = RequestState(self.pair_uid, self)
        return True

    def cancel_pair(self) -> bool:
        """Abandon a pending request and start searching again; False once keys are stored."""
        if self.friend_stored or self.done:
            return False
        self.state = BroadcastState(self)
        self.lora.clear_pair_packets()
        self.pair_uid = 0
        self.found_profiles.clear()
        self.found_uids.clear()
        return True

    def _send(self, receiver: int, packet_type: PacketType, packet: Any) -> None:
        try:
            self.lora.send(receiver, packet_type, packet)
        except UnknownRecipientError:
            log.warning("pairing recipient not found: %016x", receiver)

    def _request_received(self) -> None:
        profile = self.found_profiles[self.found_uids.index(self.pair_uid)]
        friend = Friend(uid=self.pair_uid, profile=profile, enc_key=self.pair_key)
        if self.storage.friends.exists(self.pair_uid):
            self.storage.friends.update(friend)
        else:
            self.storage.friends.add(friend)
        self.friend_stored = True
        self.lora.copy_enc_keys()

        self.state = AcknowledgeState(self.pair_uid, self.pair_key, self)
        if self.on_response is not None:
            self.on_response()

    def _pair_done(self) -> None:
        self.state = None
        if not self.storage.convos.exists(self.pair_uid):
            self.storage.convos.add(Convo(uid=self.pair_uid))
        self.lora.copy_enc_keys()
        self.lora.clear_pair_packets()

        self.done = True
        if self.on_done is not None:
            self.on_done(True)

    def _pair_failed(self) -> None:
        self.lora.clear_pair_packets()
        self.state = BroadcastState(self)
        self.found_uids.clear()
        self.found_profiles.clear()

        if self.friend_stored:
            self.storage.friends.remove(self.pair_uid)
            self.lora.copy_enc_keys()
            self.friend_stored = False
        self.pair_uid = 0

        if self.on_done is not None:
            self.on_done(False)