"""Radio link service: framing, encryption and the packet queues around them."""

from __future__ import annotations

import logging
import random
import secrets
import struct
import threading
from collections import deque
from itertools import cycle
from typing import Any, Callable, Optional

from .packets import (
    FRAME_HEADER_SIZE,
    FRAME_SIZE_OFFSET,
    KEY_SIZE,
    MAX_CONTENT_SIZE,
    PACKET_HEADER,
    PACKET_TRAILER,
    AckPair,
    AdvertisePair,
    Frame,
    MessagePacket,
    PacketType,
    ProfilePacket,
    ReceivedPacket,
    RequestPair,
)

log = logging.getLogger(__name__)

INPUT_BUFFER_SIZE = 1024
RANDOM_POOL_SIZE = 24
INT32_MAX = 2**31 - 1

_SIZE_FIELD = struct.Struct("<I")
_UNENCRYPTED = frozenset({PacketType.PAIR_REQ, PacketType.PAIR_BROADCAST})
_DECODERS: dict[PacketType, Callable[[bytes], Any]] = {
    PacketType.MSG: MessagePacket.unpack,
    PacketType.PROF: ProfilePacket.unpack,
    PacketType.PAIR_BROADCAST: AdvertisePair.unpack,
    PacketType.PAIR_REQ: RequestPair.unpack,
    PacketType.PAIR_ACK: AckPair.unpack,
}


class UnknownRecipientError(KeyError):
    """Raised when sending an encrypted packet to a device without a shared key."""


def enc_dec(data: bytes, key: bytes) -> bytes:
    """XOR ``data`` with the 32-byte ``key``; applying it twice restores the input."""
    if len(key) != KEY_SIZE:
        raise ValueError(f"key must be {KEY_SIZE} bytes, got {len(key)}")
    return bytes(b ^ k for b, k in zip(data, cycle(key)))


class Radio:
    """In-memory radio: records transmitted frames and supplies random bytes."""

    def __init__(self, random_source: Optional[Callable[[], int]] = None):
        self.transmitted: list[bytes] = []
        self._random_source = random_source or (lambda: secrets.randbits(8))

    def transmit(self, data: bytes) -> None:
        self.transmitted.append(bytes(data))

    def random_byte(self) -> int:
        return self._random_source() & 0xFF


def _find_sync(
    buffer: bytes, sync: bytes, start: int = 0, size: int = 0, offset_on_fail: bool = False
) -> Optional[int]:
    """Locate ``sync`` in ``buffer``; on failure return None or, if asked, how much to drop."""
    size = len(buffer) if size == 0 else min(size, len(buffer))
    matched = 0
    for offset in range(start, size):
        if buffer[offset] == sync[matched]:
            matched += 1
            if matched == len(sync):
                return offset - (len(sync) - 1)
        else:
            matched = 0
    if offset_on_fail:
        return size - matched
    return None


class LoRaService:
    """Frames, encrypts and queues packets between this device and its friends."""

    def __init__(
        self,
        uid: int,
        storage: Any,
        radio: Optional[Radio] = None,
        profile_hash: Optional[Callable[[], int]] = None,
    ):
        self.uid = uid
        self.storage = storage
        self.radio = radio if radio is not None else Radio()
        self.profile_hash = profile_hash or (lambda: 0)

        self._inited = False
        self._buffer = bytearray()
        self._received: deque[Frame] = deque()
        self._outbox: deque[Frame] = deque()
        self._inbox: dict[PacketType, deque[ReceivedPacket[Any]]] = {
            kind: deque() for kind in PacketType
        }
        self._hash_map: dict[int, int] = {}
        self._enc_keys: dict[int, bytes] = {}
        self._randoms: deque[int] = deque()

        self._buffer_lock = threading.Lock()
        self._outbox_lock = threading.Lock()
        self._inbox_lock = threading.Lock()
        self._random_lock = threading.Lock()
        self._keys_lock = threading.Lock()

    def begin(self) -> None:
        with self._random_lock:
            self._refill_random()
        self.copy_enc_keys()
        self._inited = True

    def send(self, receiver: int, packet_type: PacketType, content: Any) -> None:
        """Queue ``content`` for ``receiver``, encrypted unless it is a pairing packet."""
        frame = Frame(
            sender=self.uid,
            receiver=receiver,
            packet_type=PacketType(packet_type),
            profile_hash=self.profile_hash() & 0xFFFFFFFF,
            content=content.pack(),
        )
        if frame.packet_type not in _UNENCRYPTED:
            with self._keys_lock:
                key = self._enc_keys.get(receiver)
            if key is None:
                raise UnknownRecipientError(receiver)
            frame.content = enc_dec(frame.content, key)

        with self._outbox_lock:
            self._outbox.append(frame)

    def feed(self, data: bytes) -> None:
        """Append bytes received over the air to the input buffer."""
        if not data:
            return
        with self._buffer_lock:
            free = INPUT_BUFFER_SIZE - len(self._buffer)
            if len(data) > free:
                raise BufferError(f"input buffer full: {free} B available, need {len(data)} B")
            self._buffer.extend(data)

    def loop(self) -> None:
        with self._random_lock:
            self._refill_random()
        self.flush_outbox()
        self.process_buffer()
        self.process_packets()

    def process_buffer(self) -> Optional[Frame]:
        """Extract at most one complete frame from the input buffer and queue it."""
        with self._buffer_lock:
            buf = self._buffer
            if len(buf) < len(PACKET_HEADER):
                return None

            offset = _find_sync(buf, PACKET_HEADER)
            if offset is None:
                drop = _find_sync(buf, PACKET_HEADER, offset_on_fail=True)
                log.debug("header not found, clearing %d / %d B", drop, len(buf))
                del buf[:drop]
                return None
            if offset:
                log.debug("found %d B before packet header", offset)
                del buf[:offset]

            if len(buf) < FRAME_SIZE_OFFSET + _SIZE_FIELD.size:
                return None
            (size,) = _SIZE_FIELD.unpack_from(buf, FRAME_SIZE_OFFSET)
            if size > MAX_CONTENT_SIZE:
                log.debug("content size too big: %d", size)
                del buf[: len(PACKET_HEADER)]
                return None

            trailer_pos = FRAME_HEADER_SIZE + size
            end = trailer_pos + len(PACKET_TRAILER)
            if end > len(buf):
                return None

            if _find_sync(buf, PACKET_TRAILER, trailer_pos) != trailer_pos:
                log.debug("trailer not found where expected")
                del buf[: len(PACKET_HEADER)]
                return None

            raw = bytes(buf[:end])
            del buf[:end]

        try:
            frame, _ = Frame.unpack_header(raw)
        except ValueError as exc:
            log.debug("dropping frame: %s", exc)
            return None
        frame.content = raw[FRAME_HEADER_SIZE:trailer_pos]
        self._received.append(frame)
        return frame

    def process_packets(self) -> None:
        while self._received:
            self._process_frame(self._received.popleft())

    def _process_frame(self, frame: Frame) -> None:
        if frame.sender in (0, self.uid):
            log.debug("received own packet")
            return
        if frame.receiver not in (0, self.uid):
            return
        if frame.receiver == 0 and frame.packet_type is not PacketType.PAIR_BROADCAST:
            return

        data = frame.content
        with self._keys_lock:
            key = self._enc_keys.get(frame.sender)
            if frame.packet_type not in _UNENCRYPTED:
                if key is None:
                    return
                data = enc_dec(data, key)
            if key is not None:
                self._hash_map[frame.sender] = frame.profile_hash

        try:
            content = _DECODERS[frame.packet_type](data)
        except ValueError as exc:
            log.debug("undecodable packet from %016x: %s", frame.sender, exc)
            return

        with self._inbox_lock:
            self._inbox[frame.packet_type].append(ReceivedPacket(frame.sender, content))

    def flush_outbox(self) -> int:
        """Transmit every queued frame; return how many were sent."""
        sent = 0
        while True:
            with self._outbox_lock:
                if not self._outbox:
                    return sent
                frame = self._outbox.popleft()
            data = frame.pack_header() + frame.content + PACKET_TRAILER
            try:
                self.radio.transmit(data)
            except OSError as exc:
                log.warning("error sending packet: %s", exc)
                continue
            sent += 1

    def _take(self, kind: PacketType) -> Optional[ReceivedPacket[Any]]:
        with self._inbox_lock:
            queue = self._inbox[kind]
            return queue.popleft() if queue else None

    def get_message(self) -> Optional[ReceivedPacket[MessagePacket]]:
        return self._take(PacketType.MSG)

    def get_profile(self) -> Optional[ReceivedPacket[ProfilePacket]]:
        return self._take(PacketType.PROF)

    def get_pair_broadcast(self) -> Optional[ReceivedPacket[AdvertisePair]]:
        return self._take(PacketType.PAIR_BROADCAST)

    def get_pair_request(self) -> Optional[ReceivedPacket[RequestPair]]:
        return self._take(PacketType.PAIR_REQ)

    def get_pair_ack(self) -> Optional[ReceivedPacket[AckPair]]:
        return self._take(PacketType.PAIR_ACK)

    def clear_pair_packets(self) -> None:
        """Drop queued pairing packets and everything waiting to be sent."""
        with self._inbox_lock:
            for kind in (PacketType.PAIR_REQ, PacketType.PAIR_BROADCAST, PacketType.PAIR_ACK):
                self._inbox[kind].clear()
        with self._outbox_lock:
            self._outbox.clear()

    def _refill_random(self) -> None:
        while len(self._randoms) < RANDOM_POOL_SIZE:
            self._randoms.append(self.radio.random_byte())

    def _rand_below(self, bound: int) -> int:
        if bound <= 0:
            raise ValueError(f"upper bound must be positive, got {bound}")
        if not self._inited:
            return random.randrange(bound)
        with self._random_lock:
            if len(self._randoms) < 4:
                self._refill_random()
            raw = bytes(self._randoms.popleft() for _ in range(4))
        return abs(int.from_bytes(raw, "big", signed=True)) % bound

    def rand(self, low: Optional[int] = None, high: Optional[int] = None) -> int:
        """``rand()`` below 2**31-1, ``rand(n)`` below n, ``rand(a, b)`` in [a, b)."""
        if low is None:
            return self._rand_below(INT32_MAX)
        if high is None:
            return self._rand_below(low)
        if low > high:
            return 0
        return self._rand_below(high - low) + low

    def rand_uid(self) -> int:
        upper = self.rand()
        lower = self.rand()
        return ((upper << 32) & 0xFFFFFFFF00000000) | (lower & 0xFFFFFFFF)

    def copy_enc_keys(self) -> None:
        """Reload shared keys from stored friends and forget hashes of unknown devices."""
        keys: dict[int, bytes] = {}
        for uid in self.storage.friends.all():
            if uid == self.uid:
                continue
            friend = self.storage.friends.get(uid)
            if friend is None:
                continue
            keys[uid] = bytes(friend.enc_key)

        with self._keys_lock:
            self._enc_keys = keys
            self._hash_map = {
                uid: value for uid, value in self._hash_map.items() if uid in keys
            }

    def hashmap_copy(self) -> dict[int, int]:
        with self._keys_lock:
            return dict(self._hash_map)