import pytest

from loramesh.lora import (
    INPUT_BUFFER_SIZE,
    RANDOM_POOL_SIZE,
    LoRaService,
    Radio,
    UnknownRecipientError,
    enc_dec,
)
from loramesh.packets import (
    FRAME_HEADER_SIZE,
    PACKET_HEADER,
    PACKET_TRAILER,
    AckPair,
    AdvertisePair,
    Frame,
    MessageKind,
    MessagePacket,
    PacketType,
    PicMessage,
    Profile,
    ProfileResponse,
    ReceivedPacket,
    RequestPair,
    TextMessage,
)
from loramesh.storage import Friend, Repositories

KEY = bytes(range(1, 33))
A_UID = 0x1111
B_UID = 0x2222
C_UID = 0x3333


def make_service(root, uid, peer=None, key=KEY, **kwargs):
    storage = Repositories(root)
    storage.begin()
    if peer is not None:
        storage.friends.add(Friend(uid=peer, profile=Profile("peer", 1, 2), enc_key=key))
    service = LoRaService(uid, storage, **kwargs)
    service.begin()
    return service


def transfer(src, dst):
    src.flush_outbox()
    for data in src.radio.transmitted:
        dst.feed(data)
    src.radio.transmitted.clear()
    while dst.process_buffer() is not None:
        pass
    dst.process_packets()


def raw_frame(frame):
    return frame.pack_header() + frame.content + PACKET_TRAILER


@pytest.fixture
def pair(tmp_path):
    a = make_service(tmp_path / "a", A_UID, B_UID, profile_hash=lambda: 4242)
    b = make_service(tmp_path / "b", B_UID, A_UID)
    return a, b


def test_enc_dec_is_involution():
    data = b"hello over the air, more than thirty-two bytes long"
    assert enc_dec(enc_dec(data, KEY), KEY) == data
    assert enc_dec(data, KEY) != data


def test_enc_dec_zero_key_is_identity():
    assert enc_dec(b"abc", bytes(32)) == b"abc"


def test_enc_dec_rejects_short_key():
    with pytest.raises(ValueError):
        enc_dec(b"abc", b"short")


def test_radio_records_and_masks_random():
    radio = Radio(random_source=lambda: 0x1FF)
    radio.transmit(b"\x01\x02")
    assert radio.transmitted == [b"\x01\x02"]
    assert radio.random_byte() == 0xFF


def test_wire_format_of_broadcast(pair):
    a, _ = pair
    advert = AdvertisePair(Profile("anna", 3, 90))
    a.send(0, PacketType.PAIR_BROADCAST, advert)
    assert a.flush_outbox() == 1
    raw = a.radio.transmitted[0]
    assert raw[:8] == PACKET_HEADER
    assert raw[-8:] == PACKET_TRAILER
    assert raw[FRAME_HEADER_SIZE:-8] == advert.pack()


def test_message_content_is_encrypted_on_wire(pair):
    a, _ = pair
    message = TextMessage(uid=7, text="hi")
    a.send(B_UID, PacketType.MSG, message)
    a.flush_outbox()
    content = a.radio.transmitted[0][FRAME_HEADER_SIZE:-8]
    assert content == enc_dec(message.pack(), KEY)
    assert content != message.pack()


def test_text_message_round_trip(pair):
    a, b = pair
    a.send(B_UID, PacketType.MSG, TextMessage(uid=7, text="hi"))
    transfer(a, b)
    assert b.get_message() == ReceivedPacket(A_UID, TextMessage(uid=7, text="hi"))
    assert b.get_message() is None


def test_pic_and_ack_round_trip(pair):
    a, b = pair
    a.send(B_UID, PacketType.MSG, PicMessage(uid=9, index=4))
    a.send(B_UID, PacketType.MSG, MessagePacket(uid=9))
    transfer(a, b)
    assert b.get_message().content == PicMessage(uid=9, index=4)
    ack = b.get_message().content
    assert ack.kind is MessageKind.ACK
    assert ack.uid == 9


def test_profile_and_pair_ack_round_trip(pair):
    a, b = pair
    a.send(B_UID, PacketType.PROF, ProfileResponse(profile=Profile("anna", 2, 10)))
    a.send(B_UID, PacketType.PAIR_ACK, AckPair(KEY))
    transfer(a, b)
    assert b.get_profile().content.profile == Profile("anna", 2, 10)
    assert b.get_pair_ack() == ReceivedPacket(A_UID, AckPair(KEY))


def test_broadcast_received_by_anyone(pair):
    a, b = pair
    a.send(0, PacketType.PAIR_BROADCAST, AdvertisePair(Profile("anna", 3, 90)))
    transfer(a, b)
    received = b.get_pair_broadcast()
    assert received.sender == A_UID
    assert received.content.profile == Profile("anna", 3, 90)


def test_pair_request_needs_no_key(tmp_path, pair):
    _, b = pair
    c = make_service(tmp_path / "c", C_UID)
    c.send(B_UID, PacketType.PAIR_REQ, RequestPair(bytes(range(32))))
    transfer(c, b)
    assert b.get_pair_request() == ReceivedPacket(C_UID, RequestPair(bytes(range(32))))
    assert C_UID not in b.hashmap_copy()


def test_send_to_unknown_recipient_raises(pair):
    a, _ = pair
    with pytest.raises(UnknownRecipientError):
        a.send(C_UID, PacketType.MSG, TextMessage(uid=1, text="x"))
    assert a.flush_outbox() == 0


def test_message_from_unknown_sender_dropped(tmp_path, pair):
    _, b = pair
    c = make_service(tmp_path / "c", C_UID, B_UID)
    c.send(B_UID, PacketType.MSG, TextMessage(uid=1, text="x"))
    transfer(c, b)
    assert b.get_message() is None


def test_own_packet_dropped(pair):
    a, _ = pair
    a.send(B_UID, PacketType.MSG, TextMessage(uid=1, text="x"))
    transfer(a, a)
    assert a.get_message() is None


def test_frame_for_other_receiver_dropped(pair):
    _, b = pair
    content = enc_dec(TextMessage(uid=1, text="x").pack(), KEY)
    for receiver in (C_UID, 0):
        b.feed(raw_frame(Frame(sender=A_UID, receiver=receiver,
                               packet_type=PacketType.MSG, content=content)))
        assert b.process_buffer() is not None
    b.process_packets()
    assert b.get_message() is None


def test_garbage_before_header_skipped(pair):
    _, b = pair
    frame = Frame(sender=A_UID, receiver=B_UID, packet_type=PacketType.PAIR_ACK,
                  content=enc_dec(bytes(32), KEY))
    b.feed(b"xyz" + raw_frame(frame))
    parsed = b.process_buffer()
    assert parsed == frame


def test_garbage_cleared_then_frame_parsed(pair):
    _, b = pair
    b.feed(bytes(20))
    assert b.process_buffer() is None
    frame = Frame(sender=A_UID, receiver=B_UID, packet_type=PacketType.PAIR_ACK,
                  content=bytes(32))
    b.feed(raw_frame(frame))
    assert b.process_buffer() == frame


def test_partial_frame_waits_for_rest(pair):
    _, b = pair
    frame = Frame(sender=A_UID, receiver=B_UID, packet_type=PacketType.PAIR_ACK,
                  content=bytes(32))
    raw = raw_frame(frame)
    b.feed(raw[:30])
    assert b.process_buffer() is None
    b.feed(raw[30:])
    assert b.process_buffer() == frame


def test_oversized_content_rejected(pair):
    _, b = pair
    big = Frame(sender=A_UID, receiver=B_UID, packet_type=PacketType.MSG, content=bytes(81))
    good = Frame(sender=A_UID, receiver=B_UID, packet_type=PacketType.PAIR_ACK,
                 content=bytes(32))
    b.feed(raw_frame(big))
    assert b.process_buffer() is None
    b.feed(raw_frame(good))
    parsed = [f for f in (b.process_buffer() for _ in range(3)) if f is not None]
    assert parsed == [good]


def test_bad_trailer_rejected(pair):
    _, b = pair
    frame = Frame(sender=A_UID, receiver=B_UID, packet_type=PacketType.PAIR_ACK,
                  content=bytes(32))
    b.feed(frame.pack_header() + frame.content + bytes(8))
    assert b.process_buffer() is None
    b.process_packets()
    assert b.get_pair_ack() is None


def test_feed_overflow_raises(pair):
    _, b = pair
    b.feed(bytes(INPUT_BUFFER_SIZE - 10))
    with pytest.raises(BufferError):
        b.feed(bytes(11))


def test_hashmap_tracks_sender_and_forgets_removed_friend(pair):
    a, b = pair
    a.send(B_UID, PacketType.MSG, TextMessage(uid=1, text="x"))
    transfer(a, b)
    assert b.hashmap_copy() == {A_UID: 4242}
    assert b.storage.friends.remove(A_UID)
    b.copy_enc_keys()
    assert b.hashmap_copy() == {}


def test_loop_sends_and_receives(pair):
    a, b = pair
    a.send(B_UID, PacketType.MSG, TextMessage(uid=3, text="loop"))
    a.loop()
    b.feed(a.radio.transmitted[0])
    b.loop()
    assert b.get_message().content == TextMessage(uid=3, text="loop")


def test_clear_pair_packets(pair):
    a, b = pair
    a.send(0, PacketType.PAIR_BROADCAST, AdvertisePair(Profile("anna", 3, 90)))
    transfer(a, b)
    b.send(A_UID, PacketType.PAIR_ACK, AckPair(KEY))
    b.clear_pair_packets()
    assert b.get_pair_broadcast() is None
    assert b.flush_outbox() == 0


def test_begin_fills_random_pool(tmp_path):
    calls = []

    def source():
        calls.append(1)
        return 7

    storage = Repositories(tmp_path)
    storage.begin()
    service = LoRaService(A_UID, storage, radio=Radio(random_source=source))
    service.begin()
    assert len(calls) == RANDOM_POOL_SIZE
    assert service.rand_uid() == 0x0707070707070707


def test_rand_uid_from_constant_bytes(tmp_path):
    service = make_service(tmp_path, A_UID, radio=Radio(random_source=lambda: 0x42))
    uid = service.rand_uid()
    assert uid >> 32 == uid & 0xFFFFFFFF


def test_rand_ranges(tmp_path):
    service = make_service(tmp_path, A_UID)
    values = [service.rand(10, 20) for _ in range(50)]
    assert all(10 <= v < 20 for v in values)
    assert all(0 <= service.rand() < 2**31 - 1 for _ in range(10))
    assert service.rand(5, 3) == 0


def test_rand_before_begin(tmp_path):
    service = LoRaService(A_UID, Repositories(tmp_path))
    assert all(0 <= service.rand(7) < 7 for _ in range(20))


def test_rand_rejects_empty_range(tmp_path):
    service = make_service(tmp_path, A_UID)
    with pytest.raises(ValueError):
        service.rand(0)