import pytest

from loramesh.message_repo import Message, MessageRepo, MessageType


@pytest.fixture
def codec(tmp_path):
    return MessageRepo(tmp_path)


def test_text_round_trip(codec):
    message = Message(uid=1, convo=2, outgoing=True, received=False, text="hi there")
    assert codec.decode(1, codec.encode(message)) == message


def test_pic_round_trip(codec):
    message = Message(uid=3, convo=4, received=True, type=MessageType.PIC, pic=12)
    assert codec.decode(3, codec.encode(message)) == message


def test_decode_uses_given_uid(codec):
    data = codec.encode(Message(uid=1, convo=2, text="x"))
    assert codec.decode(99, data).uid == 99


def test_pic_record_is_one_byte_longer_than_empty_text_head(codec):
    pic = codec.encode(Message(type=MessageType.PIC, pic=1))
    text = codec.encode(Message(text=""))
    assert len(text) - len(pic) == 3


def test_truncated_text_raises(codec):
    data = codec.encode(Message(uid=1, text="abcdef"))
    with pytest.raises(ValueError):
        codec.decode(1, data[:-1])


def test_missing_pic_raises(codec):
    data = codec.encode(Message(uid=1, type=MessageType.PIC, pic=5))
    with pytest.raises(ValueError):
        codec.decode(1, data[:-1])


def test_unknown_type_raises(codec):
    data = bytearray(codec.encode(Message(uid=1, type=MessageType.PIC, pic=5)))
    data[18] = 7
    with pytest.raises(ValueError):
        codec.decode(1, bytes(data))


def test_store_and_load(tmp_path):
    repo = MessageRepo(tmp_path / "msg")
    repo.begin()
    message = Message(uid=0xDEAD, convo=5, outgoing=True, text="stored")
    assert repo.add(message)
    assert repo.get(0xDEAD) == message
    assert repo.all() == [0xDEAD]