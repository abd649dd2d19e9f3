# loramesh

Encrypted peer-to-peer text and picture messaging over a LoRa-style radio
link. The package holds the messaging stack: the wire format, a framed
receive buffer, XOR encryption with a per-friend key, a pairing handshake
between two devices, profile exchange, and file-backed storage of messages,
conversations and friends.

## Install

```
pip install loramesh
```

## Modules

- `loramesh.packets`: the wire format. `MessagePacket`, `TextMessage`,
  `PicMessage`, `ProfilePacket`, `ProfileResponse`, `AdvertisePair`,
  `RequestPair` and `AckPair` each have `pack()` and a class method
  `unpack(data)`; `MessagePacket.unpack` and `ProfilePacket.unpack` return
  the matching subclass. `Frame` is the header around every transmission
  (`pack_header()`, `Frame.unpack_header(data)`), `Profile` is a nickname,
  avatar and hue, and `ReceivedPacket` pairs decoded content with its
  sender's uid. Malformed input raises `ValueError`.
- `loramesh.lora`: `LoRaService` frames and queues outgoing packets,
  encrypts all but pairing requests and broadcasts with `enc_dec`, and hands
  finished frames to a `Radio`. Bytes received over the air go in through
  `feed(data)`; `process_buffer()` cuts one complete frame out of the buffer
  and `process_packets()` decrypts and decodes queued frames into inboxes read
  with `get_message()`, `get_profile()`, `get_pair_broadcast()`,
  `get_pair_request()` and `get_pair_ack()`. Sending an encrypted packet to a
  device without a stored key raises `UnknownRecipientError`; feeding more
  than the 1024-byte buffer holds raises `BufferError`. `rand()`, `rand(n)`,
  `rand(a, b)` and `rand_uid()` draw from random bytes supplied by the radio.
- `loramesh.repo`, `loramesh.convo_repo`, `loramesh.message_repo` and
  `loramesh.storage`: file-backed repositories (`Repo`, `ConvoRepo`,
  `MessageRepo`, `FriendRepo`), one file per entity named by its uid in
  hexadecimal, with an optional in-memory cache. `Repositories(root)` groups
  the message, conversation and friend stores under `root/Repo/`.
- `loramesh.messages`: `MessageService` sends text (cut to 60 characters) and
  pictures, resends unacknowledged messages, acknowledges incoming ones,
  keeps each conversation's last message and the unread state, and calls
  received, changed and unread listeners.
- `loramesh.profiles`: `ProfileService` loads this device's profile (creating
  a random default one on first start), answers profile requests, and every
  10 seconds asks friends whose advertised hash no longer matches
  `generate_hash` of their stored profile for their new one.
- `loramesh.pairing`: `PairService` advertises this device, collects nearby
  devices in `found_profiles` / `found_uids`, and runs the handshake through
  `BroadcastState`, `RequestState` and `AcknowledgeState`. It can be used as a
  context manager; leaving it removes a friend stored by an unfinished
  pairing.
- `loramesh.buzzer`: `BuzzerService` clicks on `Button` presses and plays a
  three-note melody when a message arrives, on any object with `tone()` and
  `no_tone()` methods.
- `loramesh.shutdown`: `ShutdownService` checks a battery percentage every
  10 seconds, calling a warning callback once at 10 % and a shutdown callback
  at 1 %.

## A packet round trip

```python
from loramesh.packets import MessagePacket, TextMessage

data = TextMessage(uid=42, text="hello").pack()
again = MessagePacket.unpack(data)
assert isinstance(again, TextMessage)
assert again.text == "hello" and again.uid == 42
```

Text longer than 60 bytes is cut to 60 when packed.

## Two devices talking

```python
from loramesh.lora import LoRaService
from loramesh.packets import PacketType, TextMessage
from loramesh.storage import Friend, Repositories

shared_key = bytes(range(32))

alice_store = Repositories("alice-data")
alice_store.begin()
alice_store.friends.add(Friend(uid=2, enc_key=shared_key))

bob_store = Repositories("bob-data")
bob_store.begin()
bob_store.friends.add(Friend(uid=1, enc_key=shared_key))

alice = LoRaService(1, alice_store)
alice.begin()
bob = LoRaService(2, bob_store)
bob.begin()

alice.send(2, PacketType.MSG, TextMessage(uid=7, text="hi"))
alice.flush_outbox()

bob.feed(alice.radio.transmitted[-1])
bob.process_buffer()
bob.process_packets()
packet = bob.get_message()
assert packet.sender == 1 and packet.content.text == "hi"
```

## Driving the services

`MessageService`, `ProfileService`, `PairService`, `BuzzerService` and
`ShutdownService` are advanced by calling `loop(micros)` with the time elapsed
since the previous call, in microseconds. `LoRaService.loop()` takes no
argument: it refills the random pool, transmits the outbox, extracts at most
one frame from the input buffer and processes received frames. Create the
services, wire them together, and call `begin()` before the first loop.

## What it does not do

- It does not talk to radio hardware. `Radio` is in memory: `transmit()`
  records frames in `transmitted` and `random_byte()` returns random bytes.
  Moving bytes between devices is up to the caller, via `transmitted` and
  `feed()`.
- It has no screens, display or input handling, no sleep or power
  management, and no command-line program.
- Frame checksums are always written as 1 and are not checked.

## Tests

```
pip install loramesh[test]
pytest
```