"""Chat message service: sending, receiving, acknowledging and unread tracking."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from .convo_repo import Convo
from .lora import UnknownRecipientError
from .message_repo import Message, MessageType
from .packets import (
    MAX_TEXT_LENGTH,
    MessageKind,
    MessagePacket,
    PacketType,
    PicMessage,
    ReceivedPacket,
    TextMessage,
)

log = logging.getLogger(__name__)

MessageListener = Callable[[Message], None]
UnreadListener = Callable[[bool], None]


class MessageService:
    """Sends chat messages to friends and files incoming ones into conversations."""

    def __init__(self, storage: Any, lora: Any):
        self.storage = storage
        self.lora = lora
        self.messages_sent = 0
        self.messages_received = 0
        self._last_messages: dict[int, Message] = {}
        self._unread = False
        self._received_listeners: list[MessageListener] = []
        self._changed_listeners: list[MessageListener] = []
        self._unread_listeners: list[UnreadListener] = []

    def begin(self) -> None:
        """Load the last message of every conversation and the unread state."""
        self._unread = False
        self._last_messages.clear()
        for uid in self.storage.convos.all():
            convo = self.storage.convos.get(uid)
            if convo is None or not convo.messages:
                continue
            self._unread |= convo.unread
            message = self.storage.messages.get(convo.messages[-1])
            if message is None:
                continue
            self._last_messages[uid] = message

    def send_text(self, convo: int, text: str) -> Optional[Message]:
        message = Message(type=MessageType.TEXT, text=text[:MAX_TEXT_LENGTH])
        return self._send_message(convo, message)

    def send_pic(self, convo: int, index: int) -> Optional[Message]:
        if not 0 <= index <= 0xFF:
            raise ValueError(f"picture index out of range: {index}")
        message = Message(type=MessageType.PIC, pic=index)
        return self._send_message(convo, message)

    def resend(self, convo: int, message: int) -> Optional[Message]:
        """Send an outgoing, not yet acknowledged message again."""
        if not self.storage.convos.exists(convo):
            return None
        stored = self.storage.messages.get(message)
        if stored is None or stored.received or not stored.outgoing:
            return None
        self._send_packet(convo, stored)
        return stored

    def delete_message(self, convo: int, message: int) -> bool:
        record = self.storage.convos.get(convo)
        if record is None or message not in record.messages:
            return False

        was_last = record.messages[-1] == message
        record.messages.remove(message)
        if not self.storage.convos.update(record):
            return False
        if not self.storage.messages.remove(message):
            return False

        if was_last:
            self._last_messages.pop(convo, None)
            if record.messages:
                previous = self.storage.messages.get(record.messages[-1])
                if previous is not None:
                    self._last_messages[convo] = previous
        return True

    def last_message(self, convo: int) -> Optional[Message]:
        return self._last_messages.get(convo)

    def delete_friend(self, uid: int) -> bool:
        if uid == self.lora.uid:
            return False
        if not self.storage.friends.remove(uid):
            return False
        if not self.storage.convos.remove(uid):
            return False
        self._last_messages.pop(uid, None)
        self._notify_unread()
        return True

    def loop(self, micros: int) -> None:
        packet = self.lora.get_message()
        if packet is None or not self.storage.friends.exists(packet.sender):
            return
        if packet.content.kind is MessageKind.ACK:
            self._receive_ack(packet)
        else:
            self._receive_message(packet)

    def add_received_listener(self, listener: MessageListener) -> None:
        self._received_listeners.append(listener)

    def remove_received_listener(self, listener: MessageListener) -> None:
        if listener in self._received_listeners:
            self._received_listeners.remove(listener)

    def add_changed_listener(self, listener: MessageListener) -> None:
        self._changed_listeners.append(listener)

    def remove_changed_listener(self, listener: MessageListener) -> None:
        if listener in self._changed_listeners:
            self._changed_listeners.remove(listener)

    def add_unread_listener(self, listener: UnreadListener) -> None:
        self._unread_listeners.append(listener)

    def remove_unread_listener(self, listener: UnreadListener) -> None:
        if listener in self._unread_listeners:
            self._unread_listeners.remove(listener)

    def has_unread(self) -> bool:
        return self._unread

    def mark_read(self, convo: int) -> bool:
        return self._set_unread(convo, False)

    def mark_unread(self, convo: int) -> bool:
        return self._set_unread(convo, True)

    def _set_unread(self, convo: int, unread: bool) -> bool:
        record = self.storage.convos.get(convo)
        if record is None:
            return False
        if record.unread == unread:
            return True
        record.unread = unread
        if not self.storage.convos.update(record):
            return False
        self._notify_unread()
        return True

    def _send_message(self, uid: int, message: Message) -> Optional[Message]:
        if not self.storage.friends.exists(uid):
            return None

        convo = self.storage.convos.get(uid) or Convo()
        message.convo = uid
        message.uid = self.lora.rand_uid()
        while self.storage.messages.exists(message.uid):
            message.uid = self.lora.rand_uid()
        message.outgoing = True

        if not self._send_packet(uid, message):
            return None
        if not self.storage.messages.add(message):
            return None

        convo.messages.append(message.uid)
        if convo.uid == 0:
            convo.uid = uid
            if not self.storage.convos.add(convo):
                return None
        elif not self.storage.convos.update(convo):
            return None

        self._last_messages[uid] = message
        self.messages_sent += 1
        return message

    def _send_packet(self, receiver: int, message: Message) -> bool:
        packet: MessagePacket
        if message.type is MessageType.TEXT:
            packet = TextMessage(uid=message.uid, text=message.text)
        elif message.type is MessageType.PIC:
            packet = PicMessage(uid=message.uid, index=message.pic)
        else:
            return False
        self._transmit(receiver, packet)
        return True

    def _transmit(self, receiver: int, packet: MessagePacket) -> None:
        try:
            self.lora.send(receiver, PacketType.MSG, packet)
        except UnknownRecipientError:
            log.warning("recipient not found: %016x", receiver)

    def _send_ack(self, receiver: int, uid: int) -> None:
        self._transmit(receiver, MessagePacket(uid=uid, kind=MessageKind.ACK))

    def _receive_message(self, packet: ReceivedPacket[MessagePacket]) -> None:
        content = packet.content
        message = Message(uid=content.uid, convo=packet.sender, outgoing=False)
        if isinstance(content, TextMessage):
            message.type = MessageType.TEXT
            message.text = content.text
        elif isinstance(content, PicMessage):
            message.type = MessageType.PIC
            message.pic = content.index
        else:
            return

        existing = self.storage.messages.get(message.uid)
        if existing is not None:
            if existing.convo != message.convo or existing.type != message.type:
                log.warning("got message with already existing uid")
                return
            if existing.outgoing:
                log.warning("received own message")
                return
            # Already stored: the sender missed our acknowledgement.
            self._send_ack(packet.sender, message.uid)
            return

        if not self.storage.messages.add(message):
            log.error("error adding message")
            return

        convo = self.storage.convos.get(packet.sender) or Convo()
        convo.messages.append(message.uid)
        convo.unread = True
        if convo.uid == 0:
            convo.uid = packet.sender
            stored = self.storage.convos.add(convo)
        else:
            stored = self.storage.convos.update(convo)
        if not stored:
            log.error("error storing conversation")
            self.storage.messages.remove(message.uid)
            return

        self._last_messages[convo.uid] = message
        for listener in list(self._received_listeners):
            listener(message)

        self._send_ack(packet.sender, message.uid)
        self.messages_received += 1
        self._notify_unread()

    def _receive_ack(self, packet: ReceivedPacket[MessagePacket]) -> None:
        message = self.storage.messages.get(packet.content.uid)
        if message is None:
            return
        message.received = True
        if not self.storage.messages.update(message):
            log.error("message ACK update failed")
        for listener in list(self._changed_listeners):
            listener(message)

    def _notify_unread(self) -> None:
        has_unread = False
        for uid in self.storage.convos.all():
            convo = self.storage.convos.get(uid)
            if convo is not None and convo.unread:
                has_unread = True
                break

        if has_unread == self._unread:
            return
        self._unread = has_unread
        for listener in list(self._unread_listeners):
            listener(has_unread)