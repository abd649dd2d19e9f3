"""Encrypted peer-to-peer messaging over a LoRa link: packets, storage, pairing and services."""

__version__ = "0.1.0"

__all__ = [
    "buzzer",
    "convo_repo",
    "lora",
    "message_repo",
    "messages",
    "packets",
    "pairing",
    "profiles",
    "repo",
    "shutdown",
    "storage",
]