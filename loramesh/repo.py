"""File-backed repository of entities keyed by 64-bit uid."""

from __future__ import annotations

import struct
from pathlib import Path
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class Repo(Generic[T]):
    """Stores one entity per file, named by its uid in hexadecimal.

    A cached repository keeps every record's bytes in memory and answers
    lookups from there.  Entities carry a ``uid`` attribute; the default
    codec uses the entity type's ``pack()`` and ``unpack(data)``.
    """

    def __init__(self, directory: str | Path, entity_type: Any, cached: bool = False):
        self.directory = Path(directory)
        self.entity_type = entity_type
        self.cached = cached
        self._cache: dict[int, bytes] = {}

    def begin(self, cached: bool = False) -> None:
        if self.directory.exists() and not self.directory.is_dir():
            raise NotADirectoryError(f"repository directory is a file: {self.directory}")
        self.directory.mkdir(parents=True, exist_ok=True)

        self._cache.clear()
        self.cached = cached
        if cached:
            for uid in self.all(bypass_cache=True):
                self.get(uid, bypass_cache=True)

    def add(self, obj: T) -> bool:
        uid = obj.uid  # type: ignore[attr-defined]
        if self.cached and uid in self._cache:
            return False
        path = self.path_for(uid)
        if not self.cached and path.exists():
            return False

        data = self.encode(obj)
        try:
            path.write_bytes(data)
        except OSError:
            path.unlink(missing_ok=True)
            return False

        if self.cached:
            self._cache[uid] = data
        return True

    def update(self, obj: T) -> bool:
        if not self.remove(obj.uid):  # type: ignore[attr-defined]
            return False
        return self.add(obj)

    def remove(self, uid: int) -> bool:
        if self.cached and uid not in self._cache:
            return False
        path = self.path_for(uid)
        if not self.cached and not path.exists():
            return False

        self._cache.pop(uid, None)
        try:
            path.unlink()
        except OSError:
            return False
        return True

    def get(self, uid: int, bypass_cache: bool = False) -> T | None:
        """Return the stored entity, or None if it is missing or unreadable."""
        if self.cached and not bypass_cache:
            data = self._cache.get(uid)
            if data is None:
                return None
        else:
            try:
                data = self.path_for(uid).read_bytes()
            except OSError:
                return None

        try:
            obj = self.decode(uid, data)
        except (ValueError, struct.error):
            return None

        if self.cached and uid not in self._cache:
            self._cache[uid] = data
        return obj

    def all(self, bypass_cache: bool = False) -> list[int]:
        if self.cached and not bypass_cache:
            return list(self._cache)

        if not self.directory.is_dir():
            return []

        uids = []
        for entry in self.directory.iterdir():
            if not entry.is_file():
                continue
            try:
                uids.append(int(entry.name, 16))
            except ValueError:
                continue
        return sorted(uids, reverse=True)

    def exists(self, uid: int) -> bool:
        if self.cached:
            return uid in self._cache
        return self.path_for(uid).exists()

    def clear(self) -> None:
        for uid in self.all():
            self.remove(uid)
        self._cache.clear()

    def path_for(self, uid: int) -> Path:
        return self.directory / f"{uid:016x}"

    def encode(self, obj: T) -> bytes:
        return obj.pack()  # type: ignore[attr-defined]

    def decode(self, uid: int, data: bytes) -> T:
        obj = self.entity_type.unpack(data)
        obj.uid = uid
        return obj