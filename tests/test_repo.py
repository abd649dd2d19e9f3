from dataclasses import dataclass

import pytest

from loramesh.repo import Repo


@dataclass
class Item:
    uid: int = 0
    value: int = 0

    def pack(self):
        return self.value.to_bytes(4, "little")

    @classmethod
    def unpack(cls, data):
        if len(data) < 4:
            raise ValueError("short")
        return cls(value=int.from_bytes(data[:4], "little"))


@pytest.fixture(params=[False, True], ids=["plain", "cached"])
def repo(request, tmp_path):
    r = Repo(tmp_path / "items", Item)
    r.begin(request.param)
    return r


def test_add_and_get(repo):
    assert repo.add(Item(5, 42))
    assert repo.get(5) == Item(5, 42)
    assert repo.exists(5)


def test_add_duplicate_fails(repo):
    assert repo.add(Item(5, 1))
    assert not repo.add(Item(5, 2))
    assert repo.get(5).value == 1


def test_get_missing_is_none(repo):
    assert repo.get(99) is None
    assert not repo.exists(99)


def test_update(repo):
    repo.add(Item(3, 1))
    assert repo.update(Item(3, 7))
    assert repo.get(3).value == 7


def test_update_missing_fails(repo):
    assert not repo.update(Item(3, 7))
    assert not repo.exists(3)


def test_remove(repo):
    repo.add(Item(3, 1))
    assert repo.remove(3)
    assert not repo.exists(3)
    assert not repo.remove(3)


def test_all_lists_every_uid(repo):
    for uid in (1, 3, 2):
        repo.add(Item(uid, uid))
    assert sorted(repo.all()) == [1, 2, 3]
    assert repo.all(bypass_cache=True) == [3, 2, 1]


def test_clear(repo):
    for uid in (1, 2):
        repo.add(Item(uid, uid))
    repo.clear()
    assert repo.all() == []
    assert repo.all(bypass_cache=True) == []


def test_path_for_uses_hex_name(tmp_path):
    r = Repo(tmp_path, Item)
    assert r.path_for(0x1F).name == "000000000000001f"
    assert r.path_for(0x1F).parent == tmp_path


def test_cached_begin_loads_existing(tmp_path):
    plain = Repo(tmp_path / "items", Item)
    plain.begin()
    plain.add(Item(8, 80))

    cached = Repo(tmp_path / "items", Item)
    cached.begin(True)
    assert cached.all() == [8]
    plain.path_for(8).unlink()
    assert cached.get(8) == Item(8, 80)
    assert cached.get(8, bypass_cache=True) is None


def test_corrupt_file_reads_as_none(tmp_path):
    r = Repo(tmp_path / "items", Item)
    r.begin()
    r.path_for(4).write_bytes(b"\x01")
    assert r.get(4) is None


def test_non_hex_names_are_ignored(tmp_path):
    r = Repo(tmp_path / "items", Item)
    r.begin()
    r.add(Item(10, 1))
    (r.directory / "notes.txt").write_bytes(b"")
    (r.directory / "sub").mkdir()
    assert r.all() == [10]


def test_begin_on_file_raises(tmp_path):
    target = tmp_path / "items"
    target.write_bytes(b"")
    with pytest.raises(NotADirectoryError):
        Repo(target, Item).begin()


def test_begin_creates_directory(tmp_path):
    r = Repo(tmp_path / "a" / "b", Item)
    r.begin()
    assert r.directory.is_dir()