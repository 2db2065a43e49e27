import json
import os

import pytest

from blob_store import INDEX_BACKUP_NAME, INDEX_NAME, BlobStore
from errors import PersistenceIOError


def test_missing_key_reads_none(store):
    assert store.read(("1", "game", "nothing.state")) is None
    assert not store.exists(("1", "game", "nothing.state"))


def test_write_read_delete(store):
    key = ("1", "game", "entry.state")
    store.write(key, b"payload")
    assert store.read(key) == b"payload"
    store.delete(key)
    assert store.read(key) is None
    store.delete(key)  # missing keys are ignored


def test_layout_is_profile_then_game(store):
    store.write(("p1", "g1", "x.state"), b"1")
    assert os.path.exists(os.path.join(store.root, "p1", "g1", "x.state"))


def test_names_skip_index_files(store):
    store.write(("1", "g", "a.state"), b"a")
    store.write(("1", "g", "a.png"), b"p")
    store.commit_index("1", "g", {"manual": [], "auto": []})
    store.commit_index("1", "g", {"manual": [], "auto": []})
    assert store.names("1", "g") == ["a.png", "a.state"]
    assert store.names("1", "other") == []


def test_index_commit_and_backup(store):
    store.commit_index("1", "g", {"clock": 1, "manual": [], "auto": []})
    store.commit_index("1", "g", {"clock": 2, "manual": [], "auto": []})

    index = store.read_index("1", "g")
    assert index["clock"] == 2
    assert index["version"] == 1

    directory = os.path.join(store.root, "1", "g")
    with open(os.path.join(directory, INDEX_BACKUP_NAME), encoding="utf-8") as f:
        assert json.load(f)["clock"] == 1


def test_unreadable_index_falls_back_to_backup(store):
    store.commit_index("1", "g", {"clock": 1, "manual": [], "auto": []})
    store.commit_index("1", "g", {"clock": 2, "manual": [], "auto": []})
    with open(os.path.join(store.root, "1", "g", INDEX_NAME), "w") as f:
        f.write("{ torn")

    assert store.read_index("1", "g")["clock"] == 1


def test_no_index_yet(store):
    assert store.read_index("1", "g") is None


def test_key_components_cannot_escape_root(store):
    with pytest.raises(ValueError):
        store.write(("..", "g", "x"), b"1")
    store.write(("a/b", "g", "x"), b"1")
    assert os.path.exists(os.path.join(store.root, "a_b", "g", "x"))


def test_write_failure_is_persistence_error(store):
    # A file where the profile directory should be
    with open(os.path.join(store.root, "blocked"), "w") as f:
        f.write("not a directory")

    with pytest.raises(PersistenceIOError):
        store.write(("blocked", "g", "x.state"), b"1")
