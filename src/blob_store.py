#!/usr/bin/env python3

"""
NesCaster Blob Store
Key-addressed durable storage for save-state records, thumbnails and the
per-(profile, game) stack index.

Keys are (profile_id, game_id, name) tuples.  Nothing outside this module
builds paths; on disk the layout is

    <root>/<profile_id>/<game_id>/<name>
    <root>/<profile_id>/<game_id>/stack.json        index
    <root>/<profile_id>/<game_id>/stack_backup.json previous index

Features:
- Safe atomic writes (temp file, fsync, rename over the old file)
- Automatic index backup, used when the primary index is unreadable
"""

import json
import os
import shutil
from datetime import datetime

from errors import PersistenceIOError

INDEX_NAME = "stack.json"
INDEX_BACKUP_NAME = "stack_backup.json"
TEMP_SUFFIX = ".tmp"

INDEX_VERSION = 1


def _safe_component(value):
    """Make one key component usable as a single path segment."""
    text = str(value).replace("/", "_").replace("\\", "_")
    if text in ("", ".", ".."):
        raise ValueError(f"invalid store key component: {value!r}")
    return text


class BlobStore:
    """
    File-backed key/blob store with atomic index commits.

    Every public method either completes or raises PersistenceIOError;
    a failed write never leaves a half-written file under its final name.
    """

    def __init__(self, root):
        self.root = os.path.abspath(root)
        os.makedirs(self.root, exist_ok=True)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def _dir(self, profile_id, game_id):
        return os.path.join(
            self.root, _safe_component(profile_id), _safe_component(game_id)
        )

    def _path(self, key):
        profile_id, game_id, name = key
        return os.path.join(self._dir(profile_id, game_id), _safe_component(name))

    def _write_atomic(self, path, data):
        temp_path = path + TEMP_SUFFIX
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(temp_path, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, path)
        except OSError as e:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass
            raise PersistenceIOError(f"write failed for {path}: {e}") from e

    # ------------------------------------------------------------------
    # Blobs
    # ------------------------------------------------------------------

    def read(self, key):
        """Return the blob stored under *key*, or None if there is none."""
        path = self._path(key)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as e:
            raise PersistenceIOError(f"read failed for {path}: {e}") from e

    def write(self, key, data):
        self._write_atomic(self._path(key), bytes(data))

    def delete(self, key):
        """Remove *key*; missing keys are ignored."""
        path = self._path(key)
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise PersistenceIOError(f"delete failed for {path}: {e}") from e

    def exists(self, key):
        return os.path.exists(self._path(key))

    def names(self, profile_id, game_id):
        """Names of every blob stored for (profile_id, game_id), index files excluded."""
        directory = self._dir(profile_id, game_id)
        if not os.path.isdir(directory):
            return []
        skip = (INDEX_NAME, INDEX_BACKUP_NAME)
        return sorted(
            name for name in os.listdir(directory)
            if name not in skip and not name.endswith(TEMP_SUFFIX)
        )

    def keys(self):
        """(profile_id, game_id) directory names of every key with a committed index."""
        found = []
        try:
            for profile_dir in sorted(os.listdir(self.root)):
                profile_path = os.path.join(self.root, profile_dir)
                if not os.path.isdir(profile_path):
                    continue
                for game_dir in sorted(os.listdir(profile_path)):
                    game_path = os.path.join(profile_path, game_dir)
                    if any(os.path.exists(os.path.join(game_path, name))
                           for name in (INDEX_NAME, INDEX_BACKUP_NAME)):
                        found.append((profile_dir, game_dir))
        except OSError as e:
            raise PersistenceIOError(f"could not list {self.root}: {e}") from e
        return found

    # ------------------------------------------------------------------
    # Index
    # ------------------------------------------------------------------

    def _load_json(self, path):
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict) or "version" not in data:
            raise ValueError("index is not a stack document")
        return data

    def read_index(self, profile_id, game_id):
        """
        Load the stack index for (profile_id, game_id).

        Returns:
            dict or None if no index has been committed yet
        """
        directory = self._dir(profile_id, game_id)
        index_path = os.path.join(directory, INDEX_NAME)
        backup_path = os.path.join(directory, INDEX_BACKUP_NAME)

        if os.path.exists(index_path):
            try:
                return self._load_json(index_path)
            except (OSError, ValueError) as e:
                print(f"[BlobStore] Error loading index {index_path}: {e}")
        if os.path.exists(backup_path):
            try:
                print("[BlobStore] Attempting to load index from backup...")
                data = self._load_json(backup_path)
                print("[BlobStore] Restored index from backup")
                return data
            except (OSError, ValueError) as e:
                print(f"[BlobStore] Backup index also failed: {e}")
        return None

    def commit_index(self, profile_id, game_id, index):
        """
        Durably replace the stack index.

        The previous index is copied to the backup file first, then the new
        one is written to a temp file and renamed over the old index; readers
        only ever see the old or the new document.
        """
        directory = self._dir(profile_id, game_id)
        index_path = os.path.join(directory, INDEX_NAME)
        document = dict(index)
        document.setdefault("version", INDEX_VERSION)
        document["last_modified"] = datetime.now().isoformat()

        try:
            payload = json.dumps(document, indent=2, ensure_ascii=False).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise PersistenceIOError(f"index is not serialisable: {e}") from e

        if os.path.exists(index_path):
            try:
                shutil.copy2(index_path, os.path.join(directory, INDEX_BACKUP_NAME))
            except OSError as e:
                print(f"[BlobStore] Index backup failed: {e}")

        self._write_atomic(index_path, payload)
