#!/usr/bin/env python3

"""
save_stack.py - Bounded save-state history per (profile, game)

Every (profile_id, game_id) key owns two independent stacks:

  manual  user-triggered saves, bound N in {5, 10, 15} (per profile)
  auto    trigger-driven saves, bound M, never counted against N

Stacks are immutable tuples ordered newest first.  A mutation builds a
new StackState and publishes it with a single assignment while holding
the key's lock, so list() never sees a half-applied push or eviction.

Durable work (record file, thumbnail, index commit, removing evicted
files) runs on a WriteQueue.  The index written to disk only ever names
entries whose record file is already written; evicted files are removed
only after an index that no longer names them is committed.  A write is
retried once; if it fails again the entry is dropped from memory, the
entries it evicted are put back, and a SaveWarning is emitted.
"""

import threading
import uuid
from datetime import datetime

from config import (
    AUTO_SAVE_HISTORY_DEFAULT,
    AUTO_SAVE_HISTORY_MAX,
    SAVE_HISTORY_DEFAULT,
    SAVE_HISTORY_OPTIONS,
    STATE_COMPRESSION_LEVEL,
)
from errors import ConfigError, CorruptStateError, NotFoundError, PersistenceIOError
from state_codec import decode_record, encode_record
from thumbnails import make_thumbnail
from write_queue import WriteQueue

STATE_SUFFIX = ".state"
THUMBNAIL_SUFFIX = ".png"


class SaveMetadata:
    """Display data stored with each save."""

    __slots__ = ("game_name", "play_time", "level_hint", "is_auto_save", "frame_count")

    def __init__(self, game_name, play_time=0.0, level_hint=None, is_auto_save=False,
                 frame_count=0):
        self.game_name = game_name
        self.play_time = play_time
        self.level_hint = level_hint
        self.is_auto_save = is_auto_save
        self.frame_count = frame_count

    def copy(self, **changes):
        values = self.to_dict()
        values.update(changes)
        return SaveMetadata(**values)

    def to_dict(self):
        return {
            "game_name": self.game_name,
            "play_time": self.play_time,
            "level_hint": self.level_hint,
            "is_auto_save": self.is_auto_save,
            "frame_count": self.frame_count,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            game_name=data.get("game_name", ""),
            play_time=float(data.get("play_time", 0.0)),
            level_hint=data.get("level_hint"),
            is_auto_save=bool(data.get("is_auto_save", False)),
            frame_count=int(data.get("frame_count", 0)),
        )

    def __eq__(self, other):
        return isinstance(other, SaveMetadata) and self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"SaveMetadata({self.to_dict()!r})"


class SaveStateEntry:
    """One persisted save.  Never mutated; updates are new entries."""

    __slots__ = ("entry_id", "profile_id", "game_id", "timestamp", "metadata",
                 "is_auto", "has_thumbnail", "created_at")

    def __init__(self, entry_id, profile_id, game_id, timestamp, metadata,
                 is_auto=False, has_thumbnail=False, created_at=None):
        set_field = object.__setattr__
        set_field(self, "entry_id", entry_id)
        set_field(self, "profile_id", profile_id)
        set_field(self, "game_id", game_id)
        set_field(self, "timestamp", timestamp)
        set_field(self, "metadata", metadata)
        set_field(self, "is_auto", is_auto)
        set_field(self, "has_thumbnail", has_thumbnail)
        set_field(self, "created_at", created_at or datetime.now().isoformat())

    def __setattr__(self, name, value):
        raise AttributeError(f"SaveStateEntry is read-only ({name})")

    @property
    def state_name(self):
        return self.entry_id + STATE_SUFFIX

    @property
    def thumbnail_name(self):
        return self.entry_id + THUMBNAIL_SUFFIX

    def to_dict(self):
        return {
            "id": self.entry_id,
            "timestamp": self.timestamp,
            "created_at": self.created_at,
            "has_thumbnail": self.has_thumbnail,
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data, profile_id, game_id, is_auto):
        return cls(
            entry_id=str(data["id"]),
            profile_id=profile_id,
            game_id=game_id,
            timestamp=int(data["timestamp"]),
            metadata=SaveMetadata.from_dict(data.get("metadata", {})),
            is_auto=is_auto,
            has_thumbnail=bool(data.get("has_thumbnail", False)),
            created_at=data.get("created_at", ""),
        )

    def __repr__(self):
        kind = "auto" if self.is_auto else "manual"
        return f"SaveStateEntry({self.entry_id[:8]}, #{self.timestamp}, {kind})"


class EntrySummary:
    """What the load-history view gets: no state blob."""

    def __init__(self, entry_id, timestamp, created_at, thumbnail_key, metadata,
                 is_auto, is_latest):
        self.entry_id = entry_id
        self.timestamp = timestamp
        self.created_at = created_at
        self.thumbnail_key = thumbnail_key
        self.metadata = metadata
        self.is_auto = is_auto
        self.is_latest = is_latest


class StackState:
    """Both stacks of one key plus its clock.  Replaced whole, never edited."""

    __slots__ = ("manual", "auto", "clock")

    def __init__(self, manual=(), auto=(), clock=0):
        self.manual = tuple(manual)
        self.auto = tuple(auto)
        self.clock = clock

    def stack(self, is_auto):
        return self.auto if is_auto else self.manual

    def with_stack(self, is_auto, entries, clock=None):
        if clock is None:
            clock = self.clock
        if is_auto:
            return StackState(self.manual, entries, clock)
        return StackState(entries, self.auto, clock)

    def find(self, entry_id):
        for entry in self.manual + self.auto:
            if entry.entry_id == entry_id:
                return entry
        return None


class SaveAcknowledged:
    """Emitted once a push is committed to the in-memory stack."""

    def __init__(self, entry_id, profile_id, game_id, position, capacity, is_auto):
        self.entry_id = entry_id
        self.profile_id = profile_id
        self.game_id = game_id
        self.position = position
        self.capacity = capacity
        self.is_auto = is_auto

    @property
    def message(self):
        kind = "Auto-saved" if self.is_auto else "Saved"
        return f"{kind} to slot {self.position} of {self.capacity}"


class SaveWarning:
    """Emitted when a save could not be made durable and was dropped."""

    def __init__(self, entry_id, profile_id, game_id, message):
        self.entry_id = entry_id
        self.profile_id = profile_id
        self.game_id = game_id
        self.message = message


def _check_history_size(value):
    if value not in SAVE_HISTORY_OPTIONS:
        raise ConfigError(f"history size must be one of {SAVE_HISTORY_OPTIONS}, got {value!r}")
    return value


def _check_auto_history_size(value):
    if not 1 <= int(value) <= AUTO_SAVE_HISTORY_MAX:
        raise ConfigError(f"auto history size must be 1..{AUTO_SAVE_HISTORY_MAX}, got {value!r}")
    return int(value)


class SaveStackManager:
    """
    Owns every SaveStateEntry.  Profile and game are always passed in;
    there is no notion of a current profile here.

    Usage:
        manager = SaveStackManager(BlobStore(PROFILES_DIR))
        entry_id = manager.push(profile_id, game_id, state, frame.video, meta)
        for summary in manager.list(profile_id, game_id, include_auto=True):
            ...
        core.restore_state(manager.load(entry_id))
    """

    def __init__(self, store, history_size=SAVE_HISTORY_DEFAULT,
                 auto_history_size=AUTO_SAVE_HISTORY_DEFAULT, writer=None,
                 compress=True):
        self.store = store
        self.history_size = _check_history_size(history_size)
        self.auto_history_size = _check_auto_history_size(auto_history_size)
        self.writer = writer if writer is not None else WriteQueue()
        self.compress = compress

        self._stacks = {}
        self._profile_capacity = {}
        self._locations = {}
        self._pending = {}
        self._listeners = []
        self._lock = threading.Lock()
        self._key_locks = {}

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def add_listener(self, callback):
        """Register callback(event) for SaveAcknowledged / SaveWarning events."""
        self._listeners.append(callback)

    def remove_listener(self, callback):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _emit(self, event):
        for callback in list(self._listeners):
            try:
                callback(event)
            except Exception as e:
                print(f"[SaveStack] Listener error: {e}")

    # ------------------------------------------------------------------
    # Stack access
    # ------------------------------------------------------------------

    def capacity(self, is_auto, profile_id=None):
        """Stack bound for *profile_id*, or the manager default if it has none."""
        history_size, auto_history_size = self._profile_capacity.get(
            str(profile_id), (self.history_size, self.auto_history_size)
        )
        return auto_history_size if is_auto else history_size

    def _key_lock(self, key):
        with self._lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.RLock()
            return lock

    def _publish(self, key, state):
        with self._lock:
            self._stacks[key] = state
            for entry in state.manual + state.auto:
                self._locations[entry.entry_id] = key

    def _forget(self, entry_ids):
        with self._lock:
            for entry_id in entry_ids:
                self._locations.pop(entry_id, None)

    def _state(self, key):
        """Current StackState for *key*, loading it from the index on first use."""
        state = self._stacks.get(key)
        if state is not None:
            return state
        with self._key_lock(key):
            state = self._stacks.get(key)
            if state is None:
                state = self._load_state(key)
                self._publish(key, state)
            return state

    def _load_state(self, key):
        profile_id, game_id = key
        index = self.store.read_index(profile_id, game_id)
        if not index:
            return StackState()

        stacks = {}
        dropped = []
        for is_auto, name in ((False, "manual"), (True, "auto")):
            entries = []
            for raw in index.get(name, []):
                try:
                    entry = SaveStateEntry.from_dict(raw, profile_id, game_id, is_auto)
                except (KeyError, TypeError, ValueError) as e:
                    print(f"[SaveStack] WARNING: skipping unreadable index entry: {e}")
                    continue
                if not self.store.exists((profile_id, game_id, entry.state_name)):
                    print(f"[SaveStack] WARNING: record missing for {entry.entry_id}, dropped from index")
                    continue
                entries.append(entry)
            entries.sort(key=lambda e: e.timestamp, reverse=True)
            capacity = self.capacity(is_auto, profile_id)
            if profile_id not in self._profile_capacity:
                # Bounds of this profile are unknown this run; keep what it last kept.
                capacity = max(capacity, int(index.get(f"{name}_capacity", 0)))
            dropped.extend(entries[capacity:])
            stacks[is_auto] = tuple(entries[:capacity])

        clock = max(
            [int(index.get("clock", 0))] + [e.timestamp for e in stacks[False] + stacks[True]]
        )
        state = StackState(manual=stacks[False], auto=stacks[True], clock=clock)
        self._reconcile_files(key, state, dropped)
        print(
            f"[SaveStack] Loaded {len(state.manual)} manual / {len(state.auto)} auto "
            f"saves for {game_id[:12]}"
        )
        return state

    def _reconcile_files(self, key, state, dropped):
        """Commit a trimmed index if needed and remove files nothing references."""
        profile_id, game_id = key
        try:
            if dropped:
                self.store.commit_index(profile_id, game_id, self._index_document(key, state))
            referenced = set()
            for entry in state.manual + state.auto:
                referenced.add(entry.state_name)
                referenced.add(entry.thumbnail_name)
            for name in self.store.names(profile_id, game_id):
                if name not in referenced:
                    self.store.delete((profile_id, game_id, name))
        except PersistenceIOError as e:
            print(f"[SaveStack] WARNING: could not tidy store for {game_id[:12]}: {e}")

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def push(self, profile_id, game_id, frame_state, screenshot, metadata, is_auto=False):
        """
        Add a save at the head of the manual or auto stack.

        Args:
            profile_id / game_id: stack key
            frame_state: bytes-like state blob from the core
            screenshot: PNG bytes, a (h, w, 3) uint8 frame, or None
            metadata: SaveMetadata (is_auto_save is forced to match is_auto)
            is_auto: push to the auto stack instead of the manual one

        Returns:
            str: the new entry id
        """
        if frame_state is None or len(frame_state) == 0:
            raise ValueError("frame_state is empty")
        if not isinstance(metadata, SaveMetadata):
            raise TypeError("metadata must be a SaveMetadata")
        if metadata.is_auto_save != bool(is_auto):
            metadata = metadata.copy(is_auto_save=bool(is_auto))

        if isinstance(screenshot, (bytes, bytearray)):
            thumbnail = bytes(screenshot)
        else:
            thumbnail = make_thumbnail(screenshot)

        key = (str(profile_id), str(game_id))
        with self._key_lock(key):
            state = self._state(key)
            entry = SaveStateEntry(
                entry_id=uuid.uuid4().hex,
                profile_id=key[0],
                game_id=key[1],
                timestamp=state.clock + 1,
                metadata=metadata,
                is_auto=bool(is_auto),
                has_thumbnail=bool(thumbnail),
            )
            stack = (entry,) + state.stack(is_auto)
            capacity = self.capacity(is_auto, key[0])
            evicted = stack[capacity:]
            new_state = state.with_stack(is_auto, stack[:capacity], clock=entry.timestamp)
            self._pending[entry.entry_id] = (bytes(frame_state), thumbnail)
            self._publish(key, new_state)
            self._forget(e.entry_id for e in evicted)

        kind = "auto" if is_auto else "manual"
        print(f"[SaveStack] Pushed {kind} save {entry.entry_id[:8]} (#{entry.timestamp})")
        for old in evicted:
            print(f"[SaveStack] Evicting {kind} save {old.entry_id[:8]} (#{old.timestamp})")

        self._emit(SaveAcknowledged(entry.entry_id, key[0], key[1], 1, capacity, entry.is_auto))
        self.writer.submit(lambda: self._persist_push(key, entry, evicted))
        return entry.entry_id

    def _index_document(self, key, state, durable=()):
        """Index dict for *state*; pending entries are left out unless in *durable*."""
        def written(entry):
            return entry.entry_id not in self._pending or entry.entry_id in durable

        return {
            "profile_id": key[0],
            "game_id": key[1],
            "clock": state.clock,
            "manual_capacity": self.capacity(False, key[0]),
            "auto_capacity": self.capacity(True, key[0]),
            "manual": [e.to_dict() for e in state.manual if written(e)],
            "auto": [e.to_dict() for e in state.auto if written(e)],
        }

    def _commit(self, key, durable=()):
        profile_id, game_id = key
        with self._key_lock(key):
            document = self._index_document(key, self._stacks[key], durable)
        self.store.commit_index(profile_id, game_id, document)

    def _persist_push(self, key, entry, evicted):
        profile_id, game_id = key
        pending = self._pending.get(entry.entry_id)
        error = None
        for attempt in (1, 2):
            try:
                if pending is not None:
                    payload, thumbnail = pending
                    record = encode_record(payload, self.compress, STATE_COMPRESSION_LEVEL)
                    self.store.write((profile_id, game_id, entry.state_name), record)
                    if thumbnail:
                        self.store.write((profile_id, game_id, entry.thumbnail_name), thumbnail)
                self._commit(key, durable=(entry.entry_id,))
                error = None
                break
            except PersistenceIOError as e:
                error = e
                if attempt == 1:
                    print(f"[SaveStack] Write failed for {entry.entry_id[:8]}, retrying: {e}")

        if error is not None:
            self._rollback_push(key, entry, evicted, error)
            return

        with self._key_lock(key):
            self._pending.pop(entry.entry_id, None)
        self._delete_files(key, evicted)

    def _rollback_push(self, key, entry, evicted, error):
        with self._key_lock(key):
            self._pending.pop(entry.entry_id, None)
            state = self._stacks[key]
            stack = [e for e in state.stack(entry.is_auto) if e.entry_id != entry.entry_id]
            present = {e.entry_id for e in stack}
            stack.extend(e for e in evicted if e.entry_id not in present)
            stack.sort(key=lambda e: e.timestamp, reverse=True)
            capacity = self.capacity(entry.is_auto, key[0])
            overflow = stack[capacity:]
            self._publish(key, state.with_stack(entry.is_auto, stack[:capacity]))
            self._forget([entry.entry_id] + [e.entry_id for e in overflow])

        message = f"Save could not be written and was discarded ({error})"
        print(f"[SaveStack] WARNING: {message}")
        self._emit(SaveWarning(entry.entry_id, key[0], key[1], message))
        # Remove whatever part of the record did make it to disk.
        self._delete_files(key, [entry])
        # A commit made for an earlier push while this one was pending left
        # the evicted entries out of the index; write them back.
        if evicted or overflow:
            try:
                self._commit(key)
            except PersistenceIOError as e:
                print(f"[SaveStack] WARNING: index commit after rollback failed: {e}")
                return
            self._delete_files(key, overflow)

    def _delete_files(self, key, entries):
        profile_id, game_id = key
        for entry in entries:
            for name in (entry.state_name, entry.thumbnail_name):
                try:
                    self.store.delete((profile_id, game_id, name))
                except PersistenceIOError as e:
                    print(f"[SaveStack] WARNING: could not remove {name}: {e}")

    # ------------------------------------------------------------------
    # Load / delete
    # ------------------------------------------------------------------

    def _scan_store(self, entry_id):
        """Load keys not yet seen this run until one of them holds *entry_id*."""
        for dirs in self.store.keys():
            index = self.store.read_index(*dirs) or {}
            key = (str(index.get("profile_id", dirs[0])), str(index.get("game_id", dirs[1])))
            if key in self._stacks:
                continue
            self._state(key)
            with self._lock:
                if entry_id in self._locations:
                    return self._locations[entry_id]
        return None

    def _locate(self, entry_id):
        with self._lock:
            key = self._locations.get(entry_id)
        if key is None:
            key = self._scan_store(entry_id)
        if key is None:
            raise NotFoundError(entry_id)
        entry = self._stacks[key].find(entry_id)
        if entry is None:
            raise NotFoundError(entry_id)
        return key, entry

    def get_entry(self, entry_id):
        return self._locate(entry_id)[1]

    def load(self, entry_id):
        """
        Return the FrameState stored for *entry_id*.

        Raises:
            NotFoundError: the id is in neither stack
            CorruptStateError: the stored record failed its integrity check
            PersistenceIOError: the record could not be read
        """
        key, entry = self._locate(entry_id)
        pending = self._pending.get(entry_id)
        if pending is not None:
            return pending[0]

        record = self.store.read((key[0], key[1], entry.state_name))
        if record is None:
            if self._stacks[key].find(entry_id) is None:
                # Deleted or evicted while we were reading
                raise NotFoundError(entry_id)
            raise CorruptStateError(f"record file missing for {entry_id}")
        return decode_record(record)

    def load_thumbnail(self, entry_id):
        """PNG bytes for *entry_id* (b"" if it has none)."""
        key, entry = self._locate(entry_id)
        pending = self._pending.get(entry_id)
        if pending is not None:
            return pending[1]
        if not entry.has_thumbnail:
            return b""
        return self.store.read((key[0], key[1], entry.thumbnail_name)) or b""

    def delete(self, entry_id):
        """
        Remove a save outside the eviction path.

        Raises:
            NotFoundError: unknown id; nothing changes
        """
        key, _ = self._locate(entry_id)
        with self._key_lock(key):
            state = self._stacks[key]
            entry = state.find(entry_id)
            if entry is None:
                raise NotFoundError(entry_id)
            stack = tuple(e for e in state.stack(entry.is_auto) if e.entry_id != entry_id)
            self._publish(key, state.with_stack(entry.is_auto, stack))
            self._forget([entry_id])
        print(f"[SaveStack] Deleted save {entry_id[:8]}")
        self.writer.submit(lambda: self._persist_removal(key, [entry]))

    def _persist_removal(self, key, entries):
        for attempt in (1, 2):
            try:
                self._commit(key)
                break
            except PersistenceIOError as e:
                if attempt == 2:
                    print(f"[SaveStack] WARNING: index commit failed, files kept: {e}")
                    return
        self._delete_files(key, entries)
        with self._key_lock(key):
            for entry in entries:
                self._pending.pop(entry.entry_id, None)

    def clear(self, profile_id, game_id, include_auto=False):
        """Delete every manual save (and auto saves too if asked) for a game."""
        key = (str(profile_id), str(game_id))
        with self._key_lock(key):
            state = self._state(key)
            removed = list(state.manual)
            new_state = state.with_stack(False, ())
            if include_auto:
                removed.extend(state.auto)
                new_state = new_state.with_stack(True, ())
            self._publish(key, new_state)
            self._forget(e.entry_id for e in removed)
        if removed:
            print(f"[SaveStack] Cleared {len(removed)} saves for {key[1][:12]}")
            self.writer.submit(lambda: self._persist_removal(key, removed))
        return len(removed)

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list(self, profile_id, game_id, include_auto=False):
        """
        Summaries for the load-history view, newest first.

        Returns:
            list[EntrySummary]; the head entry has is_latest=True
        """
        key = (str(profile_id), str(game_id))
        state = self._state(key)
        entries = list(state.manual)
        if include_auto:
            entries.extend(state.auto)
            entries.sort(key=lambda e: e.timestamp, reverse=True)
        return [
            EntrySummary(
                entry_id=e.entry_id,
                timestamp=e.timestamp,
                created_at=e.created_at,
                thumbnail_key=(e.profile_id, e.game_id, e.thumbnail_name) if e.has_thumbnail else None,
                metadata=e.metadata,
                is_auto=e.is_auto,
                is_latest=(i == 0),
            )
            for i, e in enumerate(entries)
        ]

    def entries(self, profile_id, game_id, is_auto=False):
        """The raw entry tuple of one stack."""
        return self._state((str(profile_id), str(game_id))).stack(is_auto)

    def latest(self, profile_id, game_id, is_auto=False):
        """Newest entry of a stack, or None if it is empty."""
        stack = self.entries(profile_id, game_id, is_auto)
        return stack[0] if stack else None

    def entry_at(self, profile_id, game_id, index, is_auto=False):
        """Entry at *index* (0 = newest), or None."""
        stack = self.entries(profile_id, game_id, is_auto)
        if 0 <= index < len(stack):
            return stack[index]
        return None

    # ------------------------------------------------------------------
    # Capacity
    # ------------------------------------------------------------------

    def set_capacity(self, history_size=None, auto_history_size=None, profile_id=None):
        """
        Change stack bounds.

        With a profile_id only that profile's stacks use the new bounds;
        without one the manager defaults change, which apply to every
        profile that has no bounds of its own.  Stacks now over their
        bound are trimmed oldest first.
        """
        if history_size is not None:
            history_size = _check_history_size(history_size)
        if auto_history_size is not None:
            auto_history_size = _check_auto_history_size(auto_history_size)

        with self._lock:
            if profile_id is None:
                if history_size is not None:
                    self.history_size = history_size
                if auto_history_size is not None:
                    self.auto_history_size = auto_history_size
                keys = [k for k in self._stacks if k[0] not in self._profile_capacity]
            else:
                profile_id = str(profile_id)
                current = self._profile_capacity.get(
                    profile_id, (self.history_size, self.auto_history_size)
                )
                self._profile_capacity[profile_id] = (
                    current[0] if history_size is None else history_size,
                    current[1] if auto_history_size is None else auto_history_size,
                )
                keys = [k for k in self._stacks if k[0] == profile_id]

        for key in keys:
            manual_bound = self.capacity(False, key[0])
            auto_bound = self.capacity(True, key[0])
            with self._key_lock(key):
                state = self._stacks[key]
                removed = list(state.manual[manual_bound:]) + list(state.auto[auto_bound:])
                if not removed:
                    continue
                new_state = StackState(state.manual[:manual_bound], state.auto[:auto_bound], state.clock)
                self._publish(key, new_state)
                self._forget(e.entry_id for e in removed)
            print(f"[SaveStack] Trimmed {len(removed)} saves to fit new history size")
            self.writer.submit(lambda key=key, removed=removed: self._persist_removal(key, removed))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def flush(self, timeout=None):
        """Wait for all queued durable writes."""
        return self.writer.flush(timeout)

    def close(self):
        self.writer.close()
