"""Key-value store that keeps the forwarding state.

The store lives in a directory and is backed by SQLite. ``start`` opens it and
launches a background compaction thread; ``close`` must be called to shut it
down cleanly. ``get_set`` and ``increment`` read, modify and write a value
inside a single transaction. All operations are thread-safe.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from pathlib import Path
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

_COPIED_MESSAGE_IDS = "copiedMsgIds"
_NEW_MESSAGE_ID = "newMsgId"
_TMP_MESSAGE_ID = "tmpMsgId"
_VIEWED_MESSAGES = "viewedMsgs"
_FORWARDED_MESSAGES = "forwardedMsgs"
_ANSWER_MESSAGE_ID = "answerMsgId"

_DB_FILE = "state.db"
_UINT64_MASK = (1 << 64) - 1


class KeyNotFoundError(KeyError):
    """The requested key is not in the store."""

    def __init__(self, key: str) -> None:
        super().__init__(key)
        self.key = key

    def __str__(self) -> str:
        return f"key not found: {self.key!r}"


def _uint64_to_bytes(value: int) -> bytes:
    return (value & _UINT64_MASK).to_bytes(8, "big")


def _bytes_to_uint64(data: Optional[bytes]) -> int:
    if data is None or len(data) < 8:
        return 0
    return int.from_bytes(data[:8], "big")


def _parse_int(value: str) -> int:
    try:
        return int(value, 10)
    except ValueError:
        return 0


class StateStore:
    """Directory-backed key-value store with atomic read-modify-write."""

    GC_INTERVAL = 300.0

    def __init__(self, directory: str | os.PathLike) -> None:
        self.directory = Path(directory)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._stop: Optional[threading.Event] = None
        self._gc_thread: Optional[threading.Thread] = None

    # --- lifecycle ---

    def start(self) -> None:
        """Open the database and start background compaction."""
        if self.directory.exists() and not self.directory.is_dir():
            raise NotADirectoryError(f"not a directory: {self.directory}")
        self.directory.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            str(self.directory / _DB_FILE),
            isolation_level=None,
            check_same_thread=False,
        )
        try:
            conn.execute("PRAGMA auto_vacuum = INCREMENTAL")
            conn.execute(
                "CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value BLOB NOT NULL)"
            )
        except sqlite3.Error:
            conn.close()
            raise
        self._conn = conn
        self._stop = threading.Event()
        self._gc_thread = threading.Thread(
            target=self._run_gc, args=(self._stop,), name="state-gc", daemon=True
        )
        self._gc_thread.start()

    def close(self) -> None:
        """Stop compaction and close the database; safe to call repeatedly."""
        stop, self._stop = self._stop, None
        thread, self._gc_thread = self._gc_thread, None
        if stop is not None:
            stop.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        with self._lock:
            conn, self._conn = self._conn, None
            if conn is not None:
                conn.close()

    def __enter__(self) -> "StateStore":
        if self._conn is None:
            self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --- basic operations ---

    def get(self, key: str) -> str:
        """Return the value stored under ``key``; KeyNotFoundError if absent."""
        with self._lock:
            data = self._read(self._connection(), key)
        if data is None:
            raise KeyNotFoundError(key)
        return data.decode("utf-8")

    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``."""
        with self._lock:
            self._write(self._connection(), key, value.encode("utf-8"))

    def delete(self, key: str) -> None:
        """Remove ``key``; removing an absent key is not an error."""
        with self._lock:
            self._connection().execute("DELETE FROM kv WHERE key = ?", (key,))

    def get_set(self, key: str, fn: Callable[[str], str]) -> str:
        """Replace the value with ``fn(current)`` atomically and return it.

        A missing key is passed to ``fn`` as an empty string. If ``fn`` raises,
        nothing is written and the exception propagates.
        """
        with self._lock, self._transaction() as conn:
            data = self._read(conn, key)
            current = "" if data is None else data.decode("utf-8")
            value = fn(current)
            self._write(conn, key, value.encode("utf-8"))
            return value

    def increment(self, key: str) -> int:
        """Atomically add one to the unsigned 64-bit counter under ``key``."""
        with self._lock, self._transaction() as conn:
            value = (_bytes_to_uint64(self._read(conn, key)) + 1) & _UINT64_MASK
            self._write(conn, key, _uint64_to_bytes(value))
            return value

    def ping(self) -> None:
        """Check that the store is usable; raise if it is not."""
        try:
            self.get("__ping__")
        except KeyNotFoundError:
            pass

    # --- copied messages ---

    def set_copied_message_id(
        self, chat_id: int, message_id: int, to_chat_message_id: str
    ) -> None:
        """Record a copy as "forwardRuleID:dstChatID:tmpMessageID".

        An existing entry for the same rule and destination is replaced in place.
        """
        prefix = to_chat_message_id[: to_chat_message_id.rfind(":") + 1]

        def update(current: str) -> str:
            entries = current.split(",") if current else []
            for i, entry in enumerate(entries):
                if entry.startswith(prefix):
                    entries[i] = to_chat_message_id
                    break
            else:
                entries.append(to_chat_message_id)
            return ",".join(entries)

        self.get_set(f"{_COPIED_MESSAGE_IDS}:{chat_id}:{message_id}", update)

    def get_copied_message_ids(self, chat_id: int, message_id: int) -> List[str]:
        """Return the recorded copies; empty if there are none."""
        value = self._get_or_empty(f"{_COPIED_MESSAGE_IDS}:{chat_id}:{message_id}")
        return value.split(",") if value else []

    def delete_copied_message_ids(self, chat_id: int, message_id: int) -> None:
        self.delete(f"{_COPIED_MESSAGE_IDS}:{chat_id}:{message_id}")

    # --- temporary and permanent message ids ---

    def set_new_message_id(
        self, chat_id: int, tmp_message_id: int, new_message_id: int
    ) -> None:
        self.set(f"{_NEW_MESSAGE_ID}:{chat_id}:{tmp_message_id}", str(new_message_id))

    def get_new_message_id(self, chat_id: int, tmp_message_id: int) -> int:
        """Return the permanent id for a temporary one, or 0."""
        return _parse_int(self._get_or_empty(f"{_NEW_MESSAGE_ID}:{chat_id}:{tmp_message_id}"))

    def delete_new_message_id(self, chat_id: int, tmp_message_id: int) -> None:
        self.delete(f"{_NEW_MESSAGE_ID}:{chat_id}:{tmp_message_id}")

    def set_tmp_message_id(
        self, chat_id: int, new_message_id: int, tmp_message_id: int
    ) -> None:
        self.set(f"{_TMP_MESSAGE_ID}:{chat_id}:{new_message_id}", str(tmp_message_id))

    def get_tmp_message_id(self, chat_id: int, new_message_id: int) -> int:
        """Return the temporary id for a permanent one, or 0."""
        return _parse_int(self._get_or_empty(f"{_TMP_MESSAGE_ID}:{chat_id}:{new_message_id}"))

    def delete_tmp_message_id(self, chat_id: int, new_message_id: int) -> None:
        self.delete(f"{_TMP_MESSAGE_ID}:{chat_id}:{new_message_id}")

    # --- answers ---

    def set_answer_message_id(
        self, dst_chat_id: int, tmp_message_id: int, src_chat_id: int, src_message_id: int
    ) -> None:
        self.set(
            f"{_ANSWER_MESSAGE_ID}:{dst_chat_id}:{tmp_message_id}",
            f"{src_chat_id}:{src_message_id}",
        )

    def get_answer_message_id(self, dst_chat_id: int, tmp_message_id: int) -> str:
        """Return "srcChatID:srcMessageID", or an empty string."""
        try:
            return self.get(f"{_ANSWER_MESSAGE_ID}:{dst_chat_id}:{tmp_message_id}")
        except KeyNotFoundError:
            return ""

    def delete_answer_message_id(self, dst_chat_id: int, tmp_message_id: int) -> None:
        self.delete(f"{_ANSWER_MESSAGE_ID}:{dst_chat_id}:{tmp_message_id}")

    # --- counters ---

    def increment_viewed_messages(self, to_chat_id: int, date: str) -> int:
        return self.increment(f"{_VIEWED_MESSAGES}:{to_chat_id}:{date}")

    def increment_forwarded_messages(self, to_chat_id: int, date: str) -> int:
        return self.increment(f"{_FORWARDED_MESSAGES}:{to_chat_id}:{date}")

    # --- internals ---

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("state store is not open")
        return self._conn

    def _transaction(self):
        store = self

        class _Txn:
            def __enter__(self) -> sqlite3.Connection:
                self.conn = store._connection()
                self.conn.execute("BEGIN IMMEDIATE")
                return self.conn

            def __exit__(self, exc_type, exc, tb) -> None:
                if exc_type is None:
                    self.conn.execute("COMMIT")
                else:
                    self.conn.execute("ROLLBACK")

        return _Txn()

    @staticmethod
    def _read(conn: sqlite3.Connection, key: str) -> Optional[bytes]:
        row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return None if row is None else bytes(row[0])

    @staticmethod
    def _write(conn: sqlite3.Connection, key: str, value: bytes) -> None:
        conn.execute(
            "INSERT INTO kv (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )

    def _get_or_empty(self, key: str) -> str:
        try:
            return self.get(key)
        except KeyNotFoundError:
            return ""

    def _run_gc(self, stop: threading.Event) -> None:
        while not stop.wait(self.GC_INTERVAL):
            try:
                with self._lock:
                    self._connection().execute("PRAGMA incremental_vacuum")
            except (sqlite3.Error, RuntimeError) as exc:
                logger.error("State store GC error: %s", exc)