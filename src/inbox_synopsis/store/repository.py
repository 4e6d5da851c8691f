"""SQLite-backed document store for processed-message synopses.

Every sensitive field is stored as a ciphertext/tag column pair. Optional
fields keep both columns NULL when absent so the row layout never varies.
A message id can be stored once; a second insert raises ``StoreError``.
"""

from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog

from inbox_synopsis.exceptions import StoreError
from inbox_synopsis.models import EncryptedField, SynopsisRecord

logger = structlog.get_logger()


_SCHEMA_VERSION = 1

_REQUIRED_ENCRYPTED = (
    "sender",
    "subject",
    "source_url",
    "summary",
    "urgency_score",
    "action",
    "recipients",
)
_OPTIONAL_ENCRYPTED = (
    "unsubscribe_link",
    "classification",
    "keywords",
    "extracted_entities",
)
_ENCRYPTED = _REQUIRED_ENCRYPTED + _OPTIONAL_ENCRYPTED


def _encrypted_columns(name: str, required: bool) -> str:
    null = " NOT NULL" if required else ""
    return f"{name}_ciphertext TEXT{null},\n                {name}_auth_tag TEXT{null}"


class SynopsisRepository:
    """Repository for storing encrypted synopsis records and owner counters.

    The query methods are blocking; the ``async`` variants used by the
    pipeline run them in a worker thread.
    """

    def __init__(self, db_path: Path) -> None:
        """Create a repository.

        Args:
            db_path: Path to the SQLite database file.
        """

        self._db_path = db_path

    def initialize(self) -> None:
        """Create the store schema if needed.

        Raises:
            StoreError: If the database cannot be opened or has an unknown schema.
        """

        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS _schema_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )

            current_version = self._get_schema_version(conn)
            if current_version is None:
                self._create_schema_v1(conn)
                self._set_schema_version(conn, _SCHEMA_VERSION)
                conn.commit()
                logger.info("synopsis_store_schema_created", version=_SCHEMA_VERSION)
                return

            if current_version != _SCHEMA_VERSION:
                raise StoreError(
                    f"Unsupported schema version {current_version}; expected {_SCHEMA_VERSION}"
                )

    async def exists(self, message_id: str) -> bool:
        """Return True if a record for ``message_id`` has been stored."""

        return await asyncio.to_thread(self.exists_sync, message_id)

    async def insert(self, record: SynopsisRecord) -> None:
        """Store one record.

        Raises:
            StoreError: If the id is already stored or the write fails.
        """

        await asyncio.to_thread(self.insert_sync, record)

    async def increment_counter(self, owner_id: str) -> None:
        """Add one to the owner's analyzed-message counter."""

        await asyncio.to_thread(self.increment_counter_sync, owner_id)

    def exists_sync(self, message_id: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM synopses WHERE message_id = ? LIMIT 1;",
                (message_id,),
            ).fetchone()
        return row is not None

    def insert_sync(self, record: SynopsisRecord) -> None:
        params: dict[str, Any] = {
            "message_id": record.message_id,
            "owner_id": record.owner_id,
            "provider": record.provider,
            "date_received_iso": record.date_received.isoformat(),
            "is_read": 1 if record.read else 0,
            "received_at_iso": record.received_at.isoformat(),
            "processed_at_iso": record.processed_at.isoformat(),
        }
        for name in _ENCRYPTED:
            field: EncryptedField | None = getattr(record, name)
            params[f"{name}_ciphertext"] = field.ciphertext if field else None
            params[f"{name}_auth_tag"] = field.auth_tag if field else None

        columns = ", ".join(params)
        placeholders = ", ".join(f":{name}" for name in params)

        with self._connect() as conn:
            try:
                conn.execute(f"INSERT INTO synopses ({columns}) VALUES ({placeholders});", params)
            except sqlite3.IntegrityError as exc:
                raise StoreError(f"Message {record.message_id} is already stored") from exc
            conn.commit()

    def increment_counter_sync(self, owner_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO owner_counters (owner_id, total_emails_analyzed)
                VALUES (?, 1)
                ON CONFLICT(owner_id) DO UPDATE SET
                    total_emails_analyzed = total_emails_analyzed + 1;
                """,
                (owner_id,),
            )
            conn.commit()

    def analyzed_count(self, owner_id: str) -> int:
        """Return the owner's analyzed-message counter (0 if never incremented)."""

        with self._connect() as conn:
            row = conn.execute(
                "SELECT total_emails_analyzed FROM owner_counters WHERE owner_id = ?;",
                (owner_id,),
            ).fetchone()
        return int(row[0]) if row else 0

    def get_record(self, message_id: str) -> SynopsisRecord | None:
        """Load a stored record, still encrypted."""

        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM synopses WHERE message_id = ?;",
                (message_id,),
            ).fetchone()
        return self._row_to_record(row) if row else None

    def list_message_ids(self, owner_id: str, limit: int = 50) -> list[str]:
        """Most recently processed message ids for an owner."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT message_id FROM synopses
                WHERE owner_id = ?
                ORDER BY processed_at_iso DESC
                LIMIT ?;
                """,
                (owner_id, limit),
            ).fetchall()
        return [row[0] for row in rows]

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self._db_path)
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot open synopsis store at {self._db_path}: {exc}") from exc
        try:
            conn.row_factory = sqlite3.Row
            yield conn
        except sqlite3.Error as exc:
            raise StoreError(f"Synopsis store query failed: {exc}") from exc
        finally:
            conn.close()

    def _get_schema_version(self, conn: sqlite3.Connection) -> int | None:
        row = conn.execute(
            "SELECT value FROM _schema_meta WHERE key = 'schema_version'"
        ).fetchone()
        if row is None:
            return None
        return int(row[0])

    def _set_schema_version(self, conn: sqlite3.Connection, version: int) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO _schema_meta(key, value) VALUES('schema_version', ?) ",
            (str(version),),
        )

    def _create_schema_v1(self, conn: sqlite3.Connection) -> None:
        encrypted = ",\n                ".join(
            [_encrypted_columns(name, True) for name in _REQUIRED_ENCRYPTED]
            + [_encrypted_columns(name, False) for name in _OPTIONAL_ENCRYPTED]
        )
        conn.executescript(
            f"""
            CREATE TABLE IF NOT EXISTS synopses (
                rowid INTEGER PRIMARY KEY,
                message_id TEXT NOT NULL UNIQUE,
                owner_id TEXT NOT NULL,
                provider TEXT NOT NULL,
                date_received_iso TEXT NOT NULL,
                {encrypted},
                is_read INTEGER NOT NULL,
                received_at_iso TEXT NOT NULL,
                processed_at_iso TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_synopses_owner
                ON synopses(owner_id, processed_at_iso);

            CREATE TABLE IF NOT EXISTS owner_counters (
                owner_id TEXT PRIMARY KEY,
                total_emails_analyzed INTEGER NOT NULL
            );
            """
        )

    def _row_to_record(self, row: sqlite3.Row) -> SynopsisRecord:
        fields: dict[str, EncryptedField | None] = {}
        for name in _ENCRYPTED:
            ciphertext = row[f"{name}_ciphertext"]
            tag = row[f"{name}_auth_tag"]
            fields[name] = EncryptedField(ciphertext=ciphertext, auth_tag=tag) if ciphertext and tag else None

        return SynopsisRecord(
            message_id=row["message_id"],
            owner_id=row["owner_id"],
            provider=row["provider"],
            date_received=datetime.fromisoformat(row["date_received_iso"]),
            read=bool(row["is_read"]),
            received_at=datetime.fromisoformat(row["received_at_iso"]),
            processed_at=datetime.fromisoformat(row["processed_at_iso"]),
            **fields,
        )
