"""
DID Update Chain - Append-Only Issuer Store

Persists the issuer's chain state in SQLite: published document versions,
the proof collection, the version counter and the single retained private
key. Documents and proofs are append-only; the counter and key slot are
the only mutable state and always change together with a new version.

All writes go through ChainStore.writer(), which holds a single-writer
lock and one database transaction for the whole read-modify-write, so a
failure at any point leaves all four pieces of state unchanged.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from . import config
from .documents import DocumentVersion
from .errors import NonContiguousVersion
from .hash_chain import compute_hash

log = logging.getLogger(__name__)


class StoreError(Exception):
    """Base exception for store operations."""
    pass


class AppendOnlyViolation(StoreError):
    """Raised when attempting to modify or delete published state."""
    pass


class ChainTransaction:
    """
    View of the issuer state inside an exclusive write transaction.

    Obtained from ChainStore.writer(); reads reflect the state as of the
    start of the transaction and append() stages exactly one new version.
    """

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn
        row = conn.execute(
            "SELECT counter, private_key FROM issuer_state WHERE id = 1"
        ).fetchone()
        self.counter: int = row["counter"]
        self._private_key: Optional[str] = row["private_key"]
        self._appended = False

    @property
    def next_version(self) -> int:
        return self.counter + 1

    @property
    def private_key_jwk(self) -> Optional[dict]:
        """The retained private key of the current version."""
        return json.loads(self._private_key) if self._private_key else None

    def append(
        self,
        document: DocumentVersion,
        private_key_jwk: dict,
        proof: Optional[str] = None,
    ) -> None:
        """
        Stage a new version: document, its proof, the new retained key
        and the advanced counter.
        """
        version = document.version
        if self._appended:
            raise StoreError("Only one version may be appended per transaction")
        if version != self.next_version:
            raise NonContiguousVersion(
                f"Expected version {self.next_version}, got {version}", version=version
            )
        if version > config.GENESIS_VERSION and proof is None:
            raise StoreError(f"Version {version} requires a proof")
        if version == config.GENESIS_VERSION and proof is not None:
            raise StoreError("The genesis version carries no proof")

        self._insert_document(document)
        if proof is not None:
            self._insert_proof(version, proof)
        self._advance(version, private_key_jwk)
        log.debug(f"Staged version {version} of {document.identifier}")
        self.counter = version
        self._private_key = json.dumps(private_key_jwk)
        self._appended = True

    def _insert_document(self, document: DocumentVersion) -> None:
        self._conn.execute(
            """
            INSERT INTO documents (version, identifier, document, document_hash)
            VALUES (?, ?, ?, ?)
            """,
            (
                document.version,
                document.identifier,
                json.dumps(document.to_dict()),
                compute_hash(document),
            ),
        )

    def _insert_proof(self, version: int, proof: str) -> None:
        self._conn.execute(
            "INSERT INTO proofs (version, token) VALUES (?, ?)",
            (version, proof),
        )

    def _advance(self, version: int, private_key_jwk: dict) -> None:
        self._conn.execute(
            """
            UPDATE issuer_state
            SET counter = ?, private_key = ?
            WHERE id = 1
            """,
            (version, json.dumps(private_key_jwk)),
        )


class ChainStore:
    """
    Append-only store for one identifier's update chain.

    Enforces:
    - Append-only documents and proofs (SQLite triggers)
    - Contiguous version numbers from 1
    - Counter, key slot, document and proof written atomically
    - A single writer at a time
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        """Initialize the store with the given database path."""
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        self._connection: Optional[sqlite3.Connection] = None
        self._init_db()

    @property
    def _conn(self) -> sqlite3.Connection:
        """Shared database connection; access is serialized by the lock."""
        if self._connection is None:
            self._connection = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                isolation_level=None,
            )
            self._connection.row_factory = sqlite3.Row
        return self._connection

    def _init_db(self):
        """Initialize the database schema with append-only constraints."""
        with self._lock:
            self._conn.executescript("""
                CREATE TABLE IF NOT EXISTS documents (
                    version INTEGER PRIMARY KEY CHECK (version >= 1),
                    identifier TEXT NOT NULL,
                    document TEXT NOT NULL,  -- JSON object
                    document_hash TEXT NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS proofs (
                    version INTEGER PRIMARY KEY CHECK (version >= 2),
                    token TEXT NOT NULL,  -- compact JWS
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                );

                -- Counter and retained private key
                CREATE TABLE IF NOT EXISTS issuer_state (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    counter INTEGER NOT NULL DEFAULT 0,
                    private_key TEXT  -- JWK of the current version
                );

                INSERT OR IGNORE INTO issuer_state (id, counter) VALUES (1, 0);

                CREATE TRIGGER IF NOT EXISTS prevent_document_update
                BEFORE UPDATE ON documents
                BEGIN
                    SELECT RAISE(ABORT, 'UPDATE not permitted on append-only store');
                END;

                CREATE TRIGGER IF NOT EXISTS prevent_document_delete
                BEFORE DELETE ON documents
                BEGIN
                    SELECT RAISE(ABORT, 'DELETE not permitted on append-only store');
                END;

                CREATE TRIGGER IF NOT EXISTS prevent_proof_update
                BEFORE UPDATE ON proofs
                BEGIN
                    SELECT RAISE(ABORT, 'UPDATE not permitted on append-only store');
                END;

                CREATE TRIGGER IF NOT EXISTS prevent_proof_delete
                BEFORE DELETE ON proofs
                BEGIN
                    SELECT RAISE(ABORT, 'DELETE not permitted on append-only store');
                END;
            """)

    @contextmanager
    def writer(self) -> Iterator[ChainTransaction]:
        """
        Exclusive write transaction over the whole issuer state.

        Commits on normal exit; rolls back everything on any exception.
        """
        with self._lock:
            conn = self._conn
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield ChainTransaction(conn)
                conn.execute("COMMIT")
            except sqlite3.IntegrityError as e:
                conn.execute("ROLLBACK")
                if "append-only" in str(e):
                    raise AppendOnlyViolation(str(e)) from e
                raise StoreError(str(e)) from e
            except BaseException:
                conn.execute("ROLLBACK")
                raise

    def get_counter(self) -> int:
        """The latest published version, 0 for an empty chain."""
        with self._lock:
            row = self._conn.execute(
                "SELECT counter FROM issuer_state WHERE id = 1"
            ).fetchone()
        return row["counter"]

    def get_document(self, version: int) -> Optional[DocumentVersion]:
        """Retrieve a published document version."""
        with self._lock:
            row = self._conn.execute(
                "SELECT document FROM documents WHERE version = ?",
                (version,),
            ).fetchone()
        if not row:
            return None
        return DocumentVersion.from_dict(json.loads(row["document"]), version)

    def get_document_hash(self, version: int) -> Optional[str]:
        """The content hash recorded when the version was published."""
        with self._lock:
            row = self._conn.execute(
                "SELECT document_hash FROM documents WHERE version = ?",
                (version,),
            ).fetchone()
        return row["document_hash"] if row else None

    def has_version(self, version: int) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM documents WHERE version = ?",
                (version,),
            ).fetchone()
        return row is not None

    def get_proof(self, version: int) -> Optional[str]:
        with self._lock:
            row = self._conn.execute(
                "SELECT token FROM proofs WHERE version = ?",
                (version,),
            ).fetchone()
        return row["token"] if row else None

    def get_proofs(self) -> dict[int, str]:
        """The proof collection, keyed by the version each proof attests."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT version, token FROM proofs ORDER BY version"
            ).fetchall()
        return {row["version"]: row["token"] for row in rows}

    def get_private_key(self) -> Optional[dict]:
        """The retained private JWK of the current version."""
        with self._lock:
            row = self._conn.execute(
                "SELECT private_key FROM issuer_state WHERE id = 1"
            ).fetchone()
        return json.loads(row["private_key"]) if row["private_key"] else None

    def get_chain_state(self) -> dict:
        """Current chain state for monitoring."""
        with self._lock:
            row = self._conn.execute(
                """
                SELECT s.counter,
                       (SELECT COUNT(*) FROM documents) AS document_count,
                       (SELECT COUNT(*) FROM proofs) AS proof_count,
                       (SELECT document_hash FROM documents WHERE version = s.counter) AS head_hash
                FROM issuer_state s WHERE s.id = 1
                """
            ).fetchone()
        return {
            "counter": row["counter"],
            "document_count": row["document_count"],
            "proof_count": row["proof_count"],
            "head_hash": row["head_hash"],
        }

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
