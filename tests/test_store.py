"""
Tests for the append-only issuer store.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import sqlite3

import pytest

from didchain.documents import DocumentVersion
from didchain.errors import NonContiguousVersion
from didchain.hash_chain import compute_hash
from didchain.store import ChainStore, ChainTransaction, StoreError

IDENTIFIER = "did:web:issuer.example.com"
KEY_1 = {"kty": "EC", "crv": "P-256", "x": "x1", "y": "y1", "d": "d1"}
KEY_2 = {"kty": "EC", "crv": "P-256", "x": "x2", "y": "y2", "d": "d2"}


def _document(version: int) -> DocumentVersion:
    return DocumentVersion.create(
        identifier=IDENTIFIER,
        version=version,
        public_key_jwk={"kty": "EC", "crv": "P-256", "x": f"x{version}", "y": f"y{version}"},
        update_endpoint="https://issuer.example.com/proofs",
    )


class TestAppend:
    """Tests for appending versions."""

    def test_empty_store(self, store):
        assert store.get_counter() == 0
        assert store.get_private_key() is None
        assert store.get_proofs() == {}

    def test_append_genesis(self, store):
        """Test that the genesis version is stored without a proof."""
        with store.writer() as txn:
            txn.append(_document(1), KEY_1)

        assert store.get_counter() == 1
        assert store.get_document(1) == _document(1)
        assert store.get_document_hash(1) == compute_hash(_document(1))
        assert store.get_private_key() == KEY_1
        assert store.get_proofs() == {}

    def test_append_replaces_retained_key(self, store):
        """Test that only the newest private key is retained."""
        with store.writer() as txn:
            txn.append(_document(1), KEY_1)
        with store.writer() as txn:
            assert txn.private_key_jwk == KEY_1
            txn.append(_document(2), KEY_2, "proof.for.two")

        assert store.get_private_key() == KEY_2
        assert store.get_proofs() == {2: "proof.for.two"}
        assert store.get_proof(2) == "proof.for.two"

    def test_skipped_version_rejected(self, store):
        """Test that version numbers must be contiguous."""
        with pytest.raises(NonContiguousVersion):
            with store.writer() as txn:
                txn.append(_document(2), KEY_2, "proof")
        assert store.get_counter() == 0

    def test_genesis_with_proof_rejected(self, store):
        with pytest.raises(StoreError):
            with store.writer() as txn:
                txn.append(_document(1), KEY_1, "proof")

    def test_successor_without_proof_rejected(self, store):
        with store.writer() as txn:
            txn.append(_document(1), KEY_1)
        with pytest.raises(StoreError):
            with store.writer() as txn:
                txn.append(_document(2), KEY_2)
        assert store.get_counter() == 1

    def test_one_version_per_transaction(self, store):
        with pytest.raises(StoreError):
            with store.writer() as txn:
                txn.append(_document(1), KEY_1)
                txn.append(_document(2), KEY_2, "proof")
        assert store.get_counter() == 0
        assert not store.has_version(1)


class TestAtomicity:
    """Tests for all-or-nothing chain extension."""

    def test_failure_after_document_write_rolls_back(self, store, monkeypatch):
        """Test that a failing proof write leaves all four pieces unchanged."""
        with store.writer() as txn:
            txn.append(_document(1), KEY_1)

        def failing_insert(self, version, proof):
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(ChainTransaction, "_insert_proof", failing_insert)

        with pytest.raises(sqlite3.OperationalError):
            with store.writer() as txn:
                txn.append(_document(2), KEY_2, "proof.for.two")

        assert store.get_counter() == 1
        assert not store.has_version(2)
        assert store.get_proofs() == {}
        assert store.get_private_key() == KEY_1

    def test_exception_in_caller_rolls_back(self, store):
        """Test that an error raised after staging discards the version."""
        with pytest.raises(RuntimeError):
            with store.writer() as txn:
                txn.append(_document(1), KEY_1)
                raise RuntimeError("crash before commit")

        assert store.get_counter() == 0
        assert not store.has_version(1)
        assert store.get_private_key() is None


class TestAppendOnly:
    """Tests for append-only enforcement."""

    def test_document_update_blocked(self, store):
        with store.writer() as txn:
            txn.append(_document(1), KEY_1)
        with pytest.raises(sqlite3.IntegrityError):
            store._conn.execute("UPDATE documents SET document = '{}' WHERE version = 1")

    def test_document_delete_blocked(self, store):
        with store.writer() as txn:
            txn.append(_document(1), KEY_1)
        with pytest.raises(sqlite3.IntegrityError):
            store._conn.execute("DELETE FROM documents WHERE version = 1")

    def test_proof_delete_blocked(self, store):
        with store.writer() as txn:
            txn.append(_document(1), KEY_1)
        with store.writer() as txn:
            txn.append(_document(2), KEY_2, "proof")
        with pytest.raises(sqlite3.IntegrityError):
            store._conn.execute("DELETE FROM proofs WHERE version = 2")


class TestPersistence:
    """Tests for state surviving a restart."""

    def test_reopen_file_store(self, tmp_path):
        db_path = tmp_path / "chain.sqlite3"
        first = ChainStore(db_path)
        with first.writer() as txn:
            txn.append(_document(1), KEY_1)
        with first.writer() as txn:
            txn.append(_document(2), KEY_2, "proof.for.two")
        first.close()

        reopened = ChainStore(db_path)
        assert reopened.get_counter() == 2
        assert reopened.get_document(2) == _document(2)
        assert reopened.get_proofs() == {2: "proof.for.two"}
        assert reopened.get_private_key() == KEY_2
        assert reopened.get_chain_state() == {
            "counter": 2,
            "document_count": 2,
            "proof_count": 1,
            "head_hash": compute_hash(_document(2)),
        }
        reopened.close()
