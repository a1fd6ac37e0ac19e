"""
DID Update Chain - Issuer / Chain Extender

Mints new document versions. Every version gets a fresh key pair; the
proof for version N is signed with the retained private key of version
N-1, after which that key is discarded and N's private key takes its place.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import logging
import time
from typing import Optional

from . import config
from .documents import DocumentVersion, IssuerReference, ProofClaims, SignatureAlgorithm
from .hash_chain import compute_hash
from .resolver import did_to_base_url
from .signatures import (
    algorithm_for_jwk,
    generate_keypair,
    jwk_to_private_key,
    private_key_to_jwk,
    public_key_to_jwk,
    sign_proof,
)
from .store import ChainStore, StoreError

log = logging.getLogger(__name__)


class ChainIssuer:
    """
    Extends the update chain of a single identifier.

    append_version() runs entirely inside one exclusive store transaction:
    the counter read, key generation, proof signing and the write of
    document, proof, key slot and counter either all happen or none do.
    """

    def __init__(
        self,
        store: ChainStore,
        identifier: str,
        algorithm: SignatureAlgorithm = SignatureAlgorithm(config.SIGNATURE_ALGORITHM),
        proof_endpoint: Optional[str] = None,
        service_type: str = config.UPDATE_SERVICE_TYPE,
        key_fragment: str = config.DEFAULT_KEY_FRAGMENT,
    ):
        """
        Args:
            store: Persistent chain state
            identifier: The did:web identifier the chain belongs to
            algorithm: JWS algorithm for new keys and proofs
            proof_endpoint: URL of the published proof collection; derived
                from the identifier's host when omitted
            service_type: Type of the update-service descriptor
            key_fragment: Fragment naming each version's key
        """
        self.store = store
        self.identifier = identifier
        self.algorithm = SignatureAlgorithm(algorithm)
        self.proof_endpoint = proof_endpoint or default_proof_endpoint(identifier)
        self.service_type = service_type
        self.key_fragment = key_fragment

    @property
    def current_version(self) -> int:
        return self.store.get_counter()

    def ensure_genesis(self) -> DocumentVersion:
        """Create version 1 if the chain is empty; return the genesis document."""
        document = self._append(genesis_only=True)
        if document is None:
            document = self.store.get_document(config.GENESIS_VERSION)
        return document

    def append_version(self) -> DocumentVersion:
        """
        Append exactly one new version to the chain.

        1. Generate a fresh key pair
        2. Build the document with the new public key as sole key
        3. If not genesis: sign hash(document) with the retained key of N-1
        4. Persist document and proof, replace the retained key, advance
           the counter
        """
        return self._append()

    def _append(self, genesis_only: bool = False) -> Optional[DocumentVersion]:
        with self.store.writer() as txn:
            if genesis_only and txn.counter > 0:
                return None
            version = txn.next_version

            private_key, public_key = generate_keypair(self.algorithm)
            document = DocumentVersion.create(
                identifier=self.identifier,
                version=version,
                public_key_jwk=public_key_to_jwk(public_key),
                update_endpoint=self.proof_endpoint,
                key_fragment=self.key_fragment,
                service_type=self.service_type,
            )
            is_valid, errors = document.validate(self.service_type)
            if not is_valid:
                raise StoreError(f"Refusing to publish invalid document: {errors}")

            proof = None
            if version > config.GENESIS_VERSION:
                proof = self._sign_link(document, txn.private_key_jwk)

            txn.append(document, private_key_to_jwk(private_key), proof)

        log.info(f"Appended version {version} of {self.identifier}")
        return document

    def _sign_link(self, document: DocumentVersion, previous_key_jwk: Optional[dict]) -> str:
        """Sign the proof binding document to the key of the version before it."""
        if previous_key_jwk is None:
            raise StoreError(f"No retained key to sign version {document.version}")

        previous_version = document.version - 1
        previous_key = jwk_to_private_key(previous_key_jwk)
        claims = ProofClaims(
            subject=compute_hash(document),
            issuer=IssuerReference(
                identifier=self.identifier,
                version=previous_version,
                fragment=self.key_fragment,
            ),
            issued_at=int(time.time()),
        )
        log.debug(f"Signing proof for version {document.version} with key of version {previous_version}")
        return sign_proof(claims, previous_key, algorithm_for_jwk(previous_key_jwk))


def default_proof_endpoint(identifier: str, proof_path: str = config.PROOF_PATH) -> str:
    """
    The proof collection URL for identifier.

    Bare hosts publish at the host root; identifiers with path segments
    publish under their own path, one collection per identifier.
    """
    host = did_to_base_url(identifier, host_only=True)
    base = did_to_base_url(identifier)
    if base == f"{host}/{config.WELL_KNOWN_PATH}":
        base = host
    return f"{base}/{proof_path.strip('/')}"
