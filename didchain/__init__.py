"""
DID Update Chain - Reference Implementation

Maintains and verifies a tamper-evident, append-only chain of versioned
identity documents published by a single authority:

- Document versions with one fresh key pair each
- SHA-256 content hashes over canonical JSON
- Proof tokens (compact JWS) signed with the previous version's key
- Append-only SQLite issuer store with atomic chain extension
- Async resolution over HTTPS with bounded retries
- Chain verification from a caller-supplied trust anchor

SPDX-License-Identifier: AGPL-3.0-or-later
"""

__version__ = "0.1.0"

from .documents import DocumentVersion, MetadataRecord, ProofClaims, SignatureAlgorithm
from .errors import ChainError, ErrorKind
from .hash_chain import canonical_serialize, compute_hash
from .issuer import ChainIssuer
from .publishing import ChainPublisher
from .resolver import Resolver
from .store import ChainStore
from .verify import ChainVerifier, VerificationResult, VerificationState, verify_chain

__all__ = [
    "DocumentVersion",
    "MetadataRecord",
    "ProofClaims",
    "SignatureAlgorithm",
    "ChainError",
    "ErrorKind",
    "canonical_serialize",
    "compute_hash",
    "ChainIssuer",
    "ChainPublisher",
    "Resolver",
    "ChainStore",
    "ChainVerifier",
    "VerificationResult",
    "VerificationState",
    "verify_chain",
]
