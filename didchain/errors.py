"""
DID Update Chain - Error Taxonomy

Every failure raised while building or verifying a chain carries the
version it concerns, a machine-readable kind and a human-readable message,
so a failed run can be reported for audit.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Failure kinds reported by the resolver, verifier and store."""
    NOT_FOUND = "NotFound"
    TRANSPORT_ERROR = "TransportError"
    TIMEOUT = "Timeout"
    MALFORMED = "Malformed"
    MISSING_SERVICE_ENDPOINT = "MissingServiceEndpoint"
    ENDPOINT_UNREACHABLE = "EndpointUnreachable"
    UNKNOWN_SIGNER = "UnknownSigner"
    INVALID_SIGNATURE = "InvalidSignature"
    INTEGRITY_MISMATCH = "IntegrityMismatch"
    NON_CONTIGUOUS_VERSION = "NonContiguousVersion"
    CANCELLED = "Cancelled"


class ChainError(Exception):
    """Base exception for chain construction and verification."""

    kind = ErrorKind.MALFORMED

    def __init__(self, message: str, version: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.version = version

    def __str__(self) -> str:
        if self.version is None:
            return f"{self.kind.value}: {self.message}"
        return f"{self.kind.value} at version {self.version}: {self.message}"


class NotFound(ChainError):
    """A document, metadata record or proof is not published."""
    kind = ErrorKind.NOT_FOUND


class TransportError(ChainError):
    """Network failure after the retry budget was exhausted."""
    kind = ErrorKind.TRANSPORT_ERROR


class Timeout(TransportError):
    """A fetch exceeded its time budget."""
    kind = ErrorKind.TIMEOUT


class EndpointUnreachable(TransportError):
    """The update-service endpoint could not be fetched."""
    kind = ErrorKind.ENDPOINT_UNREACHABLE


class Malformed(ChainError):
    """A payload could not be decoded or failed schema validation."""
    kind = ErrorKind.MALFORMED


class MissingServiceEndpoint(ChainError):
    """The trusted document declares no update-service endpoint."""
    kind = ErrorKind.MISSING_SERVICE_ENDPOINT


class UnknownSigner(ChainError):
    """The proof names a key the trusted document does not declare."""
    kind = ErrorKind.UNKNOWN_SIGNER


class InvalidSignature(ChainError):
    """The proof signature does not verify under the declared key."""
    kind = ErrorKind.INVALID_SIGNATURE


class IntegrityMismatch(ChainError):
    """The document hash differs from the hash attested by its proof."""
    kind = ErrorKind.INTEGRITY_MISMATCH


class NonContiguousVersion(ChainError):
    """A version number skips, repeats or contradicts the chain position."""
    kind = ErrorKind.NON_CONTIGUOUS_VERSION


class VerificationCancelled(ChainError):
    """A verification run was stopped between two steps."""
    kind = ErrorKind.CANCELLED
