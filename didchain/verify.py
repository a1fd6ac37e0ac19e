"""
DID Update Chain - Chain Verification

Walks an identifier's chain forward from a trusted anchor version. Each
step trusts the next version only if its proof was signed by a key of the
version just validated and attests the next version's exact content hash.

Verification is:
- Sequential: no version is skipped or validated out of order
- Terminal on failure: the first failing step ends the run, nothing
  after it is trusted and no partial success is reported
- Strict: checks are never retried with weaker rules

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from . import config
from .documents import DocumentVersion, MetadataRecord
from .errors import (
    ChainError,
    ErrorKind,
    IntegrityMismatch,
    Malformed,
    MissingServiceEndpoint,
    NonContiguousVersion,
    NotFound,
    UnknownSigner,
    VerificationCancelled,
)
from .hash_chain import compute_hash
from .resolver import Resolver
from .signatures import decode_proof, verify_proof

log = logging.getLogger(__name__)


class VerificationState(str, Enum):
    """States of a verification run."""
    INIT = "Init"
    VERIFYING = "Verifying"
    ADVANCING = "Advancing"
    COMPLETE = "Complete"
    FAILED = "Failed"


@dataclass
class VerificationResult:
    """
    Outcome of a verification run.

    Complete certifies every version from the anchor to `version`.
    Failed reports the version, kind and message of the failing step.
    """
    identifier: str
    anchor_version: int
    state: VerificationState
    version: int
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None
    certified_versions: list[int] = field(default_factory=list)
    head: Optional[DocumentVersion] = None

    @property
    def is_complete(self) -> bool:
        return self.state == VerificationState.COMPLETE

    @classmethod
    def failed(
        cls, identifier: str, anchor_version: int, version: int, error: ChainError
    ) -> "VerificationResult":
        return cls(
            identifier=identifier,
            anchor_version=anchor_version,
            state=VerificationState.FAILED,
            version=version,
            error_kind=error.kind,
            message=error.message,
        )


class ChainVerifier:
    """
    Verifies the update chain of an identifier from a trusted anchor.

    The anchor version is caller-supplied and trusted unconditionally; no
    proof authenticates it. A verifier instance runs one verification at a
    time; cancel() stops a run before its next step.
    """

    def __init__(
        self,
        resolver: Resolver,
        service_type: str = config.UPDATE_SERVICE_TYPE,
        concurrent_fetch: bool = config.CONCURRENT_FETCH,
    ):
        """
        Args:
            resolver: Fetches documents, metadata and proof collections
            service_type: Type of the update-service descriptor
            concurrent_fetch: Fetch a step's document and proof collection
                concurrently
        """
        self.resolver = resolver
        self.service_type = service_type
        self.concurrent_fetch = concurrent_fetch
        self.state = VerificationState.INIT
        self._cancel_requested = False

    def cancel(self) -> None:
        """Request the running verification to stop before its next step."""
        self._cancel_requested = True

    async def verify(self, identifier: str, anchor_version: int) -> VerificationResult:
        """
        Verify every version after anchor_version until the metadata of
        the last verified version reports no successor.
        """
        if anchor_version < config.GENESIS_VERSION:
            raise ValueError(f"Anchor version must be >= {config.GENESIS_VERSION}")

        self.state = VerificationState.INIT
        self._cancel_requested = False
        version = anchor_version
        step = anchor_version

        try:
            current = await self.resolver.resolve(identifier, anchor_version)
            metadata = await self._metadata(identifier, anchor_version)

            while metadata.has_next:
                step = version + 1
                if self._cancel_requested:
                    raise VerificationCancelled("Verification cancelled", version=step)

                self.state = VerificationState.VERIFYING
                current = await self.verify_link(identifier, current, step)
                version = step

                self.state = VerificationState.ADVANCING
                log.debug(f"{identifier}: version {version} verified")
                metadata = await self._metadata(identifier, version)

        except ChainError as e:
            self.state = VerificationState.FAILED
            failed_at = e.version if e.version is not None else step
            log.warning(f"{identifier}: verification failed at version {failed_at}: {e}")
            return VerificationResult.failed(identifier, anchor_version, failed_at, e)

        self.state = VerificationState.COMPLETE
        log.info(f"{identifier}: chain verified from version {anchor_version} to {version}")
        return VerificationResult(
            identifier=identifier,
            anchor_version=anchor_version,
            state=VerificationState.COMPLETE,
            version=version,
            certified_versions=list(range(anchor_version, version + 1)),
            head=current,
        )

    async def verify_link(
        self, identifier: str, current: DocumentVersion, version: int
    ) -> DocumentVersion:
        """
        Validate version against the already trusted document before it.

        Returns the newly trusted document; raises ChainError otherwise.
        """
        try:
            return await self._verify_link(identifier, current, version)
        except ChainError as e:
            if e.version is None:
                e.version = version
            raise

    async def _verify_link(
        self, identifier: str, current: DocumentVersion, version: int
    ) -> DocumentVersion:
        # Steps 1-3: next document, update endpoint of the trusted one, proofs
        service = current.update_service(self.service_type)
        if service is None or not self.concurrent_fetch:
            candidate = await self.resolver.resolve(identifier, version)
            if service is None:
                raise MissingServiceEndpoint(
                    f"Version {current.version} declares no {self.service_type} service",
                    version=version,
                )
            proofs = await self.resolver.fetch_proofs(service.service_endpoint, version)
        else:
            candidate, proofs = await asyncio.gather(
                self.resolver.resolve(identifier, version),
                self.resolver.fetch_proofs(service.service_endpoint, version),
                return_exceptions=True,
            )
            # report in step order
            for outcome in (candidate, proofs):
                if isinstance(outcome, BaseException):
                    raise outcome

        # Step 4: the proof attesting this version
        token = proofs.get(version)
        if token is None:
            raise NotFound(f"No proof published for version {version}", version=version)
        _, claims = decode_proof(token)

        # Step 5: the signer must be a key of the trusted version
        signer = claims.issuer
        if signer.identifier != identifier or signer.version != current.version:
            raise UnknownSigner(
                f"Proof signed by {signer}, expected a key of "
                f"{identifier} version {current.version}",
                version=version,
            )
        method = current.find_verification_method(signer.fragment)
        if method is None:
            raise UnknownSigner(
                f"Version {current.version} declares no key #{signer.fragment}",
                version=version,
            )

        # Step 6: signature
        verify_proof(token, method.public_key_jwk)

        # Step 7: content hash over the body as fetched
        try:
            computed = compute_hash(candidate.content())
        except (TypeError, ValueError) as e:
            raise Malformed(
                f"Document version {version} has no canonical form: {e}", version=version
            ) from e
        if computed != claims.subject.lower():
            raise IntegrityMismatch(
                f"Content hash {computed} does not match attested {claims.subject}",
                version=version,
            )

        return candidate

    async def _metadata(self, identifier: str, version: int) -> MetadataRecord:
        record = await self.resolver.resolve_metadata(identifier, version)
        if record.version != version:
            raise NonContiguousVersion(
                f"Metadata for version {version} reports version {record.version}",
                version=version,
            )
        return record


async def verify_chain(
    identifier: str,
    anchor_version: int,
    resolver: Optional[Resolver] = None,
) -> VerificationResult:
    """
    Standalone chain verification.

    Creates (and closes) a default Resolver when none is given.
    """
    if resolver is not None:
        return await ChainVerifier(resolver).verify(identifier, anchor_version)

    async with Resolver() as owned:
        return await ChainVerifier(owned).verify(identifier, anchor_version)
