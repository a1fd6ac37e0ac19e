"""
DID Update Chain - Resolver and Proof Store Access

Fetches document versions, metadata records and proof collections over
HTTPS. Identifiers map to locations the did:web way:

    did:web:example.com             -> https://example.com/.well-known/did.json
    did:web:example.com:users:alice -> https://example.com/users/alice/did.json

and the version is selected with the ?versionId= query parameter.

Every fetch applies a bounded timeout. Transient failures (timeouts,
connection errors, 5xx) are retried with exponential backoff; when the
retry budget runs out the failure surfaces as Timeout / TransportError and
never as a verification result.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import asyncio
import json
import logging
from typing import Any, Optional
from urllib.parse import unquote

import httpx

from . import config
from .documents import DocumentVersion, MetadataRecord, parse_proof_collection
from .errors import (
    ChainError,
    EndpointUnreachable,
    Malformed,
    NotFound,
    Timeout,
    TransportError,
)

log = logging.getLogger(__name__)


# =============================================================================
# URL derivation
# =============================================================================


def did_to_base_url(identifier: str, host_only: bool = False) -> str:
    """
    The HTTPS directory a did:web identifier resolves under.

    Identifiers with path segments resolve directly under that path;
    bare hosts resolve under the well-known discovery path.
    """
    if not isinstance(identifier, str) or not identifier.startswith(config.DID_WEB_PREFIX):
        raise Malformed(f"Not a did:web identifier: {identifier!r}")

    method_specific = identifier[len(config.DID_WEB_PREFIX):]
    if any(c in method_specific for c in "?#/"):
        raise Malformed(f"Identifier must not carry a query, fragment or slash: {identifier}")

    segments = method_specific.split(":")
    if any(not segment for segment in segments):
        raise Malformed(f"Identifier has an empty segment: {identifier}")

    # the host may carry a percent-encoded port (example.com%3A8443)
    host = unquote(segments[0])
    if host_only:
        return f"https://{host}"

    path = "/".join(unquote(segment) for segment in segments[1:])
    return f"https://{host}/{path or config.WELL_KNOWN_PATH}"


def document_url(identifier: str) -> str:
    return f"{did_to_base_url(identifier)}/{config.DOCUMENT_FILE_NAME}"


def metadata_url(identifier: str) -> str:
    """Sibling of the document URL with the metadata file name."""
    return f"{did_to_base_url(identifier)}/{config.METADATA_FILE_NAME}"


# =============================================================================
# Resolver
# =============================================================================


class Resolver:
    """
    Async client for published document versions, metadata and proofs.

    May be given an existing httpx.AsyncClient (not closed by the resolver)
    or a transport to build its own client with.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = config.HTTP_TIMEOUT_SECONDS,
        connect_timeout: float = config.CONNECT_TIMEOUT_SECONDS,
        max_attempts: int = config.MAX_FETCH_ATTEMPTS,
        backoff: float = config.RETRY_BACKOFF_SECONDS,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff = backoff
        self._owns_client = client is None
        self._http = client or httpx.AsyncClient(
            transport=transport,
            timeout=httpx.Timeout(timeout, connect=connect_timeout),
            follow_redirects=True,
        )

    async def __aenter__(self) -> "Resolver":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if the resolver created it."""
        if self._owns_client:
            await self._http.aclose()

    async def resolve(self, identifier: str, version: int) -> DocumentVersion:
        """Fetch and validate one document version."""
        data = await self._get_json(
            document_url(identifier),
            {config.VERSION_QUERY_PARAM: version},
            version,
            f"document version {version}",
        )
        return DocumentVersion.from_dict(data, version)

    async def resolve_metadata(self, identifier: str, version: int) -> MetadataRecord:
        """Fetch the metadata record telling whether version has a successor."""
        data = await self._get_json(
            metadata_url(identifier),
            {config.VERSION_QUERY_PARAM: version},
            version,
            f"metadata for version {version}",
        )
        return MetadataRecord.from_dict(data)

    async def fetch_proofs(self, endpoint: str, version: Optional[int] = None) -> dict[int, str]:
        """
        Fetch the proof collection published at an update-service endpoint.

        Any failure to obtain the collection is reported as
        EndpointUnreachable; an undecodable collection as Malformed.
        """
        try:
            data = await self._get_json(endpoint, None, version, "proof collection")
        except Malformed:
            raise
        except ChainError as e:
            raise EndpointUnreachable(
                f"Update endpoint {endpoint} unreachable: {e.message}", version=version
            ) from e
        return parse_proof_collection(data)

    async def _get_json(
        self,
        url: str,
        params: Optional[dict],
        version: Optional[int],
        what: str,
    ) -> Any:
        response = await self._get(url, params, version, what)
        try:
            return json.loads(response.content)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise Malformed(f"{what} is not valid JSON: {e}", version=version) from e

    async def _get(
        self,
        url: str,
        params: Optional[dict],
        version: Optional[int],
        what: str,
    ) -> httpx.Response:
        """GET with bounded retries on transient failures."""
        for attempt in range(self.max_attempts):
            last_attempt = attempt == self.max_attempts - 1
            try:
                log.debug(f"GET {url} params={params} (attempt {attempt + 1})")
                response = await self._http.get(url, params=params)

                if response.status_code == 404:
                    raise NotFound(f"{what} not found at {url}", version=version)

                if response.status_code >= 500:
                    if not last_attempt:
                        await self._backoff(attempt, f"{url} returned {response.status_code}")
                        continue
                    raise TransportError(
                        f"{what}: {url} returned {response.status_code} "
                        f"after {self.max_attempts} attempts",
                        version=version,
                    )

                if response.status_code >= 400:
                    raise TransportError(
                        f"{what}: {url} returned {response.status_code}", version=version
                    )

                return response

            except httpx.TimeoutException as e:
                if not last_attempt:
                    await self._backoff(attempt, f"{url} timed out")
                    continue
                raise Timeout(
                    f"{what}: {url} timed out after {self.max_attempts} attempts",
                    version=version,
                ) from e

            except httpx.TransportError as e:
                if not last_attempt:
                    await self._backoff(attempt, f"{url} failed: {e}")
                    continue
                raise TransportError(
                    f"{what}: {url} failed after {self.max_attempts} attempts: {e}",
                    version=version,
                ) from e

        raise TransportError(f"{what}: {url} failed", version=version)

    async def _backoff(self, attempt: int, reason: str) -> None:
        delay = self.backoff * (2 ** attempt)
        log.warning(f"{reason}, retry {attempt + 1}/{self.max_attempts - 1} in {delay}s")
        await asyncio.sleep(delay)
