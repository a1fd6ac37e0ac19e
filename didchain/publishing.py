"""
DID Update Chain - Publication Surface

Answers the requests relying parties make against the issuer's host:

    GET  /.well-known/did.json?versionId=N       document version N
    GET  /.well-known/metadata.json?versionId=N  {"versionId": N, "nextVersionId": bool}
    GET  /proofs                                 {"2": "<jws>", "3": "<jws>", ...}
    POST /update                                 append exactly one version

The handler takes and returns httpx request/response objects, so it can be
mounted behind any server framework or used directly as an
httpx.MockTransport for in-process resolution.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import logging
from typing import Optional
from urllib.parse import urlsplit

import httpx

from . import config
from .issuer import ChainIssuer
from .resolver import document_url, metadata_url

log = logging.getLogger(__name__)


class ChainPublisher:
    """Serves one identifier's chain from its issuer store."""

    def __init__(self, issuer: ChainIssuer, update_path: str = config.UPDATE_PATH):
        self.issuer = issuer
        self.store = issuer.store
        self.host = urlsplit(document_url(issuer.identifier)).netloc
        self.document_path = urlsplit(document_url(issuer.identifier)).path
        self.metadata_path = urlsplit(metadata_url(issuer.identifier)).path
        self.proof_path = urlsplit(issuer.proof_endpoint).path
        self.update_path = "/" + update_path.strip("/")

    def as_transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        """Route one request."""
        if request.url.netloc.decode("ascii") != self.host:
            return httpx.Response(404, text="Not found")

        path = request.url.path
        if request.method == "GET":
            if path == self.document_path:
                return self.document(request.url.params.get(config.VERSION_QUERY_PARAM))
            if path == self.metadata_path:
                return self.metadata(request.url.params.get(config.VERSION_QUERY_PARAM))
            if path == self.proof_path:
                return self.proofs()

        if path == self.update_path and request.method in ("GET", "POST"):
            return self.update()

        return httpx.Response(404, text="Not found")

    def document(self, version_param: Optional[str]) -> httpx.Response:
        if version_param is None:
            version = self.store.get_counter()
        else:
            version = _parse_version(version_param)
            if version is None:
                return httpx.Response(400, text="Invalid versionId")

        document = self.store.get_document(version)
        if document is None:
            return httpx.Response(404, text="Not found")
        return httpx.Response(200, json=document.to_dict())

    def metadata(self, version_param: Optional[str]) -> httpx.Response:
        version = _parse_version(version_param)
        if version is None:
            return httpx.Response(400, text="Invalid versionId")
        if not self.store.has_version(version):
            return httpx.Response(404, text="Not found")
        return httpx.Response(
            200,
            json={
                "versionId": version,
                "nextVersionId": self.store.has_version(version + 1),
            },
        )

    def proofs(self) -> httpx.Response:
        return httpx.Response(
            200,
            json={str(version): token for version, token in self.store.get_proofs().items()},
        )

    def update(self) -> httpx.Response:
        """Administrative trigger; every call mints a new version."""
        document = self.issuer.append_version()
        log.info(f"Update requested, published version {document.version}")
        return httpx.Response(200, json={"versionId": document.version})


def _parse_version(value: Optional[str]) -> Optional[int]:
    if value is None or not (value.isascii() and value.isdigit()):
        return None
    version = int(value)
    return version if version >= config.GENESIS_VERSION else None
