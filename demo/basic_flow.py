#!/usr/bin/env python3
"""
DID Update Chain - Basic Flow Demo

Demonstrates the complete flow of:
1. Publishing a genesis document version
2. Appending signed versions to the chain
3. Verifying the chain from a trust anchor
4. Detecting a document altered after its proof was signed

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import asyncio
import json
import logging
import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import httpx

from didchain.issuer import ChainIssuer
from didchain.publishing import ChainPublisher
from didchain.resolver import Resolver
from didchain.store import ChainStore
from didchain.verify import ChainVerifier


IDENTIFIER = "did:web:issuer.example.com"


def tampered_transport(publisher: ChainPublisher, version: int) -> httpx.MockTransport:
    """Serve the chain with one field of `version` altered."""

    def handle(request: httpx.Request) -> httpx.Response:
        response = publisher.handle(request)
        if (
            request.url.path.endswith("did.json")
            and request.url.params.get("versionId") == str(version)
        ):
            document = json.loads(response.content)
            document["service"][0]["serviceEndpoint"] = "https://attacker.example/proofs"
            return httpx.Response(200, json=document)
        return response

    return httpx.MockTransport(handle)


async def verify(transport: httpx.AsyncBaseTransport):
    async with Resolver(transport=transport) as resolver:
        return await ChainVerifier(resolver).verify(IDENTIFIER, 1)


def main():
    logging.basicConfig(level=logging.INFO, format="    %(levelname)s %(name)s: %(message)s")

    print("=" * 60)
    print("DID Update Chain - Basic Flow Demo")
    print("=" * 60)
    print()

    store = ChainStore(":memory:")
    issuer = ChainIssuer(store, IDENTIFIER)
    publisher = ChainPublisher(issuer)

    # Step 1: Genesis
    print("[1] Publishing genesis version...")
    genesis = issuer.ensure_genesis()
    print(f"    Version {genesis.version} published with key {genesis.verification_methods[0].id}")
    print("    The genesis version carries no proof; relying parties trust it out-of-band.")
    print()

    # Step 2: Updates
    print("[2] Appending two versions...")
    for _ in range(2):
        document = issuer.append_version()
        print(f"    Version {document.version} published, proof signed with key of version {document.version - 1}")
    print(f"    Chain state: {store.get_chain_state()}")
    print()

    # Step 3: Verification
    print("[3] Verifying chain from trust anchor version 1...")
    result = asyncio.run(verify(publisher.as_transport()))
    print(f"    State: {result.state.value}")
    print(f"    Certified versions: {result.certified_versions}")
    print()

    # Step 4: Tampering
    print("[4] Serving version 2 with an altered service endpoint...")
    result = asyncio.run(verify(tampered_transport(publisher, 2)))
    print(f"    State: {result.state.value}")
    print(f"    Failed at version {result.version}: {result.error_kind.value}")
    print(f"    {result.message}")
    print()

    print("=" * 60)
    print("Demo completed successfully!")
    print()
    print("Key principles demonstrated:")
    print("  - Every version signed with its predecessor's key")
    print("  - Proofs bind the exact canonical content hash")
    print("  - Append-only issuer store")
    print("  - Tampering detected at the altered version")
    print("=" * 60)

    store.close()


if __name__ == "__main__":
    main()
