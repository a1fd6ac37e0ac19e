"""
DID Update Chain - Configuration

Normative constants are fixed by the publication format. Configurable
defaults may be overridden via environment variables.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import os

# =============================================================================
# NORMATIVE CONSTANTS
# =============================================================================

DID_WEB_PREFIX: str = "did:web:"
WELL_KNOWN_PATH: str = ".well-known"
DOCUMENT_FILE_NAME: str = "did.json"
METADATA_FILE_NAME: str = "metadata.json"
VERSION_QUERY_PARAM: str = "versionId"
VERIFICATION_METHOD_TYPE: str = "JsonWebKey2020"
DEFAULT_KEY_FRAGMENT: str = "key-0"
UPDATE_SERVICE_FRAGMENT: str = "update"
GENESIS_VERSION: int = 1

# =============================================================================
# CONFIGURABLE DEFAULTS
# =============================================================================

UPDATE_SERVICE_TYPE: str = os.getenv("DIDCHAIN_UPDATE_SERVICE_TYPE", "DIDUpdateProofs")
PROOF_PATH: str = os.getenv("DIDCHAIN_PROOF_PATH", "proofs")
UPDATE_PATH: str = os.getenv("DIDCHAIN_UPDATE_PATH", "update")
SIGNATURE_ALGORITHM: str = os.getenv("DIDCHAIN_SIGNATURE_ALGORITHM", "ES256")

# =============================================================================
# NETWORK
# =============================================================================

HTTP_TIMEOUT_SECONDS: float = float(os.getenv("DIDCHAIN_HTTP_TIMEOUT", "10.0"))
CONNECT_TIMEOUT_SECONDS: float = float(os.getenv("DIDCHAIN_CONNECT_TIMEOUT", "5.0"))
MAX_FETCH_ATTEMPTS: int = int(os.getenv("DIDCHAIN_MAX_ATTEMPTS", "3"))
RETRY_BACKOFF_SECONDS: float = float(os.getenv("DIDCHAIN_RETRY_BACKOFF", "0.5"))
CONCURRENT_FETCH: bool = os.getenv("DIDCHAIN_CONCURRENT_FETCH", "true").lower() == "true"
