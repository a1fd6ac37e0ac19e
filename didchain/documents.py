"""
DID Update Chain - Document Types

Implements the published document version, its verification methods and
service descriptors, the per-version metadata record and the claims carried
by a proof token. Payloads fetched from the network are validated on
ingestion; anything missing or unexpected is rejected as Malformed.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
from urllib.parse import parse_qs

from . import config
from .errors import Malformed


class SignatureAlgorithm(str, Enum):
    """JWS algorithms accepted for proof tokens."""
    ES256 = "ES256"
    ES384 = "ES384"
    EDDSA = "EdDSA"


_METHOD_FIELDS = {"id", "type", "controller", "publicKeyJwk"}
_SERVICE_FIELDS = {"id", "type", "serviceEndpoint"}
_REQUIRED_DOCUMENT_FIELDS = {"id", "verificationMethod", "authentication", "assertionMethod"}
_OPTIONAL_DOCUMENT_FIELDS = {"@context", "controller", "alsoKnownAs", "service"}
_PRIVATE_JWK_MEMBERS = {"d", "p", "q", "dp", "dq", "qi"}


def _require_str(data: dict, key: str, where: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise Malformed(f"{where}: '{key}' must be a non-empty string")
    return value


def _require_str_list(data: dict, key: str, where: str) -> tuple[str, ...]:
    value = data.get(key)
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise Malformed(f"{where}: '{key}' must be a list of strings")
    return tuple(value)


def _check_fields(data: Any, required: set, optional: set, where: str) -> None:
    if not isinstance(data, dict):
        raise Malformed(f"{where}: expected a JSON object")
    missing = required - data.keys()
    if missing:
        raise Malformed(f"{where}: missing fields {sorted(missing)}")
    unexpected = data.keys() - required - optional
    if unexpected:
        raise Malformed(f"{where}: unexpected fields {sorted(unexpected)}")


def _is_decimal(value: str) -> bool:
    return value.isascii() and value.isdigit()


def split_fragment(reference: str) -> tuple[str, str]:
    """Split 'did:web:host#key-0' into ('did:web:host', 'key-0')."""
    base, sep, fragment = reference.partition("#")
    if not sep or not fragment:
        raise Malformed(f"Reference has no key fragment: {reference}")
    return base, fragment


@dataclass(frozen=True)
class VerificationMethod:
    """A public key declared by a document version."""
    id: str
    type: str
    controller: str
    public_key_jwk: dict

    @property
    def fragment(self) -> str:
        return split_fragment(self.id)[1]

    @classmethod
    def from_dict(cls, data: Any) -> "VerificationMethod":
        _check_fields(data, _METHOD_FIELDS, set(), "verificationMethod")
        method_id = _require_str(data, "id", "verificationMethod")
        split_fragment(method_id)
        jwk = data["publicKeyJwk"]
        if not isinstance(jwk, dict) or not isinstance(jwk.get("kty"), str):
            raise Malformed(f"verificationMethod {method_id}: publicKeyJwk must be a JWK object")
        if _PRIVATE_JWK_MEMBERS & jwk.keys():
            raise Malformed(f"verificationMethod {method_id}: publicKeyJwk carries private key material")
        return cls(
            id=method_id,
            type=_require_str(data, "type", "verificationMethod"),
            controller=_require_str(data, "controller", "verificationMethod"),
            public_key_jwk=dict(jwk),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "controller": self.controller,
            "publicKeyJwk": dict(self.public_key_jwk),
        }


@dataclass(frozen=True)
class ServiceDescriptor:
    """A service endpoint declared by a document version."""
    id: str
    type: str
    service_endpoint: str

    @classmethod
    def from_dict(cls, data: Any) -> "ServiceDescriptor":
        _check_fields(data, _SERVICE_FIELDS, set(), "service")
        return cls(
            id=_require_str(data, "id", "service"),
            type=_require_str(data, "type", "service"),
            service_endpoint=_require_str(data, "serviceEndpoint", "service"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "serviceEndpoint": self.service_endpoint,
        }


@dataclass(frozen=True)
class DocumentVersion:
    """
    One published version of an identity document.

    Immutable once published and identified by (identifier, version). The
    version number is the chain position the document was published at;
    it is conveyed by the publication URL and is not part of the JSON body.
    """
    identifier: str
    version: int
    verification_methods: tuple[VerificationMethod, ...]
    authentication: tuple[str, ...]
    assertion_method: tuple[str, ...]
    services: Optional[tuple[ServiceDescriptor, ...]] = None
    context: Any = None
    controller: Any = None
    also_known_as: Optional[tuple[str, ...]] = None
    # JSON body exactly as fetched; None for locally built versions
    payload: Optional[dict] = field(default=None, compare=False, repr=False)

    @classmethod
    def create(
        cls,
        identifier: str,
        version: int,
        public_key_jwk: dict,
        update_endpoint: str,
        key_fragment: str = config.DEFAULT_KEY_FRAGMENT,
        service_type: str = config.UPDATE_SERVICE_TYPE,
    ) -> "DocumentVersion":
        """Factory for a version whose sole key is public_key_jwk."""
        key_id = f"{identifier}#{key_fragment}"
        return cls(
            identifier=identifier,
            version=version,
            verification_methods=(
                VerificationMethod(
                    id=key_id,
                    type=config.VERIFICATION_METHOD_TYPE,
                    controller=identifier,
                    public_key_jwk=dict(public_key_jwk),
                ),
            ),
            authentication=(key_id,),
            assertion_method=(key_id,),
            services=(
                ServiceDescriptor(
                    id=f"{identifier}#{config.UPDATE_SERVICE_FRAGMENT}",
                    type=service_type,
                    service_endpoint=update_endpoint,
                ),
            ),
        )

    @classmethod
    def from_dict(cls, data: Any, version: int) -> "DocumentVersion":
        """Validate a fetched JSON document and build a DocumentVersion."""
        where = f"document version {version}"
        _check_fields(data, _REQUIRED_DOCUMENT_FIELDS, _OPTIONAL_DOCUMENT_FIELDS, where)

        methods = data["verificationMethod"]
        if not isinstance(methods, list) or not methods:
            raise Malformed(f"{where}: 'verificationMethod' must be a non-empty list")

        services = None
        if "service" in data:
            if not isinstance(data["service"], list):
                raise Malformed(f"{where}: 'service' must be a list")
            services = tuple(ServiceDescriptor.from_dict(s) for s in data["service"])

        also_known_as = None
        if "alsoKnownAs" in data:
            also_known_as = _require_str_list(data, "alsoKnownAs", where)

        return cls(
            identifier=_require_str(data, "id", where),
            version=version,
            verification_methods=tuple(VerificationMethod.from_dict(m) for m in methods),
            authentication=_require_str_list(data, "authentication", where),
            assertion_method=_require_str_list(data, "assertionMethod", where),
            services=services,
            context=data.get("@context"),
            controller=data.get("controller"),
            also_known_as=also_known_as,
            payload=data,
        )

    def to_dict(self) -> dict:
        """The JSON body as published; optional members only when present."""
        doc = {}
        if self.context is not None:
            doc["@context"] = self.context
        doc["id"] = self.identifier
        if self.controller is not None:
            doc["controller"] = self.controller
        if self.also_known_as is not None:
            doc["alsoKnownAs"] = list(self.also_known_as)
        doc["verificationMethod"] = [m.to_dict() for m in self.verification_methods]
        doc["authentication"] = list(self.authentication)
        doc["assertionMethod"] = list(self.assertion_method)
        if self.services is not None:
            doc["service"] = [s.to_dict() for s in self.services]
        return doc

    def content(self) -> dict:
        """The body the content hash covers: as fetched, else as published."""
        return self.payload if self.payload is not None else self.to_dict()

    def find_verification_method(self, fragment: str) -> Optional[VerificationMethod]:
        for method in self.verification_methods:
            if method.fragment == fragment:
                return method
        return None

    def update_service(
        self, service_type: str = config.UPDATE_SERVICE_TYPE
    ) -> Optional[ServiceDescriptor]:
        """The first service descriptor of the update-service type, if any."""
        for service in self.services or ():
            if service.type == service_type:
                return service
        return None

    def validate(self, service_type: str = config.UPDATE_SERVICE_TYPE) -> tuple[bool, list[str]]:
        """
        Validate the document against the chain rules.
        Returns (is_valid, list_of_errors).
        """
        errors = []

        if self.version < config.GENESIS_VERSION:
            errors.append(f"version must be >= {config.GENESIS_VERSION}")

        if not self.verification_methods:
            errors.append("at least one verification method is required")

        fragments = [m.fragment for m in self.verification_methods]
        if len(fragments) != len(set(fragments)):
            errors.append("verification method fragments must be unique")

        method_ids = {m.id for m in self.verification_methods}
        for ref in self.authentication + self.assertion_method:
            if ref not in method_ids:
                errors.append(f"reference {ref} does not name a verification method")

        if self.update_service(service_type) is None:
            errors.append("update service endpoint is required")

        return (len(errors) == 0, errors)


@dataclass(frozen=True)
class MetadataRecord:
    """Per-version metadata exposing whether a successor version exists."""
    version: int
    has_next: bool

    @classmethod
    def from_dict(cls, data: Any) -> "MetadataRecord":
        _check_fields(data, {"versionId", "nextVersionId"}, set(), "metadata")
        version = data["versionId"]
        has_next = data["nextVersionId"]
        if isinstance(version, bool) or not isinstance(version, int):
            raise Malformed("metadata: 'versionId' must be an integer")
        if not isinstance(has_next, bool):
            raise Malformed("metadata: 'nextVersionId' must be a boolean")
        return cls(version=version, has_next=has_next)

    def to_dict(self) -> dict:
        return {"versionId": self.version, "nextVersionId": self.has_next}


@dataclass(frozen=True)
class IssuerReference:
    """
    The signer of a proof: identifier, historical version and key fragment.

    Encoded as '<identifier>?versionId=<version>#<fragment>' so a verifier
    can select the key set of the exact version that signed.
    """
    identifier: str
    version: int
    fragment: str

    @classmethod
    def parse(cls, value: Any) -> "IssuerReference":
        if not isinstance(value, str):
            raise Malformed("proof: 'iss' must be a string")
        base, fragment = split_fragment(value)
        identifier, sep, query = base.partition("?")
        if not identifier or not sep:
            raise Malformed(f"proof: issuer {value} carries no version selector")
        selector = parse_qs(query).get(config.VERSION_QUERY_PARAM)
        if not selector or len(selector) != 1 or not _is_decimal(selector[0]):
            raise Malformed(f"proof: issuer {value} carries no valid versionId")
        return cls(identifier=identifier, version=int(selector[0]), fragment=fragment)

    def __str__(self) -> str:
        return f"{self.identifier}?{config.VERSION_QUERY_PARAM}={self.version}#{self.fragment}"


@dataclass(frozen=True)
class ProofClaims:
    """Claims of a proof token: attested content hash and its signer."""
    subject: str
    issuer: IssuerReference
    issued_at: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Any) -> "ProofClaims":
        _check_fields(data, {"sub", "iss"}, {"iat"}, "proof claims")
        subject = _require_str(data, "sub", "proof claims")
        issued_at = data.get("iat")
        if issued_at is not None and (isinstance(issued_at, bool) or not isinstance(issued_at, int)):
            raise Malformed("proof claims: 'iat' must be an integer")
        return cls(
            subject=subject,
            issuer=IssuerReference.parse(data["iss"]),
            issued_at=issued_at,
        )

    def to_dict(self) -> dict:
        claims = {"sub": self.subject, "iss": str(self.issuer)}
        if self.issued_at is not None:
            claims["iat"] = self.issued_at
        return claims


def parse_proof_collection(data: Any) -> dict[int, str]:
    """
    Validate a fetched proof collection.

    The collection maps each attested version number (as a JSON object key)
    to its compact proof token.
    """
    if not isinstance(data, dict):
        raise Malformed("proof collection: expected a JSON object")
    proofs = {}
    for key, token in data.items():
        if not isinstance(key, str) or not _is_decimal(key):
            raise Malformed(f"proof collection: key {key!r} is not a version number")
        if not isinstance(token, str) or not token:
            raise Malformed(f"proof collection: entry {key} is not a token")
        version = int(key)
        if version <= config.GENESIS_VERSION:
            raise Malformed(f"proof collection: version {version} cannot carry a proof")
        proofs[version] = token
    return proofs
