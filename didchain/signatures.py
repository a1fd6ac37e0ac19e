"""
DID Update Chain - Keys and Proof Tokens

Key pairs are generated fresh for every document version and published as
JWKs. A proof is a compact JWS whose claims bind the content hash of a new
version to the key of the version before it. ES256 is the default
algorithm; ES384 and EdDSA (Ed25519) are permitted alternatives.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import base64
import binascii
import json
from typing import Any, Union

from cryptography.exceptions import InvalidSignature as CryptoInvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519
from cryptography.hazmat.primitives.asymmetric.ec import (
    EllipticCurvePrivateKey,
    EllipticCurvePublicKey,
    SECP256R1,
    SECP384R1,
)
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)

from .documents import ProofClaims, SignatureAlgorithm
from .errors import InvalidSignature, Malformed


PrivateKey = Union[Ed25519PrivateKey, EllipticCurvePrivateKey]
PublicKey = Union[Ed25519PublicKey, EllipticCurvePublicKey]

# algorithm -> (curve name, curve, coordinate size, digest)
_EC_PARAMS = {
    SignatureAlgorithm.ES256: ("P-256", SECP256R1, 32, hashes.SHA256),
    SignatureAlgorithm.ES384: ("P-384", SECP384R1, 48, hashes.SHA384),
}
_EC_BY_CURVE = {params[0]: alg for alg, params in _EC_PARAMS.items()}


def _b64url_encode(data: bytes) -> str:
    """Encode bytes as base64url without padding."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64url_decode(value: str) -> bytes:
    if not isinstance(value, str):
        raise Malformed("base64url value must be a string")
    try:
        return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))
    except (binascii.Error, ValueError) as e:
        raise Malformed(f"Invalid base64url encoding: {e}") from e


def generate_keypair(
    algorithm: SignatureAlgorithm = SignatureAlgorithm.ES256
) -> tuple[PrivateKey, PublicKey]:
    """Generate a new key pair for the specified algorithm."""
    algorithm = SignatureAlgorithm(algorithm)

    if algorithm == SignatureAlgorithm.EDDSA:
        private_key = ed25519.Ed25519PrivateKey.generate()
        return private_key, private_key.public_key()

    elif algorithm in _EC_PARAMS:
        curve = _EC_PARAMS[algorithm][1]
        private_key = ec.generate_private_key(curve())
        return private_key, private_key.public_key()

    else:
        raise ValueError(f"Unsupported algorithm: {algorithm}")


def algorithm_for_jwk(jwk: dict) -> SignatureAlgorithm:
    """The JWS algorithm a JWK is used with."""
    kty = jwk.get("kty")
    crv = jwk.get("crv")
    if kty == "OKP" and crv == "Ed25519":
        return SignatureAlgorithm.EDDSA
    if kty == "EC" and crv in _EC_BY_CURVE:
        return _EC_BY_CURVE[crv]
    raise Malformed(f"Unsupported JWK key type {kty}/{crv}")


def public_key_to_jwk(public_key: PublicKey) -> dict:
    """Serialize a public key to a JWK dictionary."""
    if isinstance(public_key, Ed25519PublicKey):
        raw = public_key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return {"kty": "OKP", "crv": "Ed25519", "x": _b64url_encode(raw)}

    if isinstance(public_key, EllipticCurvePublicKey):
        for crv, curve, size, _ in _EC_PARAMS.values():
            if isinstance(public_key.curve, curve):
                numbers = public_key.public_numbers()
                return {
                    "kty": "EC",
                    "crv": crv,
                    "x": _b64url_encode(numbers.x.to_bytes(size, "big")),
                    "y": _b64url_encode(numbers.y.to_bytes(size, "big")),
                }

    raise ValueError(f"Unsupported public key type: {type(public_key)}")


def private_key_to_jwk(private_key: PrivateKey) -> dict:
    """Serialize a private key to a JWK dictionary (public members plus 'd')."""
    jwk = public_key_to_jwk(private_key.public_key())

    if isinstance(private_key, Ed25519PrivateKey):
        raw = private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )
        jwk["d"] = _b64url_encode(raw)
    else:
        size = _EC_PARAMS[algorithm_for_jwk(jwk)][2]
        jwk["d"] = _b64url_encode(private_key.private_numbers().private_value.to_bytes(size, "big"))

    return jwk


def jwk_to_public_key(jwk: dict) -> PublicKey:
    """Deserialize a public JWK."""
    algorithm = algorithm_for_jwk(jwk)
    try:
        if algorithm == SignatureAlgorithm.EDDSA:
            return Ed25519PublicKey.from_public_bytes(_b64url_decode(jwk["x"]))

        curve = _EC_PARAMS[algorithm][1]
        return ec.EllipticCurvePublicNumbers(
            int.from_bytes(_b64url_decode(jwk["x"]), "big"),
            int.from_bytes(_b64url_decode(jwk["y"]), "big"),
            curve(),
        ).public_key()
    except (KeyError, ValueError) as e:
        raise Malformed(f"Invalid public JWK: {e}") from e


def jwk_to_private_key(jwk: dict) -> PrivateKey:
    """Deserialize a private JWK."""
    algorithm = algorithm_for_jwk(jwk)
    try:
        if algorithm == SignatureAlgorithm.EDDSA:
            return Ed25519PrivateKey.from_private_bytes(_b64url_decode(jwk["d"]))

        curve = _EC_PARAMS[algorithm][1]
        return ec.derive_private_key(int.from_bytes(_b64url_decode(jwk["d"]), "big"), curve())
    except (KeyError, ValueError) as e:
        raise Malformed(f"Invalid private JWK: {e}") from e


def sign_data(private_key: PrivateKey, data: bytes, algorithm: SignatureAlgorithm) -> bytes:
    """Sign data and return the JWS signature bytes."""
    if algorithm == SignatureAlgorithm.EDDSA:
        return private_key.sign(data)

    elif algorithm in _EC_PARAMS:
        _, _, size, digest = _EC_PARAMS[algorithm]
        r, s = decode_dss_signature(private_key.sign(data, ec.ECDSA(digest())))
        return r.to_bytes(size, "big") + s.to_bytes(size, "big")

    else:
        raise ValueError(f"Unsupported algorithm: {algorithm}")


def verify_data(
    public_key: PublicKey,
    signature: bytes,
    data: bytes,
    algorithm: SignatureAlgorithm,
) -> bool:
    """Verify a JWS signature against data. Returns True if valid."""
    try:
        if algorithm == SignatureAlgorithm.EDDSA:
            if not isinstance(public_key, Ed25519PublicKey):
                return False
            public_key.verify(signature, data)

        elif algorithm in _EC_PARAMS:
            _, _, size, digest = _EC_PARAMS[algorithm]
            if not isinstance(public_key, EllipticCurvePublicKey) or len(signature) != 2 * size:
                return False
            der = encode_dss_signature(
                int.from_bytes(signature[:size], "big"),
                int.from_bytes(signature[size:], "big"),
            )
            public_key.verify(der, data, ec.ECDSA(digest()))

        else:
            return False

        return True

    except CryptoInvalidSignature:
        return False


def sign_proof(claims: ProofClaims, private_key: PrivateKey, algorithm: SignatureAlgorithm) -> str:
    """Sign proof claims and return the compact JWS token."""
    algorithm = SignatureAlgorithm(algorithm)
    header = {"alg": algorithm.value, "typ": "JWT"}
    signing_input = ".".join(
        _b64url_encode(json.dumps(part, separators=(",", ":"), sort_keys=True).encode("utf-8"))
        for part in (header, claims.to_dict())
    )
    signature = sign_data(private_key, signing_input.encode("ascii"), algorithm)
    return f"{signing_input}.{_b64url_encode(signature)}"


def _decode_segment(segment: str, name: str) -> Any:
    try:
        return json.loads(_b64url_decode(segment))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise Malformed(f"Proof {name} is not valid JSON: {e}") from e


def decode_proof(token: str) -> tuple[dict, ProofClaims]:
    """
    Decode a proof token WITHOUT verifying its signature.

    Used to learn which key signed it. Returns (header, claims).
    """
    if not isinstance(token, str) or token.count(".") != 2:
        raise Malformed("Proof is not a compact JWS")
    header_segment, claims_segment, _ = token.split(".")
    header = _decode_segment(header_segment, "header")
    if not isinstance(header, dict) or not isinstance(header.get("alg"), str):
        raise Malformed("Proof header carries no algorithm")
    claims = ProofClaims.from_dict(_decode_segment(claims_segment, "claims"))
    return header, claims


def verify_proof(token: str, public_key_jwk: dict) -> ProofClaims:
    """
    Verify a proof token against the signer's public JWK.

    Raises InvalidSignature when the algorithm does not fit the key or the
    signature does not verify. Returns the verified claims.
    """
    header, claims = decode_proof(token)
    expected = algorithm_for_jwk(public_key_jwk)
    if header["alg"] != expected.value:
        raise InvalidSignature(f"Proof algorithm {header['alg']} does not match signer key ({expected.value})")

    public_key = jwk_to_public_key(public_key_jwk)
    signing_input, _, signature_segment = token.rpartition(".")
    signature = _b64url_decode(signature_segment)

    if not verify_data(public_key, signature, signing_input.encode("ascii"), expected):
        raise InvalidSignature("Proof signature does not verify under the signer key")

    return claims
