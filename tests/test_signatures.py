"""
Tests for keys and proof tokens.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import base64
import json

import pytest

from didchain.documents import IssuerReference, ProofClaims, SignatureAlgorithm
from didchain.errors import InvalidSignature, Malformed
from didchain.signatures import (
    algorithm_for_jwk,
    decode_proof,
    generate_keypair,
    jwk_to_private_key,
    jwk_to_public_key,
    private_key_to_jwk,
    public_key_to_jwk,
    sign_proof,
    verify_proof,
)

IDENTIFIER = "did:web:issuer.example.com"


@pytest.fixture
def claims():
    """Claims attesting a document of version 2, signed by version 1."""
    return ProofClaims(
        subject="ab" * 32,
        issuer=IssuerReference(IDENTIFIER, 1, "key-0"),
        issued_at=1700000000,
    )


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


class TestKeyGeneration:
    """Tests for key pair generation."""

    @pytest.mark.parametrize("algorithm", list(SignatureAlgorithm))
    def test_generate_keypair(self, algorithm):
        """Test key generation for every supported algorithm."""
        private_key, public_key = generate_keypair(algorithm)
        assert private_key is not None
        assert algorithm_for_jwk(public_key_to_jwk(public_key)) == algorithm

    def test_keys_are_fresh(self):
        """Test that each generation yields a different key."""
        _, first = generate_keypair()
        _, second = generate_keypair()
        assert public_key_to_jwk(first) != public_key_to_jwk(second)

    def test_unsupported_algorithm(self):
        with pytest.raises(ValueError):
            generate_keypair("HS256")


class TestJwkSerialization:
    """Tests for JWK export and import."""

    def test_es256_public_jwk_shape(self):
        """Test the public JWK members of a P-256 key."""
        _, public_key = generate_keypair(SignatureAlgorithm.ES256)
        jwk = public_key_to_jwk(public_key)
        assert set(jwk) == {"kty", "crv", "x", "y"}
        assert jwk["crv"] == "P-256"
        assert "d" not in jwk

    def test_private_jwk_restores_signing_key(self, claims):
        """Test that a stored private JWK still signs for the same public key."""
        private_key, public_key = generate_keypair(SignatureAlgorithm.ES256)
        restored = jwk_to_private_key(private_key_to_jwk(private_key))
        token = sign_proof(claims, restored, SignatureAlgorithm.ES256)
        assert verify_proof(token, public_key_to_jwk(public_key)) == claims

    def test_ed25519_public_roundtrip(self):
        _, public_key = generate_keypair(SignatureAlgorithm.EDDSA)
        jwk = public_key_to_jwk(public_key)
        assert public_key_to_jwk(jwk_to_public_key(jwk)) == jwk

    def test_unsupported_key_type(self):
        with pytest.raises(Malformed):
            jwk_to_public_key({"kty": "RSA", "n": "x", "e": "AQAB"})

    def test_point_not_on_curve(self):
        with pytest.raises(Malformed):
            jwk_to_public_key({"kty": "EC", "crv": "P-256", "x": _b64url(b"\x01" * 32), "y": _b64url(b"\x02" * 32)})


class TestProofTokens:
    """Tests for signing and verifying proof tokens."""

    @pytest.mark.parametrize("algorithm", list(SignatureAlgorithm))
    def test_sign_and_verify(self, claims, algorithm):
        """Test that a proof verifies under the signer's public key."""
        private_key, public_key = generate_keypair(algorithm)
        token = sign_proof(claims, private_key, algorithm)
        assert verify_proof(token, public_key_to_jwk(public_key)) == claims

    def test_compact_jws_header(self, claims):
        """Test the protected header of an ES256 proof."""
        private_key, _ = generate_keypair(SignatureAlgorithm.ES256)
        token = sign_proof(claims, private_key, SignatureAlgorithm.ES256)
        header, decoded = decode_proof(token)
        assert header == {"alg": "ES256", "typ": "JWT"}
        assert decoded == claims

    def test_es256_signature_is_raw_r_s(self, claims):
        """Test that ES256 signatures use the 64-byte JWS encoding."""
        private_key, _ = generate_keypair(SignatureAlgorithm.ES256)
        token = sign_proof(claims, private_key, SignatureAlgorithm.ES256)
        signature = token.split(".")[2]
        assert len(base64.urlsafe_b64decode(signature + "==")) == 64

    def test_wrong_key_rejected(self, claims):
        """Test that a proof signed by an unrelated key fails."""
        private_key, _ = generate_keypair(SignatureAlgorithm.ES256)
        _, other_public = generate_keypair(SignatureAlgorithm.ES256)
        token = sign_proof(claims, private_key, SignatureAlgorithm.ES256)
        with pytest.raises(InvalidSignature):
            verify_proof(token, public_key_to_jwk(other_public))

    def test_tampered_claims_rejected(self, claims):
        """Test that swapping the claims segment breaks the signature."""
        private_key, public_key = generate_keypair(SignatureAlgorithm.ES256)
        token = sign_proof(claims, private_key, SignatureAlgorithm.ES256)
        header, _, signature = token.split(".")
        forged_claims = dict(claims.to_dict(), sub="cd" * 32)
        forged = ".".join([header, _b64url(json.dumps(forged_claims).encode()), signature])
        with pytest.raises(InvalidSignature):
            verify_proof(forged, public_key_to_jwk(public_key))

    def test_alg_none_rejected(self, claims):
        """Test that an unsigned token is never accepted."""
        _, public_key = generate_keypair(SignatureAlgorithm.ES256)
        header = _b64url(json.dumps({"alg": "none"}).encode())
        body = _b64url(json.dumps(claims.to_dict()).encode())
        with pytest.raises(InvalidSignature):
            verify_proof(f"{header}.{body}.", public_key_to_jwk(public_key))

    def test_algorithm_key_mismatch_rejected(self, claims):
        """Test that an EdDSA proof is not checked against a P-256 key."""
        private_key, _ = generate_keypair(SignatureAlgorithm.EDDSA)
        _, ec_public = generate_keypair(SignatureAlgorithm.ES256)
        token = sign_proof(claims, private_key, SignatureAlgorithm.EDDSA)
        with pytest.raises(InvalidSignature):
            verify_proof(token, public_key_to_jwk(ec_public))

    @pytest.mark.parametrize("token", ["", "a.b", "a.b.c.d", "!!!.e30.sig"])
    def test_malformed_token(self, token):
        with pytest.raises(Malformed):
            decode_proof(token)
