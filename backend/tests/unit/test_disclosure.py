"""Tests for selective disclosure (AES-256-GCM restricted sections)."""

from __future__ import annotations

import pytest

from dpp_anchor.core.crypto.encoding import b64url_decode, b64url_encode
from dpp_anchor.core.encryption import (
    DISCLOSURE_ALGORITHM,
    DisclosureError,
    build_verification_link_template,
    decode_verification_key,
    decrypt_restricted,
    encrypt_restricted,
    generate_verification_key,
    split_disclosure,
)

RESTRICTED = {"importer": {"eori": "DE123456789012"}, "facilities": [{"facilityId": "F-1"}]}


@pytest.fixture()
def key() -> str:
    return generate_verification_key()


class TestVerificationKey:
    def test_generated_key_is_256_bits(self, key: str) -> None:
        assert len(decode_verification_key(key)) == 32

    def test_keys_are_unique(self) -> None:
        assert generate_verification_key() != generate_verification_key()

    def test_short_key_rejected(self) -> None:
        with pytest.raises(DisclosureError, match="256 bits"):
            decode_verification_key(b64url_encode(b"\x00" * 16))

    def test_link_template(self) -> None:
        link = build_verification_link_template("https://render.example/", "abc")
        assert link == "https://render.example/render/{tokenId}?key=abc"


class TestEncryptRestricted:
    def test_round_trip(self, key: str) -> None:
        envelope = encrypt_restricted(RESTRICTED, key)
        assert envelope["alg"] == DISCLOSURE_ALGORITHM
        assert set(envelope) == {"alg", "iv", "ciphertext", "tag"}
        assert decrypt_restricted(envelope, key) == RESTRICTED

    def test_fresh_iv_per_encryption(self, key: str) -> None:
        first = encrypt_restricted(RESTRICTED, key)
        second = encrypt_restricted(RESTRICTED, key)
        assert first["iv"] != second["iv"]
        assert first["ciphertext"] != second["ciphertext"]

    def test_wrong_key_fails_closed(self, key: str) -> None:
        envelope = encrypt_restricted(RESTRICTED, key)
        with pytest.raises(DisclosureError):
            decrypt_restricted(envelope, generate_verification_key())

    def test_tampered_ciphertext_fails_closed(self, key: str) -> None:
        envelope = encrypt_restricted(RESTRICTED, key)
        raw = bytearray(b64url_decode(envelope["ciphertext"]))
        raw[0] ^= 0x01
        envelope["ciphertext"] = b64url_encode(bytes(raw))
        with pytest.raises(DisclosureError):
            decrypt_restricted(envelope, key)

    def test_tampered_tag_fails_closed(self, key: str) -> None:
        envelope = encrypt_restricted(RESTRICTED, key)
        envelope["tag"] = b64url_encode(b"\x00" * 16)
        with pytest.raises(DisclosureError):
            decrypt_restricted(envelope, key)

    def test_aad_must_match(self, key: str) -> None:
        envelope = encrypt_restricted(RESTRICTED, key, aad=b"did:web:a")
        assert decrypt_restricted(envelope, key, aad=b"did:web:a") == RESTRICTED
        with pytest.raises(DisclosureError):
            decrypt_restricted(envelope, key, aad=b"did:web:b")

    def test_unexpected_cipher_errors_propagate(
        self, key: str, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        envelope = encrypt_restricted(RESTRICTED, key)

        class BrokenCipher:
            def __init__(self, _key: bytes) -> None:
                pass

            def decrypt(self, *_args: object) -> bytes:
                raise RuntimeError("backend failure")

        monkeypatch.setattr("dpp_anchor.core.encryption.AESGCM", BrokenCipher)
        with pytest.raises(RuntimeError, match="backend failure"):
            decrypt_restricted(envelope, key)

    def test_unknown_algorithm(self, key: str) -> None:
        envelope = encrypt_restricted(RESTRICTED, key)
        envelope["alg"] = "A128CBC"
        with pytest.raises(DisclosureError, match="unsupported"):
            decrypt_restricted(envelope, key)

    def test_missing_field(self, key: str) -> None:
        envelope = encrypt_restricted(RESTRICTED, key)
        del envelope["iv"]
        with pytest.raises(DisclosureError, match="'iv'"):
            decrypt_restricted(envelope, key)


def test_split_disclosure_partitions_top_level_fields() -> None:
    document = {"gtin": "123", "importer": {"name": "X"}, "issuerDid": "did:key:z"}
    split = split_disclosure(document, lambda name, _value: name == "importer")
    assert split.public == {"gtin": "123", "issuerDid": "did:key:z"}
    assert split.restricted == {"importer": {"name": "X"}}
