"""
Tests for content hashing, canonical serialization and certificate signing.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from app.utils.error_handling import ValidationException
from app.utils.signing import (
    SIGNATURE_ALGORITHM,
    CertificateSigner,
    canonical_json,
    format_timestamp,
    generate_key_pair,
    hash_bytes,
    is_valid_digest,
    load_private_key,
    load_public_key,
    serialize_private_key,
    serialize_public_key,
    sign,
    verify,
)


PAYLOAD = {
    "certificate_id": "CERT-2024-123456-ABCDEF",
    "issued_to": {"organization": "Acme Corp", "contact_person": "Jane Roe"},
    "devices": [
        {"device_id": "DL-001", "status": "verified"},
        {"device_id": "DL-002", "status": "verified"},
    ],
    "validity_period": {"start": "2024-01-01T00:00:00.000000Z", "end": "2027-01-01T00:00:00.000000Z"},
    "timestamp": "2024-01-01T00:00:00.000000Z",
}


# ===========================================
# HASHING
# ===========================================

class TestHashing:

    def test_sha256_known_vector(self):
        assert hash_bytes(b"abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"

    def test_hash_is_deterministic(self):
        assert hash_bytes(b"erasure log", "sha512") == hash_bytes(b"erasure log", "sha512")

    def test_algorithm_is_case_insensitive(self):
        assert hash_bytes(b"abc", "SHA256") == hash_bytes(b"abc", "sha256")

    def test_unsupported_algorithm_rejected(self):
        with pytest.raises(ValidationException):
            hash_bytes(b"abc", "md5")

    def test_digest_shape_check(self):
        assert is_valid_digest(hash_bytes(b"abc"), "sha256")
        assert not is_valid_digest("xyz", "sha256")
        assert not is_valid_digest("g" * 64, "sha256")
        assert not is_valid_digest(hash_bytes(b"abc"), "sha512")


# ===========================================
# CANONICAL SERIALIZATION
# ===========================================

class TestCanonicalJson:

    def test_key_order_does_not_matter(self):
        reordered = {key: PAYLOAD[key] for key in reversed(list(PAYLOAD))}
        reordered["issued_to"] = {"contact_person": "Jane Roe", "organization": "Acme Corp"}
        assert canonical_json(reordered) == canonical_json(PAYLOAD)

    def test_exact_bytes(self):
        assert canonical_json({"b": 1, "a": [2, {"d": 3, "c": 4}]}) == b'{"a":[2,{"c":4,"d":3}],"b":1}'

    def test_list_order_is_significant(self):
        swapped = dict(PAYLOAD, devices=list(reversed(PAYLOAD["devices"])))
        assert canonical_json(swapped) != canonical_json(PAYLOAD)

    def test_non_ascii_kept_verbatim(self):
        assert canonical_json({"org": "Müller GmbH"}) == '{"org":"Müller GmbH"}'.encode("utf-8")

    def test_datetime_and_uuid_encoding(self):
        value = uuid.UUID("12345678-1234-5678-1234-567812345678")
        encoded = canonical_json({"at": datetime(2024, 5, 1, 12, 0, 0), "id": value})
        assert encoded == b'{"at":"2024-05-01T12:00:00.000000Z","id":"12345678-1234-5678-1234-567812345678"}'

    def test_aware_timestamps_normalized_to_utc(self):
        aware = datetime(2024, 5, 1, 14, 0, 0, tzinfo=timezone(timedelta(hours=2)))
        assert format_timestamp(aware) == "2024-05-01T12:00:00.000000Z"


# ===========================================
# SIGN / VERIFY
# ===========================================

class TestSignatures:

    def test_sign_then_verify(self, signer):
        signature = signer.sign(PAYLOAD)
        assert signer.algorithm == SIGNATURE_ALGORITHM
        assert verify(PAYLOAD, signature, signer.public_key_pem)

    def test_signature_is_hex(self, signer):
        int(signer.sign(PAYLOAD), 16)

    def test_tampered_payload_fails(self, signer):
        signature = signer.sign(PAYLOAD)
        tampered = dict(PAYLOAD, issued_to={"organization": "Evil Corp", "contact_person": "Jane Roe"})
        assert verify(tampered, signature, signer.public_key_pem) is False

    def test_wrong_key_fails(self, signer):
        other = CertificateSigner(generate_key_pair(2048))
        assert verify(PAYLOAD, signer.sign(PAYLOAD), other.public_key_pem) is False

    @pytest.mark.parametrize("bad_signature", [None, "", "not-hex", "abcd", "00" * 256])
    def test_malformed_signature_returns_false(self, signer, bad_signature):
        assert verify(PAYLOAD, bad_signature, signer.public_key_pem) is False

    @pytest.mark.parametrize("bad_key", [None, "", "-----BEGIN PUBLIC KEY-----\ngarbage\n-----END PUBLIC KEY-----"])
    def test_malformed_public_key_returns_false(self, signer, bad_key):
        assert verify(PAYLOAD, signer.sign(PAYLOAD), bad_key) is False

    def test_sign_with_bare_key(self):
        key = generate_key_pair(2048)
        signature = sign(PAYLOAD, key)
        assert verify(PAYLOAD, signature, key.public_key())


class TestKeyMaterial:

    def test_private_key_round_trip_with_passphrase(self):
        key = generate_key_pair(2048)
        pem = serialize_private_key(key, passphrase="s3cret")
        loaded = load_private_key(pem, passphrase="s3cret")
        assert serialize_public_key(loaded.public_key()) == serialize_public_key(key.public_key())

    def test_public_key_accepts_str_and_bytes(self, signer):
        assert load_public_key(signer.public_key_pem).public_numbers() == \
            load_public_key(signer.public_key_pem.encode("ascii")).public_numbers()

    def test_signer_from_pem_file(self, tmp_path):
        key = generate_key_pair(2048)
        path = tmp_path / "signing.pem"
        path.write_bytes(serialize_private_key(key))
        loaded = CertificateSigner.from_pem_file(str(path))
        assert loaded.verify(PAYLOAD, loaded.sign(PAYLOAD))
