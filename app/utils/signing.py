"""
VIPER Erasure Ledger - Hashing & Signing Utilities

Content hashing for proof files and RSA (SHA256withRSA) signing of
certificate payloads. Payloads are serialized canonically (sorted keys,
compact separators, normalized datetimes) so the exact signed bytes can be
reproduced by any verifier, online or offline.
"""

import hashlib
import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional, Union
from uuid import UUID

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from app.config import settings
from app.utils.error_handling import ValidationException

logger = logging.getLogger(__name__)


SIGNATURE_ALGORITHM = "SHA256withRSA"

SUPPORTED_HASH_ALGORITHMS = ("sha256", "sha384", "sha512")


# ===========================================
# HASHING
# ===========================================

def hash_bytes(data: bytes, algorithm: str = "sha256") -> str:
    """
    Compute a hex digest of raw content.

    Args:
        data: Content to hash
        algorithm: One of SUPPORTED_HASH_ALGORITHMS

    Returns:
        Lowercase hex digest
    """
    algorithm = (algorithm or "").lower()
    if algorithm not in SUPPORTED_HASH_ALGORITHMS:
        raise ValidationException(
            f"Unsupported hash algorithm: {algorithm}",
            field="hash_algorithm",
            details={"supported": list(SUPPORTED_HASH_ALGORITHMS)},
        )
    return hashlib.new(algorithm, data).hexdigest()


def is_valid_digest(digest: str, algorithm: str = "sha256") -> bool:
    """Check that a supplied digest has the shape the algorithm produces."""
    lengths = {"sha256": 64, "sha384": 96, "sha512": 128}
    expected = lengths.get((algorithm or "").lower())
    if expected is None or not isinstance(digest, str) or len(digest) != expected:
        return False
    try:
        int(digest, 16)
    except ValueError:
        return False
    return True


# ===========================================
# CANONICAL SERIALIZATION
# ===========================================

def format_timestamp(value: datetime) -> str:
    """Render a datetime as UTC with microsecond precision and a Z suffix."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec="microseconds") + "Z"


class CanonicalEncoder(json.JSONEncoder):
    """JSON encoder for the value types that appear in signed payloads."""

    def default(self, obj):
        if isinstance(obj, datetime):
            return format_timestamp(obj)
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, Decimal):
            return str(obj)
        return super().default(obj)


def canonical_json(payload: Any) -> bytes:
    """Serialize a payload to its canonical byte form."""
    return json.dumps(
        payload,
        cls=CanonicalEncoder,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


# ===========================================
# KEY MATERIAL
# ===========================================

def generate_key_pair(key_size: int = 2048) -> rsa.RSAPrivateKey:
    """Generate a fresh RSA private key."""
    return rsa.generate_private_key(public_exponent=65537, key_size=key_size)


def serialize_private_key(private_key: rsa.RSAPrivateKey, passphrase: Optional[str] = None) -> bytes:
    if passphrase:
        encryption = serialization.BestAvailableEncryption(passphrase.encode("utf-8"))
    else:
        encryption = serialization.NoEncryption()
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=encryption,
    )


def serialize_public_key(public_key: rsa.RSAPublicKey) -> str:
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("utf-8")


def load_private_key(pem: bytes, passphrase: Optional[str] = None) -> rsa.RSAPrivateKey:
    password = passphrase.encode("utf-8") if passphrase else None
    key = serialization.load_pem_private_key(pem, password=password)
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ValidationException("Signing key must be an RSA private key", field="signing_private_key")
    return key


def load_public_key(pem: Union[str, bytes]) -> rsa.RSAPublicKey:
    if isinstance(pem, str):
        pem = pem.encode("utf-8")
    key = serialization.load_pem_public_key(pem)
    if not isinstance(key, rsa.RSAPublicKey):
        raise ValidationException("Verification key must be an RSA public key", field="public_key")
    return key


# ===========================================
# SIGN / VERIFY
# ===========================================

def sign(payload: Any, private_key: rsa.RSAPrivateKey, algorithm: str = SIGNATURE_ALGORITHM) -> str:
    """
    Sign the canonical form of a payload.

    Args:
        payload: JSON-compatible structure (datetimes and UUIDs allowed)
        private_key: RSA private key
        algorithm: Only SHA256withRSA is supported

    Returns:
        Hex-encoded signature
    """
    if algorithm != SIGNATURE_ALGORITHM:
        raise ValidationException(f"Unsupported signature algorithm: {algorithm}", field="algorithm")
    signature = private_key.sign(canonical_json(payload), padding.PKCS1v15(), hashes.SHA256())
    return signature.hex()


def verify(payload: Any, signature: Optional[str], public_key: Union[str, bytes, rsa.RSAPublicKey, None]) -> bool:
    """
    Check a hex signature against the canonical form of a payload.

    Never raises: a malformed signature, a malformed or mismatched key and a
    tampered payload all come back as False.
    """
    if not signature or public_key is None:
        return False
    try:
        if not isinstance(public_key, rsa.RSAPublicKey):
            public_key = load_public_key(public_key)
        public_key.verify(
            bytes.fromhex(signature),
            canonical_json(payload),
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
        return True
    except InvalidSignature:
        return False
    except (ValueError, TypeError, ValidationException) as e:
        logger.debug(f"Signature verification could not run: {e}")
        return False


class CertificateSigner:
    """Holds the key pair used to sign certificates."""

    def __init__(self, private_key: rsa.RSAPrivateKey):
        self.private_key = private_key
        self.public_key_pem = serialize_public_key(private_key.public_key())
        self.algorithm = SIGNATURE_ALGORITHM

    def sign(self, payload: Any) -> str:
        return sign(payload, self.private_key, self.algorithm)

    def verify(self, payload: Any, signature: Optional[str]) -> bool:
        return verify(payload, signature, self.public_key_pem)

    @classmethod
    def from_pem_file(cls, path: str, passphrase: Optional[str] = None) -> "CertificateSigner":
        return cls(load_private_key(Path(path).read_bytes(), passphrase))


@lru_cache()
def get_certificate_signer() -> CertificateSigner:
    """
    Build the process-wide signer from configured key material.

    Falls back to an in-memory key when no key file is configured; signatures
    made with it cannot be re-verified with a new key after restart, but the
    stored public key keeps each certificate independently verifiable.
    """
    if settings.signing_private_key_path:
        logger.info(f"Loading certificate signing key from {settings.signing_private_key_path}")
        return CertificateSigner.from_pem_file(
            settings.signing_private_key_path,
            settings.signing_key_passphrase,
        )

    if settings.is_production:
        logger.error("No signing key configured in production; generating an ephemeral key")
    else:
        logger.warning("No signing key configured; generating an ephemeral development key")
    return CertificateSigner(generate_key_pair(settings.signing_key_size))
