"""
Password-derived keys for participants, the coprocessor and the gateway.

- A password is stretched with Scrypt into a 32-byte Ed25519 seed, so the same
  password always yields the same key pair and nothing secret is stored.
- Ed25519 keys are converted to Curve25519 (required for SealedBox) with the
  libsodium conversions in nacl.bindings.
- Participants register only the base64 Ed25519 verify key; anything sealed
  to it can be opened again by whoever knows the password.
"""

from __future__ import annotations
import base64
from typing import Tuple

from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from nacl import signing, public, bindings
from nacl.public import SealedBox

from config import CRYPTO_CONFIG


# ---------------------------
# Key derivation
# ---------------------------

def derive_seed_from_password(password: str, *, salt: bytes = CRYPTO_CONFIG["kdf_salt"]) -> bytes:
    """
    Derive a 32-byte seed from a password using Scrypt.
    The salt is fixed so derivation is deterministic across runs.
    """
    kdf = Scrypt(salt=salt, length=32, n=2**14, r=8, p=1)
    return kdf.derive(password.encode())


def signing_key_from_seed(seed32: bytes) -> signing.SigningKey:
    if len(seed32) != 32:
        raise ValueError("seed must be 32 bytes")
    return signing.SigningKey(seed32)


def signing_key_from_password(password: str) -> signing.SigningKey:
    return signing_key_from_seed(derive_seed_from_password(password))


def verify_key_b64(password: str) -> str:
    """Base64 Ed25519 verify key for a password, the value a participant registers."""
    vk = signing_key_from_password(password).verify_key
    return base64.b64encode(vk.encode()).decode("ascii")


def ed25519_verifykey_to_curve25519_pub(ed25519_pk: bytes) -> bytes:
    return bindings.crypto_sign_ed25519_pk_to_curve25519(ed25519_pk)


def ed25519_secret_to_curve25519_sk(ed25519_sk_seed32: bytes, ed25519_pk: bytes) -> bytes:
    """
    Convert Ed25519 secret key (seed32 + pubkey -> 64 bytes) to Curve25519 secret key (32 bytes).
    libsodium's conversion expects the 64-byte secret key (seed || pubkey).
    """
    if len(ed25519_sk_seed32) != 32 or len(ed25519_pk) != 32:
        raise ValueError("ed25519 seed and pubkey must be 32 bytes each")
    return bindings.crypto_sign_ed25519_sk_to_curve25519(ed25519_sk_seed32 + ed25519_pk)


def curve25519_keypair_from_seed(seed32: bytes) -> Tuple[public.PrivateKey, public.PublicKey]:
    sk = signing_key_from_seed(seed32)
    ed_pk = sk.verify_key.encode()
    curve_sk = public.PrivateKey(ed25519_secret_to_curve25519_sk(sk.encode(), ed_pk))
    return curve_sk, curve_sk.public_key


# ---------------------------
# Sealing for participants
# ---------------------------

def seal_for_verify_key(ed25519_verifykey_b64: str, message: bytes) -> str:
    """
    Encrypt 'message' for the owner of the given ed25519 verify key (base64).
    Returns base64 ciphertext of a SealedBox-encrypted blob (anonymous sender).
    """
    ed_pk = base64.b64decode(ed25519_verifykey_b64)
    if len(ed_pk) != 32:
        raise ValueError("verify key must be 32 bytes")
    curve_pub = public.PublicKey(ed25519_verifykey_to_curve25519_pub(ed_pk))
    sealed = SealedBox(curve_pub).encrypt(message)
    return base64.b64encode(sealed).decode("ascii")


def open_with_password(password: str, ciphertext_b64: str) -> bytes:
    """
    Reconstruct the Curve25519 private key from the participant's password and
    open the sealed box ciphertext (base64).
    """
    priv, _pub = curve25519_keypair_from_seed(derive_seed_from_password(password))
    return SealedBox(priv).decrypt(base64.b64decode(ciphertext_b64))


# ---------------------------
# Cleartext words
# ---------------------------

def encode_word(value: int, width: int = CRYPTO_CONFIG["cleartext_width"]) -> bytes:
    """Encode a non-negative integer as one big-endian word."""
    return value.to_bytes(width, "big")


def decode_word(data: bytes, width: int = CRYPTO_CONFIG["cleartext_width"]) -> int:
    if len(data) != width:
        raise ValueError(f"cleartext must be {width} bytes, got {len(data)}")
    return int.from_bytes(data, "big")
