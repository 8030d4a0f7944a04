"""
Encryption providers and decryption gateways.

The coordinator never sees plaintext match indices. It talks to:

- an EncryptionProvider that wraps an integer into an opaque Handle, records
  who may have it decrypted (grants), and seals a handle's plaintext to a
  participant's public key on request (user decrypt);
- a DecryptionGateway that accepts a handle, hands back a request id, and
  later (fulfill) calls back with the cleartext and a proof that
  verify_and_decode() checks before anything trusts the value.

Plain* classes use identity "encryption" and a digest as proof, for tests and
local runs. SealedBox/Signed classes use PyNaCl: handles are sealed to a
coprocessor Curve25519 key and proofs are Ed25519 signatures.
"""

from __future__ import annotations
import asyncio
import base64
import os
from dataclasses import dataclass, asdict
from typing import Callable, Dict, List, Optional, Set, Tuple

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import constant_time
from nacl import public, signing
from nacl.exceptions import BadSignatureError, CryptoError
from nacl.public import SealedBox

import keys
from config import CRYPTO_CONFIG
from errors import InvalidDecryptionProof, Unauthorized, UnknownRequest, SantaError

DecryptionCallback = Callable[[int, bytes, bytes], int]


@dataclass(frozen=True)
class Handle:
    """Opaque encrypted value: an id plus provider-specific base64 ciphertext."""
    handle_id: str
    ciphertext_b64: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "Handle":
        return cls(handle_id=data["handle_id"], ciphertext_b64=data["ciphertext_b64"])


# ---------------------------
# Encryption providers
# ---------------------------

class EncryptionProvider:
    """Wraps plaintexts into handles and tracks decrypt-eligibility grants."""

    def __init__(self):
        self.grants: Dict[str, Set[str]] = {}

    def wrap(self, plaintext: int) -> Handle:
        raise NotImplementedError

    def decrypt_word(self, handle: Handle) -> bytes:
        """Cleartext word behind a handle. Only gateways call this."""
        raise NotImplementedError

    def grant(self, handle: Handle, identity: str) -> None:
        self.grants.setdefault(handle.handle_id, set()).add(identity)

    def is_granted(self, handle: Handle, identity: str) -> bool:
        return identity in self.grants.get(handle.handle_id, set())

    def forget(self, handle: Handle) -> None:
        self.grants.pop(handle.handle_id, None)

    def serialize(self, handle: Handle) -> str:
        """Transport handle: what goes over the wire to a gateway or a client."""
        return "0x" + handle.handle_id

    def reencrypt(self, handle: Handle, identity: str, public_key_b64: str) -> str:
        """
        Seal the handle's cleartext word to the Ed25519 verify key of a granted
        identity. Returns base64 ciphertext that keys.open_with_password() opens.
        """
        if not self.is_granted(handle, identity):
            raise Unauthorized(f"{identity} may not decrypt handle {self.serialize(handle)}")
        return keys.seal_for_verify_key(public_key_b64, self.decrypt_word(handle))

    @staticmethod
    def _new_handle_id() -> str:
        return os.urandom(16).hex()


class PlainEncryptionProvider(EncryptionProvider):
    """Identity encryption: the ciphertext is the base64 cleartext word."""

    def wrap(self, plaintext: int) -> Handle:
        word = keys.encode_word(plaintext)
        return Handle(self._new_handle_id(), base64.b64encode(word).decode("ascii"))

    def decrypt_word(self, handle: Handle) -> bytes:
        return base64.b64decode(handle.ciphertext_b64)


class SealedBoxEncryptionProvider(EncryptionProvider):
    """Handles are SealedBox ciphertexts under the coprocessor's Curve25519 key."""

    def __init__(self, private_key: public.PrivateKey):
        super().__init__()
        self._private_key = private_key
        self.public_key = private_key.public_key

    @classmethod
    def from_secret(cls, secret: str) -> "SealedBoxEncryptionProvider":
        private_key, _public_key = keys.curve25519_keypair_from_seed(
            keys.derive_seed_from_password(secret)
        )
        return cls(private_key)

    def wrap(self, plaintext: int) -> Handle:
        sealed = SealedBox(self.public_key).encrypt(keys.encode_word(plaintext))
        return Handle(self._new_handle_id(), base64.b64encode(sealed).decode("ascii"))

    def decrypt_word(self, handle: Handle) -> bytes:
        try:
            return SealedBox(self._private_key).decrypt(base64.b64decode(handle.ciphertext_b64))
        except CryptoError as e:
            raise ValueError(f"handle {self.serialize(handle)} was not sealed by this coprocessor") from e


# ---------------------------
# Decryption gateways
# ---------------------------

class DecryptionGateway:
    """
    Off-chain decryption service.

    submit() queues a handle and returns a request id; fulfill() decrypts it
    later and delivers (request_id, cleartexts, proof) to the callback given
    at submit time. Requests may be fulfilled in any order, or never.
    """

    def __init__(self, encryption: EncryptionProvider):
        self.encryption = encryption
        self.pending: Dict[int, Tuple[Handle, DecryptionCallback]] = {}
        self._next_request_id = 1

    # --- proof scheme, per implementation ---

    def _prove(self, message: bytes) -> bytes:
        raise NotImplementedError

    def _check(self, message: bytes, proof: bytes) -> bool:
        raise NotImplementedError

    @staticmethod
    def _message(request_id: int, handle_id: str, cleartexts: bytes) -> bytes:
        # request id || handle id || cleartexts: a proof only fits the handle it decrypted
        return request_id.to_bytes(32, "big") + bytes.fromhex(handle_id) + cleartexts

    # --- request side ---

    def submit(self, handle: Handle, callback: DecryptionCallback, requester: str) -> int:
        """Queue a decryption. The requester must hold a grant on the handle."""
        if not self.encryption.is_granted(handle, requester):
            raise Unauthorized(f"{requester} may not request decryption of {self.encryption.serialize(handle)}")
        request_id = self._next_request_id
        self._next_request_id += 1
        self.pending[request_id] = (handle, callback)
        return request_id

    @property
    def next_request_id(self) -> int:
        return self._next_request_id

    def cancel(self, request_id: int) -> bool:
        """Forget a pending request. Returns False if it was not pending."""
        return self.pending.pop(request_id, None) is not None

    def advance_past(self, request_id: int) -> None:
        """Never hand out request_id or anything below it again."""
        self._next_request_id = max(self._next_request_id, request_id + 1)

    def fulfill(self, request_id: int) -> int:
        """Decrypt one pending request and deliver it to its callback."""
        if request_id not in self.pending:
            raise UnknownRequest(f"gateway has no pending request {request_id}")
        handle, callback = self.pending.pop(request_id)
        cleartexts = self.encryption.decrypt_word(handle)
        proof = self._prove(self._message(request_id, handle.handle_id, cleartexts))
        print(f"[Gateway] Delivering request {request_id} ({self.encryption.serialize(handle)})")
        return callback(request_id, cleartexts, proof)

    def fulfill_all(self) -> List[int]:
        """Fulfill every pending request; a rejected callback does not stop the rest."""
        results = []
        for request_id in sorted(self.pending):
            try:
                results.append(self.fulfill(request_id))
            except SantaError as e:
                print(f"[Gateway] Warning: callback for request {request_id} rejected: {e}")
        return results

    async def relay(self, delay: float = 0.0) -> List[int]:
        """Fulfill everything pending after a delay, like a gateway polling for work."""
        await asyncio.sleep(delay)
        return self.fulfill_all()

    # --- callback side ---

    def verify_and_decode(self, request_id: int, handle_id: str, cleartexts: bytes, proof: bytes) -> int:
        """Check the proof for (request_id, handle_id, cleartexts) and decode the cleartext word."""
        if not self._check(self._message(request_id, handle_id, cleartexts), proof):
            raise InvalidDecryptionProof(f"proof for request {request_id} does not verify")
        try:
            return keys.decode_word(cleartexts)
        except ValueError as e:
            raise InvalidDecryptionProof(str(e)) from e


class PlainGateway(DecryptionGateway):
    """Proof is a SHA-256 digest of the message: integrity only, no authenticity."""

    def _prove(self, message: bytes) -> bytes:
        digest = hashes.Hash(hashes.SHA256())
        digest.update(message)
        return digest.finalize()

    def _check(self, message: bytes, proof: bytes) -> bool:
        return constant_time.bytes_eq(self._prove(message), proof)


class SignedGateway(DecryptionGateway):
    """Proof is an Ed25519 signature by the gateway key over the message."""

    def __init__(self, encryption: EncryptionProvider, signing_key: signing.SigningKey):
        super().__init__(encryption)
        self._signing_key = signing_key
        self.verify_key = signing_key.verify_key

    @classmethod
    def from_secret(cls, encryption: EncryptionProvider, secret: str) -> "SignedGateway":
        return cls(encryption, keys.signing_key_from_password(secret))

    def _prove(self, message: bytes) -> bytes:
        return self._signing_key.sign(message).signature

    def _check(self, message: bytes, proof: bytes) -> bool:
        try:
            self.verify_key.verify(message, proof)
        except (BadSignatureError, ValueError):
            return False
        return True


def make_providers(kind: Optional[str] = None) -> Tuple[EncryptionProvider, DecryptionGateway]:
    """Build the (encryption, gateway) pair named by CRYPTO_CONFIG["provider"]."""
    kind = kind or CRYPTO_CONFIG["provider"]
    if kind == "plain":
        encryption = PlainEncryptionProvider()
        return encryption, PlainGateway(encryption)
    if kind == "sealedbox":
        coprocessor_secret = CRYPTO_CONFIG["coprocessor_secret"]
        gateway_secret = CRYPTO_CONFIG["gateway_secret"]
        if coprocessor_secret:
            encryption = SealedBoxEncryptionProvider.from_secret(coprocessor_secret)
        else:
            print("[Santa] Warning: SANTA_COPROCESSOR_SECRET not set, using a one-off coprocessor key")
            encryption = SealedBoxEncryptionProvider(public.PrivateKey.generate())
        if gateway_secret:
            gateway = SignedGateway.from_secret(encryption, gateway_secret)
        else:
            print("[Santa] Warning: SANTA_GATEWAY_SECRET not set, using a one-off gateway key")
            gateway = SignedGateway(encryption, signing.SigningKey.generate())
        return encryption, gateway
    raise ValueError(f"unknown provider {kind!r}; expected 'plain' or 'sealedbox'")
