#!/usr/bin/env python3
"""
Secret Santa with encrypted matches.

Workflow:
- join(identity): participants enter the pool in order; position i is index i.
- generate_matches(admin): draws a derangement of the indices (nobody gets
  themselves), wraps each participant's match index as an opaque encrypted
  handle, and grants decrypt-eligibility to the coordinator and to the owner.
- request_match(identity): submits the caller's handle to the decryption
  gateway and records the returned request id.
- on_decryption_callback(request_id, cleartexts, proof): the gateway's answer.
  The proof is checked before the cleartext is trusted, and each request id is
  consumed at most once.
- reencrypt_match(identity): alternatively, have the handle sealed to the
  public key the participant registered, and open it locally with
  keys.open_with_password().
- reset(admin): back to an open pool, next epoch.

Notes:
- Randomness comes from MixedEntropySource unless a RandomSource is injected.
  It mixes time, OS entropy and the caller, so it is not safe against a
  party who can predict or steer those inputs.
- Callbacks arrive whenever the gateway gets to them, in any order. Poll
  is_request_processed()/revealed_match(), subscribe to MatchRevealed, or
  await wait_for_reveal().
"""

from __future__ import annotations
import asyncio
import base64
import threading
import time
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from config import SANTA_CONFIG
from derangement import RandomSource, MixedEntropySource, generate_derangement
from errors import (
    AlreadyAssigned,
    AlreadyProcessed,
    AlreadyStarted,
    DuplicateParticipant,
    InsufficientParticipants,
    MissingPublicKey,
    NotAParticipant,
    NotAssignedYet,
    Unauthorized,
    UnknownRequest,
)
from providers import DecryptionGateway, EncryptionProvider, Handle, make_providers
from store import MemoryStore


class GameStatus(str, Enum):
    OPEN = "open"
    ASSIGNED = "assigned"


# ---------------------------
# Notifications
# ---------------------------

@dataclass(frozen=True)
class Event:
    @property
    def name(self) -> str:
        return type(self).__name__

    def args(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ParticipantJoined(Event):
    participant: str
    total_count: int


@dataclass(frozen=True)
class MatchesGenerated(Event):
    participant_count: int


@dataclass(frozen=True)
class MatchRequested(Event):
    participant: str
    request_id: int


@dataclass(frozen=True)
class MatchRevealed(Event):
    participant: str
    match_index: int


@dataclass
class PendingRequest:
    requester: str
    epoch: int
    created_at: float
    handle_id: str
    consumed: bool = False
    match_index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingRequest":
        return cls(**data)


# ---------------------------
# Coordinator
# ---------------------------

class SecretSanta:
    """
    Participant registry, encrypted match assignment and decryption request
    ledger for one pool.

    Every mutating call holds the same lock, so calls are applied one at a
    time even when the HTTP server runs them on worker threads.
    """

    def __init__(
        self,
        admin: Optional[str] = None,
        encryption: Optional[EncryptionProvider] = None,
        gateway: Optional[DecryptionGateway] = None,
        *,
        min_participants: Optional[int] = None,
        strategy: Optional[str] = None,
        source: Optional[RandomSource] = None,
        purge_on_reset: Optional[bool] = None,
        request_ttl: Optional[float] = None,
        store=None,
        identity: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        if (encryption is None) != (gateway is None):
            raise ValueError("pass both encryption and gateway, or neither")
        if encryption is None:
            encryption, gateway = make_providers()

        self.admin = admin or SANTA_CONFIG["admin"]
        self.identity = identity or SANTA_CONFIG["coordinator_identity"]
        self.encryption = encryption
        self.gateway = gateway
        self.min_participants = min_participants if min_participants is not None else SANTA_CONFIG["min_participants"]
        if self.min_participants < 2:
            raise ValueError("min_participants must be at least 2")
        self.strategy = strategy or SANTA_CONFIG["derangement_strategy"]
        self.source = source
        self.purge_on_reset = SANTA_CONFIG["purge_on_reset"] if purge_on_reset is None else purge_on_reset
        self.request_ttl = request_ttl if request_ttl is not None else SANTA_CONFIG["request_ttl"]
        self.store = store if store is not None else MemoryStore()
        self.clock = clock

        self._lock = threading.RLock()
        self.participants: List[str] = []
        self.members: set = set()
        self.public_keys: Dict[str, str] = {}
        self.status = GameStatus.OPEN
        self.epoch = 0
        self.matches: Dict[str, Handle] = {}
        self.requests: Dict[int, PendingRequest] = {}

        self.events: List[Event] = []
        self._subscribers: List[Callable[[Event], None]] = []
        self._waiters: Dict[int, Tuple[asyncio.AbstractEventLoop, asyncio.Future]] = {}

        snapshot = self.store.load()
        if snapshot:
            self._restore(snapshot)

    # ---------------------------
    # Notifications
    # ---------------------------

    def subscribe(self, callback: Callable[[Event], None]) -> None:
        self._subscribers.append(callback)

    def _emit(self, event: Event) -> None:
        """Record and deliver a notification. Call after state is saved."""
        self.events.append(event)
        for callback in self._subscribers:
            try:
                callback(event)
            except Exception as e:
                print(f"[Santa] Warning: subscriber failed on {event.name}: {e!r}")

    def events_for(self, name: Optional[str] = None, participant: Optional[str] = None) -> List[Event]:
        """Past notifications, optionally filtered by event name and participant."""
        return [
            e for e in self.events
            if (name is None or e.name == name) and (participant is None or getattr(e, "participant", None) == participant)
        ]

    # ---------------------------
    # Pool management
    # ---------------------------

    def _require_admin(self, caller: str) -> None:
        if caller != self.admin:
            raise Unauthorized(f"{caller} is not the admin")

    def join(self, caller: str, public_key_b64: Optional[str] = None) -> int:
        """Add caller to the pool. Returns the caller's participant index."""
        with self._lock:
            if self.status is GameStatus.ASSIGNED:
                raise AlreadyStarted("matches already generated")
            if caller in self.members:
                raise DuplicateParticipant(f"{caller} already joined")
            if public_key_b64 is not None and len(base64.b64decode(public_key_b64, validate=True)) != 32:
                raise ValueError("public key must be a base64 32-byte Ed25519 verify key")

            self.participants.append(caller)
            self.members.add(caller)
            if public_key_b64 is not None:
                self.public_keys[caller] = public_key_b64

            self._save()
            self._emit(ParticipantJoined(caller, len(self.participants)))
            return len(self.participants) - 1

    def generate_matches(self, caller: str) -> None:
        """
        Draw a derangement over the current participants and store each
        participant's match index as an encrypted handle only they (and the
        coordinator, to relay decryption requests) may decrypt.
        """
        with self._lock:
            self._require_admin(caller)
            if self.status is GameStatus.ASSIGNED:
                raise AlreadyAssigned("matches already generated")
            n = len(self.participants)
            if n < self.min_participants:
                raise InsufficientParticipants(
                    f"need at least {self.min_participants} participants, have {n}"
                )

            source = self.source or MixedEntropySource(caller=caller, salt=self.epoch.to_bytes(8, "big"))
            assignment = generate_derangement(n, source, self.strategy)

            for participant, match_index in zip(self.participants, assignment):
                handle = self.encryption.wrap(match_index)
                self.encryption.grant(handle, self.identity)
                self.encryption.grant(handle, participant)
                self.matches[participant] = handle

            self.status = GameStatus.ASSIGNED
            self._save()
            self._emit(MatchesGenerated(n))

    def reset(self, caller: str) -> None:
        """Reopen the pool for a new epoch."""
        with self._lock:
            self._require_admin(caller)
            self.members.clear()
            self.participants.clear()
            self.public_keys.clear()
            self.status = GameStatus.OPEN
            self.epoch += 1

            if self.purge_on_reset:
                for handle in self.matches.values():
                    self.encryption.forget(handle)
                self.matches.clear()
                for request_id in list(self.requests):
                    self._drop_request(request_id, "pool was reset")

            print(f"[Santa] Pool reset, epoch {self.epoch}")
            self._save()

    # ---------------------------
    # Decryption requests
    # ---------------------------

    def _require_assigned_participant(self, caller: str) -> Handle:
        if self.status is not GameStatus.ASSIGNED:
            raise NotAssignedYet("matches not generated yet")
        if caller not in self.members:
            raise NotAParticipant(f"{caller} has not joined")
        return self.matches[caller]

    def request_match(self, caller: str) -> int:
        """Ask the gateway to decrypt the caller's match. Returns the request id."""
        with self._lock:
            handle = self._require_assigned_participant(caller)
            request_id = self.gateway.submit(handle, self.on_decryption_callback, self.identity)
            self.requests[request_id] = PendingRequest(caller, self.epoch, self.clock(), handle.handle_id)
            self._save()
            self._emit(MatchRequested(caller, request_id))
            return request_id

    def on_decryption_callback(self, request_id: int, cleartexts: bytes, proof: bytes) -> int:
        """
        Gateway callback. Rejects consumed and unknown ids, verifies the proof,
        then marks the request consumed and reveals the index to its requester.
        """
        with self._lock:
            entry = self.requests.get(request_id)
            if entry is not None and entry.consumed:
                raise AlreadyProcessed(f"request {request_id} already processed")
            if entry is None:
                raise UnknownRequest(f"no pending request {request_id}")

            match_index = self.gateway.verify_and_decode(request_id, entry.handle_id, cleartexts, proof)

            entry.consumed = True
            entry.match_index = match_index
            self._save()
            self._resolve_waiter(request_id, result=match_index)
            self._emit(MatchRevealed(entry.requester, match_index))
            return match_index

    def reencrypt_match(self, caller: str) -> str:
        """Caller's match index sealed to their registered public key (base64)."""
        with self._lock:
            handle = self._require_assigned_participant(caller)
            public_key_b64 = self.public_keys.get(caller)
            if public_key_b64 is None:
                raise MissingPublicKey(f"{caller} joined without a public key")
            return self.encryption.reencrypt(handle, caller, public_key_b64)

    def expire_pending(self, max_age: Optional[float] = None) -> List[int]:
        """
        Drop unanswered requests older than max_age seconds (default
        request_ttl). Returns the dropped request ids.
        """
        max_age = self.request_ttl if max_age is None else max_age
        if max_age is None:
            return []
        with self._lock:
            now = self.clock()
            expired = [
                request_id for request_id, entry in self.requests.items()
                if not entry.consumed and now - entry.created_at > max_age
            ]
            for request_id in expired:
                self._drop_request(request_id, "request expired")
            if expired:
                self._save()
            return expired

    def _drop_request(self, request_id: int, reason: str) -> None:
        self.requests.pop(request_id, None)
        self.gateway.cancel(request_id)
        self._resolve_waiter(request_id, error=UnknownRequest(f"request {request_id} dropped: {reason}"))

    # ---------------------------
    # Waiting for callbacks
    # ---------------------------

    async def wait_for_reveal(self, request_id: int, timeout: Optional[float] = None) -> int:
        """Wait until the gateway's callback for request_id has been accepted."""
        with self._lock:
            entry = self.requests.get(request_id)
            if entry is None:
                raise UnknownRequest(f"no pending request {request_id}")
            if entry.consumed:
                return entry.match_index
            loop = asyncio.get_running_loop()
            waiter = self._waiters.get(request_id)
            if waiter is None or waiter[0] is not loop:
                waiter = (loop, loop.create_future())
                self._waiters[request_id] = waiter
            _loop, future = waiter
        return await asyncio.wait_for(asyncio.shield(future), timeout)

    def _resolve_waiter(self, request_id: int, result: Optional[int] = None,
                        error: Optional[Exception] = None) -> None:
        waiter = self._waiters.pop(request_id, None)
        if waiter is None:
            return
        loop, future = waiter
        if loop.is_closed():
            return

        def settle():
            if future.done():
                return
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(result)

        loop.call_soon_threadsafe(settle)

    # ---------------------------
    # Read accessors
    # ---------------------------

    @property
    def matches_generated(self) -> bool:
        return self.status is GameStatus.ASSIGNED

    @property
    def participant_count(self) -> int:
        return len(self.participants)

    def get_participant(self, index: int) -> str:
        if not 0 <= index < len(self.participants):
            raise IndexError(f"no participant at index {index}")
        return self.participants[index]

    def get_all_participants(self) -> List[str]:
        return list(self.participants)

    def has_joined(self, identity: str) -> bool:
        return identity in self.members

    def get_match_handle(self, identity: str) -> Optional[Handle]:
        return self.matches.get(identity)

    def is_request_processed(self, request_id: int) -> bool:
        entry = self.requests.get(request_id)
        return entry is not None and entry.consumed

    def revealed_match(self, request_id: int) -> Optional[int]:
        entry = self.requests.get(request_id)
        return entry.match_index if entry is not None and entry.consumed else None

    # ---------------------------
    # Persistence
    # ---------------------------

    def snapshot(self) -> Dict[str, Any]:
        return {
            "admin": self.admin,
            "status": self.status.value,
            "epoch": self.epoch,
            "participants": list(self.participants),
            "public_keys": dict(self.public_keys),
            "matches": {p: h.to_dict() for p, h in self.matches.items()},
            "requests": {str(rid): entry.to_dict() for rid, entry in self.requests.items()},
            "next_request_id": self.gateway.next_request_id,
        }

    def _save(self) -> None:
        self.store.save(self.snapshot())

    def _restore(self, snapshot: Dict[str, Any]) -> None:
        if snapshot.get("admin", self.admin) != self.admin:
            raise ValueError(f"stored pool belongs to admin {snapshot['admin']!r}")
        self.status = GameStatus(snapshot["status"])
        self.epoch = snapshot["epoch"]
        self.participants = list(snapshot["participants"])
        self.members = set(self.participants)
        self.public_keys = dict(snapshot.get("public_keys", {}))
        self.matches = {p: Handle.from_dict(h) for p, h in snapshot["matches"].items()}
        self.requests = {int(rid): PendingRequest.from_dict(e) for rid, e in snapshot["requests"].items()}

        # Grants live with the encryption provider; re-apply them.
        for participant, handle in self.matches.items():
            self.encryption.grant(handle, self.identity)
            self.encryption.grant(handle, participant)
        # Request ids are never reused, even after a purging reset.
        self.gateway.advance_past(snapshot.get("next_request_id", 1) - 1)
        if self.requests:
            self.gateway.advance_past(max(self.requests))
