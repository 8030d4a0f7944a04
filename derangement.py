"""
Random derangements: permutations of 0..n-1 in which nobody draws themselves.

Two strategies are available:

- "shuffle": Fisher-Yates shuffle of 0..n-1, rejected and redrawn while it has
  a fixed point. About 1/e of shuffles are derangements, so the attempt limit
  is a safety valve rather than an expected path.
- "backtrack": fill positions one by one from a randomly ordered candidate
  list, backtracking on dead ends; when the step budget runs out, return a
  closed-form derangement instead.

Randomness comes from an injected RandomSource so tests can replay fixed or
adversarial sequences.
"""

from __future__ import annotations
import itertools
import os
import random
import time
from typing import Iterable, List, Optional, Sequence

from cryptography.hazmat.primitives import hashes

from config import SANTA_CONFIG
from errors import DerangementGenerationFailed

STRATEGIES = ("shuffle", "backtrack")


# ---------------------------
# Entropy sources
# ---------------------------

class RandomSource:
    """Anything with next_uint() -> non-negative int."""

    def next_uint(self) -> int:
        raise NotImplementedError


class SystemRandomSource(RandomSource):
    """OS entropy, 256 bits per draw."""

    def __init__(self):
        self._rng = random.SystemRandom()

    def next_uint(self) -> int:
        return self._rng.getrandbits(256)


class MixedEntropySource(RandomSource):
    """
    SHA-256 over current time, host entropy, caller identity, a salt and a draw
    counter, mirroring how a contract seeds its shuffle from block data.

    Anyone who controls or predicts these inputs can bias the result; use it
    for demos, not for anything adversarial.
    """

    def __init__(self, caller: str = "", salt: bytes = b""):
        self.caller = caller
        self.salt = salt
        self.counter = 0

    def next_uint(self) -> int:
        digest = hashes.Hash(hashes.SHA256())
        digest.update(time.time_ns().to_bytes(16, "big"))
        digest.update(os.urandom(32))
        digest.update(self.caller.encode())
        digest.update(self.salt)
        digest.update(self.counter.to_bytes(16, "big"))
        self.counter += 1
        return int.from_bytes(digest.finalize(), "big")


class SequenceRandomSource(RandomSource):
    """Replays the given values forever (cycling)."""

    def __init__(self, values: Iterable[int]):
        values = list(values)
        if not values:
            raise ValueError("SequenceRandomSource needs at least one value")
        self._values = itertools.cycle(values)

    def next_uint(self) -> int:
        return next(self._values)


# ---------------------------
# Helpers
# ---------------------------

def _check_size(n: int) -> None:
    if n < 2:
        raise ValueError(f"no derangement exists for n={n}; need at least 2")


def is_derangement(seq: Sequence[int]) -> bool:
    """True if seq is a permutation of 0..len-1 without fixed points."""
    n = len(seq)
    return sorted(seq) == list(range(n)) and all(v != i for i, v in enumerate(seq))


def shuffle_in_place(items: List[int], source: RandomSource) -> List[int]:
    """Fisher-Yates shuffle driven by source."""
    for i in range(len(items) - 1, 0, -1):
        j = source.next_uint() % (i + 1)
        items[i], items[j] = items[j], items[i]
    return items


def closed_form_derangement(n: int) -> List[int]:
    """
    Deterministic derangement: swap for n == 2, the 3-cycle (1, 2, 0) for
    n == 3, and the single n-cycle i -> i + 1 for n >= 4.
    """
    _check_size(n)
    if n == 2:
        return [1, 0]
    if n == 3:
        return [1, 2, 0]
    return [i + 1 for i in range(n - 1)] + [0]


# ---------------------------
# Strategies
# ---------------------------

def shuffle_derangement(n: int, source: RandomSource,
                        max_attempts: int = SANTA_CONFIG["max_attempts"]) -> List[int]:
    """Reshuffle until the permutation has no fixed point, at most max_attempts times."""
    _check_size(n)
    for _attempt in range(max_attempts):
        candidate = shuffle_in_place(list(range(n)), source)
        if all(v != i for i, v in enumerate(candidate)):
            return candidate
    raise DerangementGenerationFailed(
        f"no derangement of {n} found in {max_attempts} attempts"
    )


def backtracking_derangement(n: int, source: RandomSource,
                             step_budget: int = SANTA_CONFIG["backtrack_step_budget"]) -> List[int]:
    """
    Assign each position a value from its shuffled candidate list (never its own
    index, never a used value), stepping back to the previous position on a
    dead end. Falls back to closed_form_derangement() once step_budget
    placements have been tried.
    """
    _check_size(n)
    result = [-1] * n
    used = [False] * n
    candidates: List[Optional[List[int]]] = [None] * n
    steps = 0
    pos = 0

    while 0 <= pos < n:
        if candidates[pos] is None:
            candidates[pos] = shuffle_in_place([v for v in range(n) if v != pos], source)
        if result[pos] != -1:
            used[result[pos]] = False
            result[pos] = -1

        steps += 1
        if steps > step_budget:
            return closed_form_derangement(n)

        remaining = candidates[pos]
        while remaining:
            value = remaining.pop()
            if not used[value]:
                result[pos] = value
                used[value] = True
                break

        if result[pos] != -1:
            pos += 1
        else:
            candidates[pos] = None
            pos -= 1

    if pos < 0:
        return closed_form_derangement(n)
    return result


def generate_derangement(n: int, source: Optional[RandomSource] = None,
                         strategy: str = SANTA_CONFIG["derangement_strategy"], *,
                         max_attempts: int = SANTA_CONFIG["max_attempts"],
                         step_budget: int = SANTA_CONFIG["backtrack_step_budget"]) -> List[int]:
    """Derangement of 0..n-1 using the named strategy."""
    _check_size(n)
    if source is None:
        source = SystemRandomSource()
    if strategy == "shuffle":
        return shuffle_derangement(n, source, max_attempts)
    if strategy == "backtrack":
        return backtracking_derangement(n, source, step_budget)
    raise ValueError(f"unknown derangement strategy {strategy!r}; expected one of {STRATEGIES}")
