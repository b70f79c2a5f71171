"""Seeded wheel spins.

The winner is a pure function of (seed, number of options): a ``random.Random``
seeded with the string yields one uniform draw in [0, 1) which is mapped to
``floor(draw * n)``. String seeds are hashed with SHA-512 by ``random``, so
the same seed picks the same slot in every process.

The rotation is computed only after the winner is fixed and never feeds back
into selection.
"""

from __future__ import annotations

import enum
import math
import random
import secrets
import string
from typing import List, Optional, Sequence

from errors import InsufficientOptions, ValidationError
from models import Place, SpinOutcome

MIN_OPTIONS = 2
DEFAULT_ROTATION = 1.2  # radians, resting angle of a fresh wheel
DEFAULT_EXTRA_TURNS = 5
TWO_PI = 2 * math.pi
POINTER_ANGLE = 0.0

SEED_ALPHABET = string.ascii_lowercase + string.digits


def generate_seed(length: int = 8) -> str:
    return "".join(secrets.choice(SEED_ALPHABET) for _ in range(length))


def draw(seed: str) -> float:
    return random.Random(seed).random()


def pick_winner(count: int, seed: str) -> int:
    if count < MIN_OPTIONS:
        raise InsufficientOptions(count, MIN_OPTIONS)
    index = math.floor(draw(seed) * count)
    return min(index, count - 1)


def compute_rotation(
    winner_index: int,
    count: int,
    prior_rotation: float = DEFAULT_ROTATION,
    extra_turns: int = DEFAULT_EXTRA_TURNS,
) -> float:
    """Absolute wheel rotation that parks the winner's slice center under the pointer.

    Slice ``i`` spans ``[i, i + 1) * 2π/n``; after rotating by ``r`` its center
    sits at ``center + r``, which must equal the pointer angle modulo 2π.
    """
    if count <= 0 or not 0 <= winner_index < count:
        raise ValueError(f"winner index {winner_index} outside {count} slices")
    slice_angle = TWO_PI / count
    center = (winner_index + 0.5) * slice_angle
    target = (POINTER_ANGLE - center) % TWO_PI
    delta = (target - prior_rotation) % TWO_PI
    return prior_rotation + max(0, int(extra_turns)) * TWO_PI + delta


def spin(
    candidates: Sequence[Place],
    seed: Optional[str] = None,
    *,
    prior_rotation: float = DEFAULT_ROTATION,
    extra_turns: int = DEFAULT_EXTRA_TURNS,
) -> SpinOutcome:
    if len(candidates) < MIN_OPTIONS:
        raise InsufficientOptions(len(candidates), MIN_OPTIONS)
    seed = seed or generate_seed()
    index = pick_winner(len(candidates), seed)
    rotation = compute_rotation(index, len(candidates), prior_rotation, extra_turns)
    return SpinOutcome(seed=seed, winner_index=index, winner=candidates[index], rotation=rotation)


def verify_selection(options: Sequence[Place], seed: str, selected_id: str) -> int:
    """Check a submitted winner belongs to the options and replays from the seed."""
    ids = [p.place_id for p in options]
    if selected_id not in ids:
        raise ValidationError("selectedId must be one of the options")
    index = pick_winner(len(options), seed)
    if ids[index] != selected_id:
        raise ValidationError("selectedId does not match the seeded draw")
    return index


class WheelState(str, enum.Enum):
    IDLE = "idle"
    SPINNING = "spinning"
    SETTLED = "settled"


class Wheel:
    """Options on the wheel plus the Idle -> Spinning -> Settled cycle."""

    def __init__(
        self,
        options: Optional[Sequence[Place]] = None,
        *,
        rotation: float = DEFAULT_ROTATION,
        extra_turns: int = DEFAULT_EXTRA_TURNS,
    ) -> None:
        self._options: List[Place] = []
        self.rotation = rotation
        self.extra_turns = extra_turns
        self.state = WheelState.IDLE
        self.outcome: Optional[SpinOutcome] = None
        for place in options or []:
            self.add_option(place)

    @property
    def options(self) -> List[Place]:
        return list(self._options)

    def add_option(self, place: Place) -> bool:
        if any(p.place_id == place.place_id for p in self._options):
            return False
        self._options.append(place)
        return True

    def remove_option(self, place_id: str) -> None:
        self._options = [p for p in self._options if p.place_id != place_id]
        if self.outcome is not None and self.outcome.winner.place_id == place_id:
            self.reset()

    def clear(self) -> None:
        self._options = []
        self.reset()

    def spin(self, seed: Optional[str] = None) -> SpinOutcome:
        if self.state is not WheelState.IDLE:
            raise RuntimeError(f"wheel is {self.state.value}; reset before spinning again")
        if len(self._options) < MIN_OPTIONS:
            raise InsufficientOptions(len(self._options), MIN_OPTIONS)
        self.state = WheelState.SPINNING
        outcome = spin(self._options, seed, prior_rotation=self.rotation, extra_turns=self.extra_turns)
        self.rotation = outcome.rotation
        self.outcome = outcome
        self.state = WheelState.SETTLED
        return outcome

    def reset(self) -> None:
        self.state = WheelState.IDLE
        self.outcome = None
