"""Per-voice instance data for generator graphs.

A bound generator graph is the "class" shared by every voice playing an
instrument.  What changes while a voice renders lives here: one `OperatorData`
per operator slot handed out by `generator.bind()`, kept together in an
`Instances` arena owned by exactly one voice.
"""

from __future__ import annotations
from typing import *

import math
import random

from attrs import define, field


UNSTARTED = -1
SILENCED = -2


class CausalityError(RuntimeError):
    """A generator was invoked out of sample order."""


@define
class OperatorData:
    freq: float  # Hz; the note's frequency, before the operator's multiplier
    dur: int  # samples, excluding the envelope's release
    w: float = 0.0  # phase within the current wave cycle, [0.0, 1.0)
    value: float = 0.0  # the sample computed for time `t`
    t: int = UNSTARTED

    @property
    def silenced(self) -> bool:
        return self.t == SILENCED

    def check_time(self, t: int) -> None:
        """Only the current sample or the one right after it may be requested."""
        if t < 0:
            raise CausalityError(f"negative sample index {t}")
        if self.t == UNSTARTED or t == self.t or t == self.t + 1:
            return
        raise CausalityError(f"sample {t} requested after sample {self.t}")


def init_instance(freq: float, duration: int) -> OperatorData:
    if not math.isfinite(freq) or freq <= 0.0:
        raise ValueError(f"frequency must be finite and positive, got {freq}")
    if duration < 1:
        raise ValueError(f"duration must be at least one sample, got {duration}")
    return OperatorData(freq=freq, dur=duration)


@define
class Instances:
    """Arena of operator instance data for one voice, indexed by bound slot."""

    ops: List[OperatorData]
    rng: random.Random = field(factory=random.Random)

    @classmethod
    def create(
        cls, size: int, freq: float, duration: int, seed: Optional[int] = None
    ) -> Instances:
        if size < 1:
            raise ValueError(f"a bound generator has at least one operator, got {size}")
        return cls(
            ops=[init_instance(freq, duration) for _ in range(size)],
            rng=random.Random(seed),
        )

    def __len__(self) -> int:
        return len(self.ops)

    def __getitem__(self, slot: int) -> OperatorData:
        return self.ops[slot]


class Cursor:
    """The sample index a voice is rendering.

    Only moves forward one sample at a time, which is the order generator graphs
    must be invoked in.
    """

    __slots__ = ("_current",)

    def __init__(self) -> None:
        self._current = UNSTARTED

    def __repr__(self) -> str:
        return f"Cursor(current={self._current})"

    @property
    def current(self) -> int:
        return self._current

    def advance(self) -> int:
        self._current += 1
        return self._current
