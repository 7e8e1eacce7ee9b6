"""ADSR (attack-decay-sustain-release) envelopes.

An envelope is computed in whole samples from millisecond durations.  The note
body (attack, decay, sustain) lasts for the note's duration; the release
ramp is played after it, which is why an envelope can be longer than the note
it shapes.
"""

from __future__ import annotations
from typing import *

from enum import Enum
import math

from attrs import define, setters

from .refcount import RefCounted


MAXTIME = 100_000_000  # samples; longer envelope phases are shortened to this
RATE_CD = 44100
RATE_DVD = 48000
SUPPORTED_RATES = (RATE_CD, RATE_DVD)
CURVE_K = 5.0  # steepness of exponential ramps


class Curve(Enum):
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


def ms_to_samples(ms: float, rate: int) -> int:
    samples = rate * (ms / 1000)
    if not math.isfinite(samples):
        return MAXTIME
    return max(0, min(MAXTIME, round(samples)))


@define(eq=False, on_setattr=setters.frozen)
class Envelope(RefCounted):
    """Use `create()` to build one from milliseconds."""

    i_max: float
    i_min: float
    attack: int  # all durations in samples
    decay: int
    sustain: float
    release: int
    rate: int
    curve: Curve = Curve.LINEAR

    def __attrs_post_init__(self) -> None:
        self._init_refcount()

    def extra_samples(self) -> int:
        """How many samples past the note's duration are still audible."""
        return self.release

    def length(self, dur: int) -> int:
        if dur < 1:
            raise ValueError(f"note duration must be at least one sample, got {dur}")
        return dur + self.extra_samples()

    def intensity(self, t: int, dur: int) -> float:
        """Return the envelope multiplier at sample `t` of a note `dur` samples long."""
        if t < 0 or t >= self.length(dur):
            return 0.0

        if t < dur:
            return self._body(t)

        # The release starts from the last level the note body reached, also when
        # the note was too short to finish its attack or decay.
        return self._ramp(self._body(dur - 1), 0.0, t - dur, self.release)

    def _body(self, t: int) -> float:
        if t < self.attack:
            return self._ramp(self.i_min, self.i_max, t, self.attack)

        t -= self.attack
        level = self.sustain * self.i_max
        if t < self.decay:
            return self._ramp(self.i_max, level, t, self.decay)

        return level

    def _ramp(self, start: float, end: float, elapsed: int, span: int) -> float:
        progress = elapsed / span
        if self.curve is Curve.EXPONENTIAL:
            progress = (1 - math.exp(-CURVE_K * progress)) / (1 - math.exp(-CURVE_K))
        return start + (end - start) * progress


def create(
    i_max: float,
    i_min: float,
    attack_ms: float,
    decay_ms: float,
    sustain: float,
    release_ms: float,
    rate: int,
    curve: Curve = Curve.LINEAR,
) -> Envelope:
    """Return a new envelope with a reference count of one.

    When `sustain` is 1.0, the decay is meaningless and set to zero.  When
    `sustain` is 0.0, there is nothing to release and the release is set to zero.
    """
    values = {
        "i_max": i_max,
        "i_min": i_min,
        "attack": attack_ms,
        "decay": decay_ms,
        "sustain": sustain,
        "release": release_ms,
    }
    for name, value in values.items():
        if not math.isfinite(value):
            raise ValueError(f"envelope {name} must be finite, got {value}")

    if not 0.0 < i_max <= 1.0:
        raise ValueError(f"i_max must be in (0.0, 1.0], got {i_max}")
    if not 0.0 <= i_min <= i_max:
        raise ValueError(f"i_min must be in [0.0, i_max], got {i_min}")
    if not 0.0 <= sustain <= 1.0:
        raise ValueError(f"sustain must be in [0.0, 1.0], got {sustain}")
    for name in ("attack", "decay", "release"):
        if values[name] < 0.0:
            raise ValueError(f"envelope {name} can't be negative, got {values[name]}")
    if rate not in SUPPORTED_RATES:
        raise ValueError(f"unsupported sample rate {rate}, use one of {SUPPORTED_RATES}")

    if sustain == 1.0:
        decay_ms = 0.0
    if sustain == 0.0:
        release_ms = 0.0

    return Envelope(
        i_max=i_max,
        i_min=i_min,
        attack=ms_to_samples(attack_ms, rate),
        decay=ms_to_samples(decay_ms, rate),
        sustain=sustain,
        release=ms_to_samples(release_ms, rate),
        rate=rate,
        curve=Curve(curve),
    )
