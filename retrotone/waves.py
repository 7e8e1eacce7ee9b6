#!/usr/bin/env python3
"""Operator waveforms as functions of phase.

Phase `w` is normalized: 0.0 is the start of a wave cycle, 1.0 its end.  All
periodic waves are in phase with the sine.  Square, triangle and sawtooth waves
are band-limited: they are summed from sine harmonics, leaving out every
harmonic at or above the Nyquist limit.  They overshoot [-1.0, 1.0] slightly
near their discontinuities (Gibbs phenomenon), use a clip generator if that
matters.
"""

from __future__ import annotations
from typing import *

from enum import Enum
from functools import lru_cache
import math
import random

import numpy as np


FOUR_OVER_PI = 4 / math.pi
TWO_OVER_PI = 2 / math.pi
EIGHT_OVER_PI_SQUARED = 8 / (math.pi * math.pi)

# Harmonics summed when the operator sets no limit of its own.  Enough for a
# full-band sawtooth down to about 20 Hz.
MAX_HARMONICS = 1024


if TYPE_CHECKING:
    import numpy.typing as npt


class Wave(Enum):
    SINE = "sine"
    SQUARE = "square"
    TRIANGLE = "triangle"
    SAWTOOTH = "sawtooth"
    NOISE = "noise"


def harmonic_count(freq: float, nyquist_limit: float, harmonic_limit: int = 0) -> int:
    """Return the highest harmonic number that stays below `nyquist_limit`.

    A non-zero `harmonic_limit` caps the result further, otherwise it's capped
    at MAX_HARMONICS so that very low frequencies stay cheap to compute.  Never
    less than 1: callers silence operators whose fundamental reaches the
    Nyquist limit.
    """
    limit = harmonic_limit if harmonic_limit > 0 else MAX_HARMONICS
    highest = math.ceil(nyquist_limit / freq) - 1
    return max(min(highest, limit), 1)


@lru_cache(maxsize=None)
def partials(
    harmonics: int, step: int, alternating: bool, power: int
) -> Tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """Return harmonic numbers up to `harmonics` and their amplitudes."""
    k = np.arange(1, harmonics + 1, step, dtype=np.float64)
    weights = 1.0 / k**power
    if alternating:
        weights[1::2] *= -1.0
    return k, weights


def fourier(w: float, harmonics: int, step: int, alternating: bool, power: int) -> float:
    k, weights = partials(harmonics, step, alternating, power)
    return float(np.dot(weights, np.sin(math.tau * w * k)))


def sine(w: float) -> float:
    return math.sin(math.tau * w)


def square(w: float, harmonics: int) -> float:
    """Odd harmonics only, each at 1/k amplitude."""
    return FOUR_OVER_PI * fourier(w, harmonics, 2, False, 1)


def triangle(w: float, harmonics: int) -> float:
    """Odd harmonics at 1/k² amplitude with alternating signs."""
    return EIGHT_OVER_PI_SQUARED * fourier(w, harmonics, 2, True, 2)


def sawtooth(w: float, harmonics: int) -> float:
    """Rises from 0.0 to almost 1.0 during the first half-cycle, then drops to -1.0.

    Same shape as the wavetable saw: in phase with the sine.
    """
    return TWO_OVER_PI * fourier(w, harmonics, 1, True, 1)


def noise(rng: random.Random) -> float:
    return rng.uniform(-1.0, 1.0)


def evaluate(
    wave: Wave,
    w: float,
    freq: float,
    nyquist_limit: float,
    harmonic_limit: int,
    rng: random.Random,
) -> float:
    if wave is Wave.SINE:
        return sine(w)

    if wave is Wave.NOISE:
        return noise(rng)

    harmonics = harmonic_count(freq, nyquist_limit, harmonic_limit)
    if wave is Wave.SQUARE:
        return square(w, harmonics)

    if wave is Wave.TRIANGLE:
        return triangle(w, harmonics)

    if wave is Wave.SAWTOOTH:
        return sawtooth(w, harmonics)

    raise ValueError(f"Unknown wave: {wave}")
