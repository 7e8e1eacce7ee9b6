"""Generator graphs: the class side of the synthesizer.

A generator graph describes how to compute a sound.  It's built once per
instrument from four kinds of nodes:

- `Operator`: an oscillator with an envelope, optionally modulated in frequency
  and amplitude by other generators and by its own previous output;
- `Additive`: the sum of several generators;
- `Scale`: a generator multiplied by a constant;
- `Clip`: a generator hard-limited to a symmetric level.

Nodes may be shared (one modulator can drive several operators) so the graph is
a DAG.  Nothing about a node changes once it's built, save for its reference
count and the slot `bind()` gives each operator.  Everything that changes while
a note plays lives in the voice's `Instances`, which is why one bound graph can
render any number of voices.

Usage:

    env = adsr.create(1.0, 0.0, 10, 100, 0.5, 200, 44100)
    root = operator(Wave.SINE, 1.0, 0.0, env)
    env.release()  # the operator holds its own reference now
    size = bind(root)
    instances = Instances.create(size, freq=440.0, duration=44100)
    samples = [invoke(root, instances, t) for t in range(length(root, instances))]
"""

from __future__ import annotations
from typing import *

from dataclasses import dataclass, field
import math

from . import waves
from .adsr import Envelope, SUPPORTED_RATES
from .instance import Instances, SILENCED
from .refcount import RefCounted
from .waves import Wave


class BindingError(RuntimeError):
    """Generators used without binding, bound twice, or with mismatched instances."""


@dataclass(eq=False)
class Generator(RefCounted):
    def __post_init__(self) -> None:
        self._init_refcount()

    def children(self) -> Iterator[Generator]:
        return iter(())

    def free(self) -> None:
        for child in self.children():
            child.release()

    def bind(self, start: int, seen: Set[Generator]) -> int:
        for child in self.children():
            start = child.bind(start, seen)
        return start

    def invoke(self, instances: Instances, t: int) -> float:
        raise NotImplementedError

    def length(self, instances: Instances) -> int:
        raise NotImplementedError


@dataclass(eq=False)
class Operator(Generator):
    wave: Wave
    freq_mul: float
    freq_boost: float
    envelope: Envelope = field(repr=False)
    fm: Optional[Generator] = field(repr=False)
    am: Optional[Generator] = field(repr=False)
    fm_feedback: float
    am_feedback: float
    sample_rate: int
    nyquist_limit: float
    harmonic_limit: int
    amplitude: float = 1.0
    fm_scale: float = 1.0
    am_scale: float = 1.0
    slot: Optional[int] = field(default=None, init=False)

    def children(self) -> Iterator[Generator]:
        if self.fm is not None:
            yield self.fm
        if self.am is not None:
            yield self.am

    def free(self) -> None:
        super().free()
        self.envelope.release()

    def bind(self, start: int, seen: Set[Generator]) -> int:
        if self in seen:
            return start

        if self.slot is not None:
            raise BindingError(f"operator already bound to slot {self.slot}")

        seen.add(self)
        self.slot = start
        return super().bind(start + 1, seen)

    def _instance_slot(self, instances: Instances) -> int:
        slot = self.slot
        if slot is None:
            raise BindingError("operator used before binding")
        if slot >= len(instances):
            raise BindingError(
                f"operator slot {slot} is outside of instance data for"
                f" {len(instances)} operators"
            )
        return slot

    def invoke(self, instances: Instances, t: int) -> float:
        op = instances[self._instance_slot(instances)]
        if op.t == SILENCED:
            return 0.0

        op.check_time(t)
        if op.t == t:
            return op.value

        wave = self.wave
        f = 0.0
        if wave is not Wave.NOISE:
            f = op.freq * self.freq_mul + self.freq_boost
            if self.fm_feedback:
                f += self.fm_feedback * op.value
            if self.fm is not None:
                f += self.fm_scale * self.fm.invoke(instances, t)

            # Runaway modulation silences the operator for good rather than alias.
            if not (math.isfinite(f) and 0.0 < f < self.nyquist_limit):
                op.t = SILENCED
                return 0.0

            w = op.w + f / self.sample_rate
            if not (math.isfinite(w) and w >= 0.0):
                w = 0.0
            op.w = w % 1.0

        sample = waves.evaluate(
            wave, op.w, f, self.nyquist_limit, self.harmonic_limit, instances.rng
        )

        amp = self.amplitude * self.envelope.intensity(t, op.dur)
        if self.am_feedback:
            amp += self.am_feedback * op.value
        if self.am is not None:
            amp += self.am_scale * self.am.invoke(instances, t)
        if not math.isfinite(amp):
            amp = 0.0

        value = amp * sample
        if not math.isfinite(value):
            value = 0.0
        op.value = value
        op.t = t
        return value

    def length(self, instances: Instances) -> int:
        op = instances[self._instance_slot(instances)]
        return self.envelope.length(op.dur)


@dataclass(eq=False)
class Additive(Generator):
    inputs: Tuple[Generator, ...] = field(repr=False)

    def children(self) -> Iterator[Generator]:
        return iter(self.inputs)

    def invoke(self, instances: Instances, t: int) -> float:
        result = 0.0
        for gen in self.inputs:
            value = gen.invoke(instances, t)
            if math.isfinite(value):
                result += value
        if not math.isfinite(result):
            return 0.0
        return result

    def length(self, instances: Instances) -> int:
        return max(gen.length(instances) for gen in self.inputs)


@dataclass(eq=False)
class Scale(Generator):
    base: Generator = field(repr=False)
    factor: float

    def children(self) -> Iterator[Generator]:
        yield self.base

    def invoke(self, instances: Instances, t: int) -> float:
        value = self.base.invoke(instances, t) * self.factor
        if not math.isfinite(value):
            return 0.0
        return value

    def length(self, instances: Instances) -> int:
        return self.base.length(instances)


@dataclass(eq=False)
class Clip(Generator):
    base: Generator = field(repr=False)
    level: float

    def children(self) -> Iterator[Generator]:
        yield self.base

    def invoke(self, instances: Instances, t: int) -> float:
        value = self.base.invoke(instances, t)
        if not math.isfinite(value):
            return 0.0
        return max(-self.level, min(self.level, value))

    def length(self, instances: Instances) -> int:
        return self.base.length(instances)


# Factories.  Each one validates its arguments, takes a reference to every object
# the new node refers to, and returns the node with a reference count of one.


def _check_finite(name: str, value: float) -> None:
    if not math.isfinite(value):
        raise ValueError(f"{name} must be finite, got {value}")


def _hold(*objects: Optional[RefCounted]) -> None:
    held = [obj for obj in objects if obj is not None]
    for obj in held:
        obj.check_alive()
    for obj in held:
        obj.addref()


def _check_generator(gen: object) -> None:
    if not isinstance(gen, Generator):
        raise ValueError(f"expected a generator, got {gen!r}")


def additive(inputs: Iterable[Generator]) -> Additive:
    inputs = tuple(inputs)
    if not inputs:
        raise ValueError("additive generator needs at least one input")
    for gen in inputs:
        _check_generator(gen)
    _hold(*inputs)
    return Additive(inputs=inputs)


def scale(base: Generator, factor: float) -> Scale:
    _check_generator(base)
    _check_finite("scale factor", factor)
    _hold(base)
    return Scale(base=base, factor=factor)


def clip(base: Generator, level: float) -> Clip:
    _check_generator(base)
    _check_finite("clip level", level)
    if level < 0.0:
        raise ValueError(f"clip level can't be negative, got {level}")
    _hold(base)
    return Clip(base=base, level=level)


def operator(
    wave: Wave | str,
    freq_mul: float,
    freq_boost: float,
    envelope: Envelope,
    fm: Optional[Generator] = None,
    am: Optional[Generator] = None,
    fm_feedback: float = 0.0,
    am_feedback: float = 0.0,
    sample_rate: int = 44100,
    nyquist_limit: Optional[float] = None,
    harmonic_limit: int = 0,
    *,
    amplitude: float = 1.0,
    fm_scale: float = 1.0,
    am_scale: float = 1.0,
) -> Operator:
    """Return a new operator.

    The operator's frequency for a note is `freq * freq_mul + freq_boost` where
    `freq` is the note's frequency.  FM adds `fm_scale` times the output of `fm`
    (and `fm_feedback` times the operator's previous sample) to that frequency
    in Hz.  The amplitude is `amplitude` times the envelope, plus the AM terms
    built the same way.  The operator goes silent for the rest of the note as
    soon as its frequency leaves (0, nyquist_limit).

    `nyquist_limit` defaults to half the sample rate.  `harmonic_limit` caps the
    harmonics summed for square, triangle, and sawtooth waves; 0 means only the
    Nyquist limit and `waves.MAX_HARMONICS` apply.
    """
    wave = Wave(wave)
    for name, value in (
        ("freq_mul", freq_mul),
        ("freq_boost", freq_boost),
        ("fm_feedback", fm_feedback),
        ("am_feedback", am_feedback),
        ("amplitude", amplitude),
        ("fm_scale", fm_scale),
        ("am_scale", am_scale),
    ):
        _check_finite(name, value)
    if freq_mul < 0.0:
        raise ValueError(f"freq_mul can't be negative, got {freq_mul}")
    if sample_rate not in SUPPORTED_RATES:
        raise ValueError(
            f"unsupported sample rate {sample_rate}, use one of {SUPPORTED_RATES}"
        )
    if not isinstance(envelope, Envelope):
        raise ValueError(f"expected an envelope, got {envelope!r}")
    if envelope.rate != sample_rate:
        raise ValueError(
            f"envelope sample rate {envelope.rate} doesn't match {sample_rate}"
        )
    if nyquist_limit is None:
        nyquist_limit = sample_rate / 2
    _check_finite("nyquist_limit", nyquist_limit)
    if not 0.0 < nyquist_limit <= sample_rate / 2:
        raise ValueError(
            f"nyquist_limit must be in (0, {sample_rate / 2}], got {nyquist_limit}"
        )
    _check_finite("harmonic_limit", harmonic_limit)
    if harmonic_limit != int(harmonic_limit):
        raise ValueError(f"harmonic_limit must be a whole number, got {harmonic_limit}")
    if harmonic_limit < 0:
        raise ValueError(f"harmonic_limit can't be negative, got {harmonic_limit}")
    for gen in (fm, am):
        if gen is not None:
            _check_generator(gen)

    _hold(envelope, fm, am)
    return Operator(
        wave=wave,
        freq_mul=freq_mul,
        freq_boost=freq_boost,
        envelope=envelope,
        fm=fm,
        am=am,
        fm_feedback=fm_feedback,
        am_feedback=am_feedback,
        sample_rate=sample_rate,
        nyquist_limit=nyquist_limit,
        harmonic_limit=int(harmonic_limit),
        amplitude=amplitude,
        fm_scale=fm_scale,
        am_scale=am_scale,
    )


# Graph-wide operations.


def bind(root: Generator, start: int = 0) -> int:
    """Give every operator reachable from `root` its instance data slot.

    Returns the slot after the last one assigned; when `start` is 0 that's the
    size of the `Instances` a voice needs.  Bind a graph exactly once.
    """
    root.check_alive()
    return root.bind(start, set())


def invoke(root: Generator, instances: Instances, t: int) -> float:
    """Compute sample `t` of the voice whose state is `instances`.

    Call with t = 0, 1, 2, ... in order.  Repeating the current `t` is fine and
    returns the same value without advancing anything.
    """
    return root.invoke(instances, t)


def length(root: Generator, instances: Instances) -> int:
    """Return how many samples the voice renders, including envelope releases."""
    return root.length(instances)


def walk(root: Generator) -> Iterator[Generator]:
    """Yield every node reachable from `root` once, parents before children."""
    seen: Set[Generator] = set()
    stack = [root]
    while stack:
        gen = stack.pop()
        if gen in seen:
            continue
        seen.add(gen)
        yield gen
        stack.extend(reversed(list(gen.children())))
