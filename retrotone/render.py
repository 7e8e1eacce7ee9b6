"""Offline rendering: instruments, voices, and a stereo mix of notes."""

from __future__ import annotations
from typing import *

from array import array
from dataclasses import dataclass, field

import numpy as np

from . import generator
from .generator import Generator
from .instance import Cursor, Instances


# We want this to be symmetrical on the + and the - side.
INT16_MAXVALUE = 32767


if TYPE_CHECKING:
    import numpy.typing as npt


@dataclass(eq=False)
class Instrument:
    """A bound generator graph and what a voice needs to know to play it.

    Holds one reference to `root`.
    """

    root: Generator
    sample_rate: int
    size: int = field(init=False)

    def __post_init__(self) -> None:
        self.size = generator.bind(self.root)

    def release(self) -> None:
        self.root.release()

    def voice(self, freq: float, duration: int, seed: Optional[int] = None) -> Voice:
        return Voice(self, freq, duration, seed)


@dataclass(eq=False)
class Voice:
    """One note played on an instrument.  Owns its instance data."""

    instrument: Instrument
    freq: float  # Hz
    duration: int  # samples, not counting envelope releases
    seed: Optional[int] = None
    instances: Instances = field(init=False, repr=False)
    cursor: Cursor = field(init=False)

    def __post_init__(self) -> None:
        self.instances = Instances.create(
            self.instrument.size, self.freq, self.duration, self.seed
        )
        self.cursor = Cursor()

    def length(self) -> int:
        return generator.length(self.instrument.root, self.instances)

    def next_sample(self) -> float:
        t = self.cursor.advance()
        return generator.invoke(self.instrument.root, self.instances, t)

    def render(self) -> array[float]:
        """Return the rest of the note as mono double-precision floats."""
        remaining = self.length() - self.cursor.current - 1
        out_buffer = array("d", [0.0] * max(remaining, 0))
        for i in range(len(out_buffer)):
            out_buffer[i] = self.next_sample()
        return out_buffer


@dataclass
class Note:
    start: int  # sample offset into the mix
    freq: float  # Hz
    duration: int  # samples
    volume: float = 1.0
    pan: float = 0.0  # -1.0 (left) to 1.0 (right)
    instrument: Optional[Instrument] = None  # None plays the mix's instrument


def pan_gains(pan: float) -> Tuple[float, float]:
    pan = max(-1.0, min(1.0, pan))
    return (-pan + 1) / 2, (pan + 1) / 2


def mix(
    instrument: Instrument, notes: Iterable[Note], seed: Optional[int] = None
) -> npt.NDArray[np.float64]:
    """Render every note and sum them into a stereo buffer shaped (frames, 2).

    Notes may overlap; each gets its own voice.  A note that carries its own
    instrument plays on it instead of `instrument`; all instruments must share
    one sample rate.  With a `seed`, noise operators render the same way every
    time.
    """
    rendered = []
    frames = 0
    for i, note in enumerate(notes):
        note_instrument = note.instrument or instrument
        if note_instrument.sample_rate != instrument.sample_rate:
            raise ValueError(
                f"note {i} plays at {note_instrument.sample_rate} Hz, the mix is at"
                f" {instrument.sample_rate} Hz"
            )
        voice_seed = None if seed is None else seed + i
        voice = note_instrument.voice(note.freq, note.duration, voice_seed)
        mono = np.frombuffer(voice.render(), dtype=np.float64)
        rendered.append((note, mono))
        frames = max(frames, note.start + len(mono))

    out_buffer = np.zeros((frames, 2), dtype=np.float64)
    for note, mono in rendered:
        left, right = pan_gains(note.pan)
        end = note.start + len(mono)
        out_buffer[note.start : end, 0] += note.volume * left * mono
        out_buffer[note.start : end, 1] += note.volume * right * mono
    return out_buffer


def peak(frames: npt.NDArray[np.float64]) -> float:
    if frames.size == 0:
        return 0.0
    return float(np.max(np.abs(frames)))


def to_int16(frames: npt.NDArray[np.float64]) -> npt.NDArray[np.int16]:
    """Saturate normalized floats into symmetric signed 16-bit samples."""
    scaled = np.nan_to_num(frames, nan=0.0, posinf=1.0, neginf=-1.0) * INT16_MAXVALUE
    return np.clip(np.round(scaled), -INT16_MAXVALUE, INT16_MAXVALUE).astype(np.int16)
