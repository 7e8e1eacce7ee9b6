from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import soundfile as sf


if TYPE_CHECKING:
    import numpy.typing as npt


def duration_str(duration: float) -> str:
    minutes = int(duration // 60)
    seconds = duration - 60 * minutes
    return f"{minutes}:{seconds:06.3f}"


def write(path: Path, frames: npt.NDArray, rate: int) -> None:
    """Write frames as a 16-bit PCM WAV file.

    `frames` is shaped (frames,) for mono or (frames, channels).  Pass int16
    samples, or floats already within [-1.0, 1.0].
    """
    sf.write(str(path), frames, rate, subtype="PCM_16", format="WAV")


def read(path: Path) -> tuple[npt.NDArray, int]:
    """Return a tuple with a numpy array of samples and the sample rate.

    The numpy array contains all channels and the contents is normalized
    float64 (double precision).
    """
    data, rate = sf.read(str(path))
    return data, rate
