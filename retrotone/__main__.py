#!/usr/bin/env python3
"""See the docstring to main()."""

from __future__ import annotations
from typing import *

from array import array
import configparser
from pathlib import Path
import time

import click
import miniaudio

from . import audiofile, generator, patch
from .notes import note_to_freq, note_to_name, parse_note
from .render import Instrument, Note, mix, peak, to_int16


CHANNELS = 2

if TYPE_CHECKING:
    Audio = Generator[array[int], int, None]


# For clarity we're aliasing `next` because we are using it as an initializer of
# stateful generators to execute until (and including) its first `yield` expression
# to stop right before assigning a value sent to the generator.  Now the generator
# is ready to accept `.send(value)`.
init = next


def playback_stream(samples: array[int]) -> Audio:
    """Feed interleaved stereo samples to miniaudio, then silence."""
    offset = 0
    want_frames = yield array("h")
    while True:
        end = offset + CHANNELS * want_frames
        out_buffer = samples[offset:end]
        if len(out_buffer) < end - offset:
            out_buffer.extend([0] * (end - offset - len(out_buffer)))
        offset = end
        want_frames = yield out_buffer


def play_audio(samples: array[int], sample_rate: int) -> None:
    with miniaudio.PlaybackDevice(
        nchannels=CHANNELS,
        sample_rate=sample_rate,
        output_format=miniaudio.SampleFormat.SIGNED16,
    ) as dev:
        stream = playback_stream(samples)
        init(stream)
        dev.start(stream)
        # Let the device drain its buffer before closing it.
        time.sleep(len(samples) / CHANNELS / sample_rate + 0.25)


def schedule(
    notes: Sequence[int],
    sample_rate: int,
    duration_ms: int,
    gap_ms: int,
    chord: bool,
    volume: float,
) -> list[Note]:
    duration = max(1, round(sample_rate * duration_ms / 1000))
    gap = round(sample_rate * gap_ms / 1000)
    result = []
    count = len(notes)
    for i, note in enumerate(notes):
        if chord:
            start = 0
            pan = 0.5 * (2 * i / (count - 1) - 1) if count > 1 else 0.0
        else:
            start = i * (duration + gap)
            pan = 0.0
        result.append(
            Note(
                start=start,
                freq=note_to_freq[note],
                duration=duration,
                volume=volume,
                pan=pan,
            )
        )
    return result


def load_instrument(config: str) -> Instrument:
    try:
        return patch.load(config)
    except (ValueError, LookupError, configparser.Error) as e:
        raise click.UsageError(f"Invalid patch {config}: {e}") from None


def convert_notes(
    ctx: click.Context, param: click.Parameter, value: Tuple[str, ...]
) -> list[int]:
    try:
        return [parse_note(note) for note in value]
    except ValueError as e:
        raise click.BadParameter(str(e)) from None


@click.command()
@click.option(
    "--config",
    help="Read the instrument patch from this file",
    default=str(patch.DEFAULT_PATCH),
    type=click.Path(exists=True, file_okay=True, dir_okay=False),
    show_default=True,
)
@click.option(
    "--make-config",
    help="Write the example patch to standard output",
    is_flag=True,
)
@click.option(
    "-n",
    "--note",
    "notes",
    help="Note to play, like A4, C#3, Bb2, or a MIDI note number; repeatable",
    multiple=True,
    default=["A4"],
    show_default=True,
    callback=convert_notes,
)
@click.option(
    "--duration",
    help="Note duration in milliseconds, not counting the release",
    type=click.IntRange(min=1),
    default=500,
    show_default=True,
)
@click.option(
    "--gap",
    help="Milliseconds between consecutive notes",
    type=click.IntRange(min=0),
    default=0,
    show_default=True,
)
@click.option("--chord", help="Play all notes at the same time", is_flag=True)
@click.option(
    "--volume",
    type=click.FloatRange(min=0.0),
    default=1.0,
    show_default=True,
)
@click.option("--seed", help="Seed noise operators for repeatable renders", type=int)
@click.option(
    "--out",
    help="WAV file to write",
    default="retrotone.wav",
    type=click.Path(file_okay=True, dir_okay=False, writable=True),
    show_default=True,
)
@click.option("--play", help="Also play the result on the default device", is_flag=True)
def main(
    config: str,
    make_config: bool,
    notes: list[int],
    duration: int,
    gap: int,
    chord: bool,
    volume: float,
    seed: Optional[int],
    out: str,
    play: bool,
) -> None:
    """
    Renders notes played on an instrument patch into a 16-bit stereo WAV file.

    An instrument patch is an INI file describing a generator graph: operators
    (sine, square, triangle, sawtooth, and noise oscillators with ADSR envelopes,
    frequency and amplitude modulation, and feedback), combined by additive, scale,
    and clip generators.  Use `--make-config` to output an example patch to stdout.

    Rendering is offline and sample-exact: each note gets its own voice with
    independent state, and notes are mixed in stereo afterwards.

    Then run `python -m retrotone --config=PATH_TO_YOUR_PATCH -n C4 -n E4 -n G4 --chord`.
    """
    if make_config:
        with open(patch.DEFAULT_PATCH) as f:
            print(f.read())
        return

    instrument = load_instrument(config)
    try:
        rate = instrument.sample_rate
        op_count = sum(
            isinstance(gen, generator.Operator)
            for gen in generator.walk(instrument.root)
        )
        names = " ".join(note_to_name[note] for note in notes)
        click.echo(f"{Path(config).name}: {op_count} operators at {rate} Hz")
        click.echo(f"Rendering {names}...")

        frames = mix(
            instrument, schedule(notes, rate, duration, gap, chord, volume), seed
        )
    finally:
        instrument.release()

    level = peak(frames)
    if level > 1.0:
        click.secho(
            f"warning: peak level {level:.3f} clipped, lower --volume", fg="red", err=True
        )
    pcm = to_int16(frames)
    audiofile.write(Path(out), pcm, rate)
    click.echo(
        f"Saved {audiofile.duration_str(len(frames) / rate)} of audio to {out}"
    )

    if play:
        play_audio(array("h", pcm.tobytes()), rate)


if __name__ == "__main__":
    main()
