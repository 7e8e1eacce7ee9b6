from __future__ import annotations

import re


NOTE_NAMES = ("C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B")
NATURALS = {"C": 0, "D": 2, "E": 4, "F": 5, "G": 7, "A": 9, "B": 11}
ACCIDENTALS = {"": 0, "#": 1, "b": -1}
NOTE_RE = re.compile(r"^([A-Ga-g])([#b]?)(-?\d+)$")

# Scientific pitch notation: C4 is MIDI note 60, A4 is 69 at 440 Hz.
note_to_name: dict[int, str] = {
    n: f"{NOTE_NAMES[n % 12]}{n // 12 - 1}" for n in range(128)
}
note_to_freq: dict[int, float] = {n: 440 * 2 ** ((n - 69) / 12) for n in range(128)}


def parse_note(note: str) -> int:
    """Return the MIDI note number for names like "A4", "C#3", "Bb2", or "60"."""
    note = note.strip()
    if note.isdigit():
        number = int(note)
    else:
        match = NOTE_RE.match(note)
        if not match:
            raise ValueError(f"Invalid note: {note}")

        letter, accidental, octave = match.groups()
        semitone = NATURALS[letter.upper()] + ACCIDENTALS[accidental]
        number = 12 * (int(octave) + 1) + semitone

    if number not in note_to_freq:
        raise ValueError(f"Note out of MIDI range: {note}")
    return number
