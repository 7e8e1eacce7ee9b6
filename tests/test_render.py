import tempfile
import unittest
from pathlib import Path

import numpy as np
from click.testing import CliRunner

from retrotone import adsr, audiofile, generator, patch
from retrotone.__main__ import main, schedule
from retrotone.instance import Instances
from retrotone.render import (
    INT16_MAXVALUE,
    Instrument,
    Note,
    mix,
    pan_gains,
    peak,
    to_int16,
)
from retrotone.waves import Wave


def sine_instrument(release_ms: float = 10) -> Instrument:
    env = adsr.create(1.0, 0.0, 1, 1, 0.5, release_ms, 44100)
    root = generator.operator(Wave.SINE, 1.0, 0.0, env)
    env.release()
    return Instrument(root=root, sample_rate=44100)


class TestVoice(unittest.TestCase):
    def setUp(self) -> None:
        self.instrument = sine_instrument()

    def tearDown(self) -> None:
        self.instrument.release()

    def test_render_whole_note(self) -> None:
        voice = self.instrument.voice(440.0, 1000)
        self.assertEqual(voice.length(), 1441)
        samples = voice.render()
        self.assertEqual(len(samples), 1441)
        self.assertEqual(voice.cursor.current, 1440)
        self.assertEqual(len(voice.render()), 0)

    def test_render_rest_of_note(self) -> None:
        voice = self.instrument.voice(440.0, 100)
        first = [voice.next_sample() for _ in range(10)]
        rest = voice.render()
        self.assertEqual(len(first) + len(rest), voice.length())

    def test_render_keeps_double_precision(self) -> None:
        voice = self.instrument.voice(440.0, 100)
        samples = voice.render()
        self.assertEqual(samples.typecode, "d")

        instances = Instances.create(self.instrument.size, 440.0, 100)
        expected = [
            generator.invoke(self.instrument.root, instances, t)
            for t in range(len(samples))
        ]
        self.assertEqual(list(samples), expected)

    def test_voices_share_the_instrument(self) -> None:
        a = self.instrument.voice(440.0, 100).render()
        b = self.instrument.voice(440.0, 100).render()
        c = self.instrument.voice(220.0, 100).render()
        self.assertEqual(list(a), list(b))
        self.assertNotEqual(list(a), list(c))


class TestMix(unittest.TestCase):
    def setUp(self) -> None:
        self.instrument = sine_instrument(release_ms=0)

    def tearDown(self) -> None:
        self.instrument.release()

    def test_pan_law(self) -> None:
        self.assertEqual(pan_gains(0.0), (0.5, 0.5))
        self.assertEqual(pan_gains(-1.0), (1.0, 0.0))
        self.assertEqual(pan_gains(1.0), (0.0, 1.0))
        self.assertEqual(pan_gains(5.0), (0.0, 1.0))

    def test_shape_and_placement(self) -> None:
        notes = [
            Note(start=0, freq=440.0, duration=100, pan=-1.0),
            Note(start=150, freq=660.0, duration=100, pan=1.0),
        ]
        frames = mix(self.instrument, notes)
        self.assertEqual(frames.shape, (250, 2))
        self.assertTrue(np.any(frames[:100, 0]))
        self.assertFalse(np.any(frames[:100, 1]))
        self.assertFalse(np.any(frames[100:150]))
        self.assertFalse(np.any(frames[150:, 0]))
        self.assertTrue(np.any(frames[150:, 1]))

    def test_overlapping_notes_add_up(self) -> None:
        note = Note(start=0, freq=440.0, duration=100, volume=0.5)
        single = mix(self.instrument, [note])
        double = mix(self.instrument, [note, note])
        np.testing.assert_allclose(double, 2 * single)
        # volume and center panning halve the level twice
        self.assertLessEqual(peak(single), 0.25)
        self.assertGreater(peak(single), 0.1)
        self.assertEqual(peak(double), 2 * peak(single))

    def test_mix_matches_voice_output(self) -> None:
        frames = mix(self.instrument, [Note(start=0, freq=440.0, duration=100, pan=-1.0)])
        samples = self.instrument.voice(440.0, 100).render()
        self.assertEqual(frames[:, 0].tolist(), list(samples))

    def test_notes_on_several_instruments(self) -> None:
        env = adsr.create(1.0, 1.0, 0, 0, 1.0, 0, 44100)
        root = generator.operator(Wave.SQUARE, 1.0, 0.0, env)
        env.release()
        square = Instrument(root=root, sample_rate=44100)
        self.addCleanup(square.release)

        notes = [
            Note(start=0, freq=440.0, duration=100, pan=-1.0),
            Note(start=0, freq=440.0, duration=100, pan=1.0, instrument=square),
        ]
        frames = mix(self.instrument, notes)
        self.assertEqual(
            frames[:, 0].tolist(), list(self.instrument.voice(440.0, 100).render())
        )
        self.assertEqual(frames[:, 1].tolist(), list(square.voice(440.0, 100).render()))

    def test_instruments_share_the_sample_rate(self) -> None:
        env = adsr.create(1.0, 1.0, 0, 0, 1.0, 0, 48000)
        root = generator.operator(Wave.SINE, 1.0, 0.0, env, sample_rate=48000)
        env.release()
        other = Instrument(root=root, sample_rate=48000)
        self.addCleanup(other.release)

        with self.assertRaises(ValueError):
            mix(self.instrument, [Note(start=0, freq=440.0, duration=10, instrument=other)])

    def test_empty(self) -> None:
        frames = mix(self.instrument, [])
        self.assertEqual(frames.shape, (0, 2))
        self.assertEqual(peak(frames), 0.0)

    def test_to_int16(self) -> None:
        frames = np.array([[0.0, 1.0], [-1.0, 0.5], [2.0, -3.0], [np.nan, np.inf]])
        pcm = to_int16(frames)
        self.assertEqual(pcm.dtype, np.int16)
        self.assertEqual(
            pcm.tolist(),
            [
                [0, INT16_MAXVALUE],
                [-INT16_MAXVALUE, 16384],
                [INT16_MAXVALUE, -INT16_MAXVALUE],
                [0, INT16_MAXVALUE],
            ],
        )

    def test_schedule(self) -> None:
        notes = schedule([60, 64, 67], 44100, 100, 50, chord=False, volume=0.5)
        self.assertEqual([n.start for n in notes], [0, 6615, 13230])
        self.assertEqual({n.duration for n in notes}, {4410})
        self.assertEqual({n.volume for n in notes}, {0.5})

        chord = schedule([60, 64, 67], 44100, 100, 50, chord=True, volume=1.0)
        self.assertEqual([n.start for n in chord], [0, 0, 0])
        self.assertEqual([n.pan for n in chord], [-0.5, 0.0, 0.5])


class TestCommandLine(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.runner = CliRunner()

    def test_render_to_wav(self) -> None:
        out = Path(self.tmp.name) / "chord.wav"
        result = self.runner.invoke(
            main,
            ["-n", "C4", "-n", "64", "--chord", "--duration", "50", "--seed", "1", "--out", str(out)],
        )
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("4 operators at 44100 Hz", result.output)
        self.assertIn("Rendering C4 E4", result.output)
        self.assertIn(f"to {out}", result.output)

        data, rate = audiofile.read(out)
        self.assertEqual(rate, 44100)
        self.assertEqual(data.ndim, 2)
        self.assertEqual(data.shape[1], 2)
        self.assertGreater(data.shape[0], 2205)
        self.assertGreater(np.max(np.abs(data)), 0.01)

    def test_make_config(self) -> None:
        result = self.runner.invoke(main, ["--make-config"])
        self.assertEqual(result.exit_code, 0)
        self.assertIn("[instrument]", result.output)
        self.assertEqual(result.output.strip(), patch.DEFAULT_PATCH.read_text().strip())

    def test_bad_note(self) -> None:
        result = self.runner.invoke(main, ["-n", "H2", "--out", str(Path(self.tmp.name) / "x.wav")])
        self.assertEqual(result.exit_code, 2)
        self.assertIn("H2", result.output)

    def test_bad_patch(self) -> None:
        config = Path(self.tmp.name) / "bad.ini"
        config.write_text("[instrument]\nroot = missing\n")
        result = self.runner.invoke(
            main, ["--config", str(config), "--out", str(Path(self.tmp.name) / "x.wav")]
        )
        self.assertEqual(result.exit_code, 2)
        self.assertIn("Invalid patch", result.output)
        self.assertIn("missing", result.output)


if __name__ == "__main__":
    unittest.main()
