"""Instrument patches: generator graphs described in an INI file.

Every envelope and generator gets its own section named `[KIND:NAME]` where KIND
is one of `envelope`, `operator`, `additive`, `scale`, or `clip`.  Sections
refer to each other by NAME, in any order.  The `[instrument]` section names
the `root` generator and the sample rate.  See `retrotone-patch.ini` for an
example.
"""

from __future__ import annotations
from typing import *

import configparser
from pathlib import Path

from . import adsr, generator
from .adsr import Curve, Envelope
from .generator import Generator
from .refcount import RefCounted
from .render import Instrument
from .waves import Wave


CURRENT_DIR = Path(__file__).parent
DEFAULT_PATCH = CURRENT_DIR / "retrotone-patch.ini"
INSTRUMENT = "instrument"
KEYS = {
    INSTRUMENT: {"sample-rate", "root", "nyquist-limit", "harmonic-limit"},
    "envelope": {"i-max", "i-min", "attack", "decay", "sustain", "release", "curve"},
    "operator": {
        "wave",
        "envelope",
        "freq-mul",
        "freq-boost",
        "amplitude",
        "fm",
        "am",
        "fm-scale",
        "am-scale",
        "fm-feedback",
        "am-feedback",
        "nyquist-limit",
        "harmonic-limit",
    },
    "additive": {"inputs"},
    "scale": {"input", "factor"},
    "clip": {"input", "level"},
}


def names_from_string(names: str) -> list[str]:
    return [name.strip() for name in names.split(",") if name.strip()]


def new_config() -> configparser.ConfigParser:
    return configparser.ConfigParser(
        converters={"names": names_from_string, "wave": Wave, "curve": Curve},
        inline_comment_prefixes=(";", "#"),
        interpolation=None,
    )


def load(path: Path | str) -> Instrument:
    cfg = new_config()
    with open(path) as f:
        cfg.read_file(f)
    return from_config(cfg)


def loads(text: str) -> Instrument:
    cfg = new_config()
    cfg.read_string(text)
    return from_config(cfg)


def from_config(cfg: configparser.ConfigParser) -> Instrument:
    """Build and bind the patch's generator graph.

    The returned instrument holds the only reference to the root generator.
    """
    builder = PatchBuilder(cfg)
    try:
        root = builder.build_all()
        root.addref()
    finally:
        builder.release()

    try:
        return Instrument(root=root, sample_rate=builder.sample_rate)
    except Exception:
        root.release()
        raise


class PatchBuilder:
    def __init__(self, cfg: configparser.ConfigParser) -> None:
        if not cfg.has_section(INSTRUMENT):
            raise ValueError(f"Patch has no [{INSTRUMENT}] section")

        self.cfg = cfg
        instrument = cfg[INSTRUMENT]
        self.check_keys(INSTRUMENT, INSTRUMENT)
        self.sample_rate = instrument.getint("sample-rate", fallback=adsr.RATE_CD)
        self.root_name = instrument.get("root")
        if not self.root_name:
            raise ValueError(f"[{INSTRUMENT}] needs a root generator")
        self.nyquist_limit = instrument.getfloat(
            "nyquist-limit", fallback=self.sample_rate / 2
        )
        self.harmonic_limit = instrument.getint("harmonic-limit", fallback=0)

        self.sections: dict[str, tuple[str, str]] = {}  # name -> (kind, section)
        for section in cfg.sections():
            if section == INSTRUMENT:
                continue
            kind, sep, name = section.partition(":")
            kind = kind.strip()
            name = name.strip()
            if not sep or not name or kind == INSTRUMENT or kind not in KEYS:
                raise ValueError(f"Invalid patch section: [{section}]")
            if name in self.sections:
                raise ValueError(f"Name {name!r} defined more than once")
            self.check_keys(section, kind)
            self.sections[name] = (kind, section)

        # Each built object carries one reference owned by the builder.
        self.built: dict[str, RefCounted] = {}
        self.building: list[str] = []

    def check_keys(self, section: str, kind: str) -> None:
        defaults = set(self.cfg.defaults())
        unknown = set(self.cfg.options(section)) - defaults - KEYS[kind]
        if unknown:
            raise ValueError(f"Unknown keys in [{section}]: {', '.join(sorted(unknown))}")

    def release(self) -> None:
        for obj in self.built.values():
            obj.release()
        self.built.clear()

    def build_all(self) -> Generator:
        if self.root_name not in self.sections:
            raise LookupError(f"Root generator {self.root_name!r} isn't defined")

        root = self.generator(self.root_name)
        # Unreachable sections are still built so mistakes in them don't go unnoticed.
        for name in self.sections:
            self.build(name)
        return root

    def build(self, name: str) -> RefCounted:
        if name in self.built:
            return self.built[name]

        if name not in self.sections:
            raise ValueError(f"Reference to undefined name {name!r}")

        if name in self.building:
            cycle = " -> ".join(self.building[self.building.index(name) :] + [name])
            raise ValueError(f"Generator graph can't contain cycles: {cycle}")

        kind, section = self.sections[name]
        self.building.append(name)
        try:
            obj = getattr(self, f"build_{kind}")(self.cfg[section])
        finally:
            self.building.pop()
        self.built[name] = obj
        return obj

    def generator(self, name: str) -> Generator:
        obj = self.build(name)
        if not isinstance(obj, Generator):
            raise ValueError(f"{name!r} is not a generator")
        return obj

    def envelope(self, name: str) -> Envelope:
        obj = self.build(name)
        if not isinstance(obj, Envelope):
            raise ValueError(f"{name!r} is not an envelope")
        return obj

    def required(self, section: configparser.SectionProxy, key: str) -> str:
        value = section.get(key)
        if not value:
            raise ValueError(f"[{section.name}] needs '{key}'")
        return value

    def optional_generator(
        self, section: configparser.SectionProxy, key: str
    ) -> Optional[Generator]:
        name = section.get(key)
        if not name:
            return None
        return self.generator(name)

    # Builders per section kind.  Factories take their own references to the
    # objects passed in.

    def build_envelope(self, section: configparser.SectionProxy) -> Envelope:
        return adsr.create(
            i_max=section.getfloat("i-max", fallback=1.0),
            i_min=section.getfloat("i-min", fallback=0.0),
            attack_ms=section.getfloat("attack", fallback=0.0),
            decay_ms=section.getfloat("decay", fallback=0.0),
            sustain=section.getfloat("sustain", fallback=1.0),
            release_ms=section.getfloat("release", fallback=0.0),
            rate=self.sample_rate,
            curve=section.getcurve("curve", fallback=Curve.LINEAR),
        )

    def build_operator(self, section: configparser.SectionProxy) -> Generator:
        wave = section.getwave("wave")
        if wave is None:
            raise ValueError(f"[{section.name}] needs 'wave'")
        return generator.operator(
            wave,
            freq_mul=section.getfloat("freq-mul", fallback=1.0),
            freq_boost=section.getfloat("freq-boost", fallback=0.0),
            envelope=self.envelope(self.required(section, "envelope")),
            fm=self.optional_generator(section, "fm"),
            am=self.optional_generator(section, "am"),
            fm_feedback=section.getfloat("fm-feedback", fallback=0.0),
            am_feedback=section.getfloat("am-feedback", fallback=0.0),
            sample_rate=self.sample_rate,
            nyquist_limit=section.getfloat(
                "nyquist-limit", fallback=self.nyquist_limit
            ),
            harmonic_limit=section.getint(
                "harmonic-limit", fallback=self.harmonic_limit
            ),
            amplitude=section.getfloat("amplitude", fallback=1.0),
            fm_scale=section.getfloat("fm-scale", fallback=1.0),
            am_scale=section.getfloat("am-scale", fallback=1.0),
        )

    def build_additive(self, section: configparser.SectionProxy) -> Generator:
        names = section.getnames("inputs", fallback=[])
        if not names:
            raise ValueError(f"[{section.name}] needs 'inputs'")
        return generator.additive(self.generator(name) for name in names)

    def build_scale(self, section: configparser.SectionProxy) -> Generator:
        factor = section.getfloat("factor")
        if factor is None:
            raise ValueError(f"[{section.name}] needs 'factor'")
        return generator.scale(self.generator(self.required(section, "input")), factor)

    def build_clip(self, section: configparser.SectionProxy) -> Generator:
        return generator.clip(
            self.generator(self.required(section, "input")),
            section.getfloat("level", fallback=1.0),
        )
