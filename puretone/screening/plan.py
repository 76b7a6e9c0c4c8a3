from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

MIN_DB = -10
MAX_DB = 95   # represents "90+ dB"
DB_STEP = 5

SCREENING_FREQUENCIES = (500, 1000, 2000, 4000)
CLINICAL_FREQUENCIES = (250, 500, 1000, 2000, 4000, 8000)


class Ear(str, Enum):
    LEFT = "L"
    RIGHT = "R"

    @property
    def pan(self) -> float:
        return -1.0 if self is Ear.LEFT else 1.0

    @classmethod
    def parse(cls, value) -> "Ear":
        if isinstance(value, Ear):
            return value
        text = str(value).strip().upper()
        aliases = {"L": cls.LEFT, "LEFT": cls.LEFT, "OS": cls.LEFT, "SX": cls.LEFT,
                   "R": cls.RIGHT, "RIGHT": cls.RIGHT, "OD": cls.RIGHT, "DX": cls.RIGHT}
        if text not in aliases:
            raise ValueError(f"Unknown ear: {value!r}")
        return aliases[text]


class Masking(str, Enum):
    UNMASKED = "unmasked"
    MASKED = "masked"

    @classmethod
    def parse(cls, value) -> "Masking":
        if isinstance(value, Masking):
            return value
        text = str(value).strip().lower()
        aliases = {"unmasked": cls.UNMASKED, "u": cls.UNMASKED, "masked": cls.MASKED, "m": cls.MASKED}
        if text not in aliases:
            raise ValueError(f"Unknown masking state: {value!r}")
        return aliases[text]


class Mode(str, Enum):
    SCREENING = "screening"
    CLINICAL = "clinical"

    @property
    def frequencies(self) -> Tuple[int, ...]:
        return CLINICAL_FREQUENCIES if self is Mode.CLINICAL else SCREENING_FREQUENCIES


@dataclass(frozen=True)
class TestStep:
    __test__ = False

    ear: Ear
    masking: Masking

    def label(self) -> str:
        side = "Right" if self.ear is Ear.RIGHT else "Left"
        return f"{side} ear / {self.masking.value}"


STANDARD_STEPS = (
    TestStep(Ear.RIGHT, Masking.UNMASKED),
    TestStep(Ear.LEFT, Masking.UNMASKED),
    TestStep(Ear.RIGHT, Masking.MASKED),
    TestStep(Ear.LEFT, Masking.MASKED),
)


@dataclass(frozen=True)
class TestPlan:
    """Fixed ear/masking sequence plus the frequency set chosen by the mode."""

    __test__ = False

    mode: Mode
    steps: Tuple[TestStep, ...] = STANDARD_STEPS

    @classmethod
    def for_mode(cls, mode) -> "TestPlan":
        return cls(mode=Mode(mode))

    @property
    def frequencies(self) -> Tuple[int, ...]:
        return self.mode.frequencies

    def index_of(self, ear, masking) -> Optional[int]:
        step = TestStep(Ear.parse(ear), Masking.parse(masking))
        try:
            return self.steps.index(step)
        except ValueError:
            return None


@dataclass(frozen=True)
class ToneRequest:
    frequency: int
    level_db: int
    ear: Ear
    is_catch_trial: bool


@dataclass(frozen=True)
class ResponseRecord:
    frequency: int
    ear: Ear
    masking: Masking
    threshold_db: int

    @property
    def key(self) -> Tuple[int, Ear, Masking]:
        return (self.frequency, self.ear, self.masking)
