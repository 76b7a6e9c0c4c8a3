from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Optional, Tuple

PTA_FREQUENCIES = (500, 1000, 2000, 4000)
STANDARD_FREQUENCIES = (250, 500, 1000, 2000, 4000, 8000)
PTA_UNDEFINED = 999
ASYMMETRY_DB = 15

# (inclusive upper bound, grade, label); Normal is strictly below 20
GRADES = [
    (34, 1, "Mild hearing loss"),
    (49, 2, "Moderate hearing loss"),
    (64, 3, "Moderately severe hearing loss"),
    (79, 4, "Severe hearing loss"),
    (94, 5, "Profound hearing loss"),
]

RECOMMENDATIONS = {
    0: [
        "No hearing impairment detected.",
        "Routine screening advised.",
        "Avoid excessive noise exposure.",
    ],
    1: [
        "Counseling on communication strategies.",
        "Preferential seating (especially children).",
        "Monitor academic/work performance.",
        "Hearing aids may be considered if difficulty reported.",
        "Annual audiological follow-up recommended.",
    ],
    2: [
        "Hearing aids usually recommended.",
        "Speech therapy may be beneficial.",
        "FM system or hearing assistive technology for classroom use.",
        "Teacher awareness and educational accommodations.",
    ],
    3: [
        "Hearing aids strongly recommended.",
        "Speech and language therapy required.",
        "Specialized educational support needed.",
        "Consider cochlear implant evaluation in some cases.",
        "Regular audiological follow-up essential.",
    ],
    4: [
        "Powerful hearing aids or cochlear implants needed.",
        "Intensive speech and language therapy.",
        "Lip-reading instruction/training.",
        "Specialized educational support with sign language.",
        "Audiological and educational rehabilitation program.",
    ],
    5: [
        "Cochlear implants strongly recommended.",
        "Sign language and comprehensive communication training.",
        "Intensive speech and auditory training.",
        "Specialized educational program for deaf students.",
        "Multidisciplinary rehabilitation approach.",
    ],
    6: [
        "Cochlear implant evaluation essential.",
        "Sign language as primary communication mode.",
        "Comprehensive deaf education program.",
        "Assistive listening devices and visual alert systems.",
        "Family counseling and support services.",
        "Community resources for deaf individuals.",
    ],
}


class Pattern(str, Enum):
    HIGH_FREQUENCY_SLOPING = "High-Frequency Sloping"
    LOW_FREQUENCY_RISING = "Low-Frequency Rising"
    NOTCHED = "Notched"
    FLAT = "Flat"


@dataclass(frozen=True)
class Grade:
    grade: Optional[int]
    label: str

    def __str__(self) -> str:
        if self.grade is None:
            return self.label
        return f"Grade {self.grade}: {self.label}"


INCOMPLETE = Grade(None, "Incomplete Data")


@dataclass(frozen=True)
class Classification:
    left_pta: float
    right_pta: float
    better_ear_pta: float
    grade: Grade
    pattern: Pattern
    asymmetry: bool
    asymmetry_pair: Optional[Tuple[int, int]]
    summary: str
    recommendations: Tuple[str, ...]


def pta(map_: Mapping[int, float], bands=PTA_FREQUENCIES) -> float:
    vals = [map_[f] for f in bands if map_.get(f) is not None]
    if not vals:
        return PTA_UNDEFINED
    return sum(vals) / len(vals)


def classify_grade(db: float) -> Grade:
    if db >= PTA_UNDEFINED:
        return INCOMPLETE
    if db < 20:
        return Grade(0, "Normal hearing")
    for upper, grade, label in GRADES:
        if db <= upper:
            return Grade(grade, label)
    return Grade(6, "Complete hearing loss")


def severity(db: float) -> str:
    grade = classify_grade(db)
    return grade.label.lower() if grade.grade is not None else "undetermined hearing"


def asymmetric_pair(left: Mapping[int, float], right: Mapping[int, float],
                    freqs=STANDARD_FREQUENCIES) -> Optional[Tuple[int, int]]:
    """First pair of adjacent standard frequencies both differing by more than 15 dB."""
    for f1, f2 in zip(freqs, freqs[1:]):
        if any(m.get(f) is None for m in (left, right) for f in (f1, f2)):
            continue
        if abs(left[f1] - right[f1]) > ASYMMETRY_DB and abs(left[f2] - right[f2]) > ASYMMETRY_DB:
            return (f1, f2)
    return None


def detect_pattern(ear: Mapping[int, float]) -> Pattern:
    low = (ear.get(250) or 0) + (ear.get(500) or 0)
    high = (ear.get(4000) or 0) + (ear.get(8000) or 0)
    if high > low + 30:
        return Pattern.HIGH_FREQUENCY_SLOPING
    if low > high + 20:
        return Pattern.LOW_FREQUENCY_RISING
    f2k, f4k, f8k = ear.get(2000), ear.get(4000), ear.get(8000)
    if None not in (f2k, f4k, f8k) and f4k > f2k + 15 and f4k > f8k + 10:
        return Pattern.NOTCHED
    return Pattern.FLAT


def _summary(left_pta: float, right_pta: float, pattern: Pattern, pair: Optional[Tuple[int, int]]) -> str:
    better = min(left_pta, right_pta)
    worse = max(left_pta, right_pta)
    if better >= PTA_UNDEFINED:
        return "Test was not completed."
    text = []
    if worse < 20:
        text.append("Bilateral hearing sensitivity within normal limits.")
    elif abs(left_pta - right_pta) < ASYMMETRY_DB:
        text.append(f"Symmetrical bilateral {severity(better)}. {pattern.value} pattern.")
    else:
        text.append(f"Asymmetrical hearing. Left ear indicates {severity(left_pta)}, "
                    f"right ear indicates {severity(right_pta)}.")
    if pattern is Pattern.NOTCHED:
        text.append("Notched pattern at 4 kHz suggests possible noise-induced hearing loss.")
    if pair is not None:
        text.append(f"Asymmetry greater than {ASYMMETRY_DB} dB at {pair[0]}-{pair[1]} Hz; "
                    f"ENT investigation recommended.")
    return " ".join(text)


class AudiogramClassifier:
    """Grade, configuration and asymmetry of a completed threshold map.

    Grading uses the better-ear pure-tone average over 500-4000 Hz (WHO
    grades 0-6). The configuration pattern is read from the better ear.
    """

    def classify(self, left: Mapping[int, float], right: Mapping[int, float]) -> Classification:
        left = {int(f): v for f, v in (left or {}).items()}
        right = {int(f): v for f, v in (right or {}).items()}
        left_pta = pta(left)
        right_pta = pta(right)
        better_pta = min(left_pta, right_pta)
        grade = classify_grade(better_pta)
        better_ear = left if left_pta < right_pta else right
        pattern = detect_pattern(better_ear)
        pair = asymmetric_pair(left, right)
        recommendations = RECOMMENDATIONS.get(grade.grade, ["Test was not completed."])
        return Classification(
            left_pta=left_pta,
            right_pta=right_pta,
            better_ear_pta=better_pta,
            grade=grade,
            pattern=pattern,
            asymmetry=pair is not None,
            asymmetry_pair=pair,
            summary=_summary(left_pta, right_pta, pattern, pair),
            recommendations=tuple(recommendations),
        )


def describe_thresholds(results_map: Dict[str, Dict[int, float]], freqs: List[int]) -> List[str]:
    """Plain text rows ``Hz,...`` / ``R,...`` / ``L,...`` for a console summary."""
    def row_for(ear):
        em = results_map.get(ear, {}) or {}
        return [str(em[f]) if em.get(f) is not None else '-' for f in freqs]
    return [
        "Hz," + ",".join(str(f) for f in freqs),
        "R," + ",".join(row_for('R')),
        "L," + ",".join(row_for('L')),
    ]
