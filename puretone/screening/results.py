from __future__ import annotations
from typing import Dict, List, Optional, Tuple

from .plan import Ear, Masking, ResponseRecord, TestStep


class ResultsStore:
    """Thresholds captured during a session, one per (frequency, ear, masking).

    Writing the same combination again replaces the previous threshold, so a
    re-tested frequency keeps only its latest value.
    """

    def __init__(self):
        self._rows: Dict[Tuple[int, Ear, Masking], ResponseRecord] = {}

    def add_result(self, step: TestStep, freq_hz: int, dbhl: int) -> ResponseRecord:
        record = ResponseRecord(frequency=int(freq_hz), ear=step.ear, masking=step.masking, threshold_db=int(dbhl))
        # drop then insert so iteration order follows capture order
        self._rows.pop(record.key, None)
        self._rows[record.key] = record
        return record

    def get(self, step: TestStep, freq_hz: int) -> Optional[ResponseRecord]:
        return self._rows.get((int(freq_hz), step.ear, step.masking))

    def has_result(self, step: TestStep, freq_hz: int) -> bool:
        return self.get(step, freq_hz) is not None

    def records(self) -> List[ResponseRecord]:
        return list(self._rows.values())

    def __len__(self) -> int:
        return len(self._rows)

    def to_map_by_ear(self, masking: Masking = Masking.UNMASKED) -> Dict[str, Dict[int, int]]:
        """Aggregate into {'L': {freq: db}, 'R': {...}} for one masking state."""
        out: Dict[str, Dict[int, int]] = {'L': {}, 'R': {}}
        for r in self._rows.values():
            if r.masking != masking:
                continue
            out[r.ear.value][r.frequency] = r.threshold_db
        return out
