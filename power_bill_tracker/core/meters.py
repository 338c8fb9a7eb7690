"""
Subject to meter code mapping.

Each billed subject (account number) is read from one physical meter. The
mapping is passed into the reconciliation and import paths rather than
read from module state, so a deployment can supply its own via config.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass(frozen=True)
class MeterMapping:
    """Static lookup from subject number to meter code."""
    meters: Dict[str, str] = field(default_factory=dict)

    def resolve(self, subject_number: str, meter_code: Optional[str] = None) -> str:
        """Meter code for a subject.

        An explicitly supplied code wins. Unknown subjects resolve to an
        empty string, which is not an error.
        """
        if meter_code:
            return meter_code
        return self.meters.get(str(subject_number), "")

    def subjects(self) -> List[str]:
        """Known subject numbers in configuration order."""
        return list(self.meters)


DEFAULT_METER_MAPPING = MeterMapping({
    "012892858": "19000343",
    "012642429": "19126185",
})
