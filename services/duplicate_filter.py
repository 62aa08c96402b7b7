"""
Optional duplicate pre-pass over normalized rows.

Two independent checks, each switched on separately: repeated client
names and repeated client phone numbers within the uploaded file. When a
check is on, every later row repeating a value already seen is removed
before the entity diff runs. This is unrelated to the diff engine's own
per-key deduplication, which always runs.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Set

from services.row_normalizer import NormalizedRow

logger = logging.getLogger(__name__)


@dataclass
class DuplicateFilterResult:
    kept: List[NormalizedRow] = field(default_factory=list)
    duplicate_names: List[int] = field(default_factory=list)
    duplicate_phones: List[int] = field(default_factory=list)

    @property
    def removed(self) -> int:
        return len(self.duplicate_names) + len(self.duplicate_phones)


class DuplicateFilter:
    """Drop rows repeating a client name and/or phone seen on an earlier row."""

    def __init__(self, filter_names: bool = False, filter_phones: bool = False, reporter=None):
        self.filter_names = filter_names
        self.filter_phones = filter_phones
        self.reporter = reporter

    @property
    def enabled(self) -> bool:
        return self.filter_names or self.filter_phones

    def apply(self, rows: List[NormalizedRow]) -> DuplicateFilterResult:
        result = DuplicateFilterResult()
        if not self.enabled:
            result.kept = list(rows)
            return result

        names: Set[str] = set()
        phones: Set[str] = set()

        for row in rows:
            name = _fold(row.client_name)
            phone = _fold(row.client_phone)

            if self.filter_names and name is not None and name in names:
                result.duplicate_names.append(row.index)
                self._warn(f"{row.label}: duplicate client name '{row.client_name}', row removed")
                continue
            if self.filter_phones and phone is not None and phone in phones:
                result.duplicate_phones.append(row.index)
                self._warn(f"{row.label}: duplicate client phone '{row.client_phone}', row removed")
                continue

            if name is not None:
                names.add(name)
            if phone is not None:
                phones.add(phone)
            result.kept.append(row)

        logger.info(f"Duplicate filter removed {result.removed} of {len(rows)} rows")
        return result

    def _warn(self, message: str):
        if self.reporter is not None:
            self.reporter.warning(message)
        else:
            logger.warning(message)


def _fold(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    return value.strip().lower()
