from __future__ import annotations

from enum import Enum


class Provenance(str, Enum):
    NONE = ""
    API = "api"
    FILE = "file"

    @property
    def label(self) -> str:
        return self.value or "none"


class ProvenanceRecordType(str, Enum):
    ALERT_RULE = "alertRule"


def is_transition_allowed(current: Provenance, target: Provenance) -> bool:
    """Return whether a rule owned by ``current`` may be rewritten as ``target``.

    An unmanaged rule can be claimed by either channel; once claimed, only the
    same channel may write it again.
    """
    return target == current or current == Provenance.NONE
