from alert_provisioning.domain.provenance.db_models import ProvenanceRecord
from alert_provisioning.domain.provenance.schemas import (
    Provenance,
    ProvenanceRecordType,
    is_transition_allowed,
)
from alert_provisioning.domain.provenance.store import DBProvenanceStore, ProvenanceStore

__all__ = [
    "DBProvenanceStore",
    "Provenance",
    "ProvenanceRecord",
    "ProvenanceRecordType",
    "ProvenanceStore",
    "is_transition_allowed",
]
