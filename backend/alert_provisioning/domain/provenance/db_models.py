from __future__ import annotations

from sqlalchemy import BigInteger, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from alert_provisioning.domain.provenance.schemas import Provenance, ProvenanceRecordType
from alert_provisioning.infra.db import ID_TYPE, Base


class ProvenanceRecord(Base):
    __tablename__ = "provenance_records"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    org_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    record_key: Mapped[str] = mapped_column(String(40), nullable=False)
    record_type: Mapped[str] = mapped_column(
        String(64), nullable=False, default=ProvenanceRecordType.ALERT_RULE.value
    )
    provenance: Mapped[str] = mapped_column(
        String(32), nullable=False, default=Provenance.NONE.value, server_default=""
    )

    __table_args__ = (
        UniqueConstraint("org_id", "record_key", "record_type", name="uq_provenance_records_key"),
        Index("ix_provenance_records_org_type", "org_id", "record_type"),
    )
