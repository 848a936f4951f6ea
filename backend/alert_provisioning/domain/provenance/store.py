from __future__ import annotations

from typing import Protocol

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from alert_provisioning.domain.errors import NotFoundError
from alert_provisioning.domain.provenance.db_models import ProvenanceRecord
from alert_provisioning.domain.provenance.schemas import Provenance, ProvenanceRecordType


class ProvenanceStore(Protocol):
    async def get_provenance(
        self, session: AsyncSession, org_id: int, uid: str, *, for_update: bool = False
    ) -> Provenance: ...

    async def set_provenance(
        self, session: AsyncSession, org_id: int, uid: str, provenance: Provenance
    ) -> None: ...

    async def get_provenances(self, session: AsyncSession, org_id: int) -> dict[str, Provenance]: ...


class DBProvenanceStore(ProvenanceStore):
    def __init__(self, record_type: ProvenanceRecordType = ProvenanceRecordType.ALERT_RULE) -> None:
        self._record_type = record_type

    def _lookup(self, org_id: int, uid: str, *, for_update: bool = False) -> sa.Select:
        stmt = sa.select(ProvenanceRecord).where(
            ProvenanceRecord.org_id == org_id,
            ProvenanceRecord.record_key == uid,
            ProvenanceRecord.record_type == self._record_type.value,
        )
        if for_update:
            # row lock on PostgreSQL; SQLite writers already hold the database lock
            stmt = stmt.with_for_update()
        return stmt

    async def get_provenance(
        self, session: AsyncSession, org_id: int, uid: str, *, for_update: bool = False
    ) -> Provenance:
        record = await session.scalar(self._lookup(org_id, uid, for_update=for_update))
        if record is None:
            raise NotFoundError(detail=f"no provenance recorded for alert rule {uid} in org {org_id}")
        return Provenance(record.provenance)

    async def set_provenance(
        self, session: AsyncSession, org_id: int, uid: str, provenance: Provenance
    ) -> None:
        record = await session.scalar(self._lookup(org_id, uid, for_update=True))
        if record is None:
            session.add(
                ProvenanceRecord(
                    org_id=org_id,
                    record_key=uid,
                    record_type=self._record_type.value,
                    provenance=provenance.value,
                )
            )
        elif record.provenance != provenance.value:
            record.provenance = provenance.value
        await session.flush()

    async def get_provenances(self, session: AsyncSession, org_id: int) -> dict[str, Provenance]:
        stmt = sa.select(ProvenanceRecord.record_key, ProvenanceRecord.provenance).where(
            ProvenanceRecord.org_id == org_id,
            ProvenanceRecord.record_type == self._record_type.value,
        )
        result = await session.execute(stmt)
        return {key: Provenance(value) for key, value in result.all()}
