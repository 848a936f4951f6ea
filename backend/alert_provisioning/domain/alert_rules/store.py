from __future__ import annotations

import hashlib
import uuid
from datetime import datetime, timedelta, timezone
from typing import Iterable, Protocol

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from alert_provisioning.domain.alert_rules.db_models import AlertRuleRecord, AlertRuleVersionRecord
from alert_provisioning.domain.alert_rules.schemas import (
    AlertQuery,
    AlertRule,
    AlertRuleVersion,
    ExecErrState,
    NoDataState,
    RuleGroupKey,
)
from alert_provisioning.domain.errors import NotFoundError
from alert_provisioning.infra.db import dialect_name


class RuleStore(Protocol):
    async def insert_rule(self, session: AsyncSession, rule: AlertRule) -> tuple[int, str]: ...

    async def get_rule(
        self, session: AsyncSession, org_id: int, uid: str, *, for_update: bool = False
    ) -> AlertRule: ...

    async def update_rule(self, session: AsyncSession, rule: AlertRule) -> AlertRule: ...

    async def lock_groups(self, session: AsyncSession, keys: Iterable[RuleGroupKey]) -> None: ...

    async def get_group_interval(
        self,
        session: AsyncSession,
        org_id: int,
        namespace_uid: str,
        rule_group: str,
        *,
        exclude_uid: str | None = None,
    ) -> tuple[int, bool]: ...

    async def update_group_interval(
        self,
        session: AsyncSession,
        org_id: int,
        namespace_uid: str,
        rule_group: str,
        interval_seconds: int,
    ) -> list[str]: ...

    async def list_rules(
        self,
        session: AsyncSession,
        org_id: int,
        *,
        namespace_uid: str | None = None,
        rule_group: str | None = None,
    ) -> list[AlertRule]: ...

    async def list_versions(self, session: AsyncSession, org_id: int, uid: str) -> list[AlertRuleVersion]: ...


def generate_uid() -> str:
    return uuid.uuid4().hex


def group_lock_key(org_id: int, namespace_uid: str, rule_group: str) -> int:
    digest = hashlib.blake2b(f"{org_id}/{namespace_uid}/{rule_group}".encode(), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_schema(record: AlertRuleRecord) -> AlertRule:
    return AlertRule(
        id=record.id,
        org_id=record.org_id,
        uid=record.uid,
        title=record.title,
        condition=record.condition,
        data=[AlertQuery.model_validate(item) for item in record.data or []],
        interval_seconds=record.interval_seconds,
        version=record.version,
        namespace_uid=record.namespace_uid,
        rule_group=record.rule_group,
        for_=timedelta(microseconds=record.for_microseconds),
        no_data_state=NoDataState(record.no_data_state),
        exec_err_state=ExecErrState(record.exec_err_state),
        labels=dict(record.labels or {}),
        annotations=dict(record.annotations or {}),
        dashboard_uid=record.dashboard_uid,
        panel_id=record.panel_id,
        updated=record.updated,
    )


def _apply_definition(record: AlertRuleRecord, rule: AlertRule) -> None:
    record.title = rule.title
    record.condition = rule.condition
    record.data = [query.model_dump(mode="json") for query in rule.data]
    record.interval_seconds = rule.interval_seconds
    record.namespace_uid = rule.namespace_uid
    record.rule_group = rule.rule_group
    record.for_microseconds = rule.for_ // timedelta(microseconds=1)
    record.no_data_state = rule.no_data_state.value
    record.exec_err_state = rule.exec_err_state.value
    record.labels = dict(rule.labels)
    record.annotations = dict(rule.annotations)
    record.dashboard_uid = rule.dashboard_uid
    record.panel_id = rule.panel_id


class DBRuleStore(RuleStore):
    """SQLAlchemy rule store. Every write also appends an ``alert_rule_versions`` row."""

    async def _lock_group(self, session: AsyncSession, org_id: int, namespace_uid: str, rule_group: str) -> None:
        # Held until the transaction ends. SQLite already holds the database
        # write lock from BEGIN IMMEDIATE.
        if dialect_name(session) != "postgresql":
            return
        await session.execute(
            sa.text("SELECT pg_advisory_xact_lock(:key)"),
            {"key": group_lock_key(org_id, namespace_uid, rule_group)},
        )

    async def _get_record(
        self, session: AsyncSession, org_id: int, uid: str, *, for_update: bool = False
    ) -> AlertRuleRecord:
        stmt = sa.select(AlertRuleRecord).where(AlertRuleRecord.org_id == org_id, AlertRuleRecord.uid == uid)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        record = await session.scalar(stmt)
        if record is None:
            raise NotFoundError(detail=f"alert rule {uid} not found in org {org_id}")
        return record

    async def _record_version(self, session: AsyncSession, record: AlertRuleRecord, parent_version: int) -> None:
        session.add(
            AlertRuleVersionRecord(
                rule_id=record.id,
                rule_org_id=record.org_id,
                rule_uid=record.uid,
                version=record.version,
                parent_version=parent_version,
                snapshot=_to_schema(record).model_dump(mode="json"),
                created_at=record.updated,
            )
        )
        await session.flush()

    async def insert_rule(self, session: AsyncSession, rule: AlertRule) -> tuple[int, str]:
        record = AlertRuleRecord(
            org_id=rule.org_id,
            uid=rule.uid or generate_uid(),
            version=1,
            updated=_now(),
        )
        _apply_definition(record, rule)
        session.add(record)
        await session.flush()
        await self._record_version(session, record, parent_version=0)
        return record.id, record.uid

    async def get_rule(
        self, session: AsyncSession, org_id: int, uid: str, *, for_update: bool = False
    ) -> AlertRule:
        return _to_schema(await self._get_record(session, org_id, uid, for_update=for_update))

    async def lock_groups(self, session: AsyncSession, keys: Iterable[RuleGroupKey]) -> None:
        """Take the advisory locks of several groups, always in lock key order."""
        ordered = sorted(
            set(keys),
            key=lambda item: group_lock_key(item.org_id, item.namespace_uid, item.rule_group),
        )
        for key in ordered:
            await self._lock_group(session, key.org_id, key.namespace_uid, key.rule_group)

    async def update_rule(self, session: AsyncSession, rule: AlertRule) -> AlertRule:
        record = await self._get_record(session, rule.org_id, rule.uid, for_update=True)
        parent_version = record.version
        _apply_definition(record, rule)
        record.version = parent_version + 1
        record.updated = _now()
        await session.flush()
        await self._record_version(session, record, parent_version=parent_version)
        return _to_schema(record)

    async def get_group_interval(
        self,
        session: AsyncSession,
        org_id: int,
        namespace_uid: str,
        rule_group: str,
        *,
        exclude_uid: str | None = None,
    ) -> tuple[int, bool]:
        await self._lock_group(session, org_id, namespace_uid, rule_group)
        stmt = (
            sa.select(AlertRuleRecord.interval_seconds)
            .where(
                AlertRuleRecord.org_id == org_id,
                AlertRuleRecord.namespace_uid == namespace_uid,
                AlertRuleRecord.rule_group == rule_group,
            )
            .order_by(AlertRuleRecord.id.asc())
            .limit(1)
        )
        if exclude_uid is not None:
            stmt = stmt.where(AlertRuleRecord.uid != exclude_uid)
        interval = await session.scalar(stmt)
        if interval is None:
            return 0, False
        return int(interval), True

    async def update_group_interval(
        self,
        session: AsyncSession,
        org_id: int,
        namespace_uid: str,
        rule_group: str,
        interval_seconds: int,
    ) -> list[str]:
        await self._lock_group(session, org_id, namespace_uid, rule_group)
        stmt = (
            sa.select(AlertRuleRecord)
            .where(
                AlertRuleRecord.org_id == org_id,
                AlertRuleRecord.namespace_uid == namespace_uid,
                AlertRuleRecord.rule_group == rule_group,
            )
            .order_by(AlertRuleRecord.id.asc())
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        records = list(await session.scalars(stmt))
        now = _now()
        for record in records:
            parent_version = record.version
            record.interval_seconds = interval_seconds
            record.version = parent_version + 1
            record.updated = now
            await self._record_version(session, record, parent_version=parent_version)
        return [record.uid for record in records]

    async def list_rules(
        self,
        session: AsyncSession,
        org_id: int,
        *,
        namespace_uid: str | None = None,
        rule_group: str | None = None,
    ) -> list[AlertRule]:
        stmt = sa.select(AlertRuleRecord).where(AlertRuleRecord.org_id == org_id)
        if namespace_uid is not None:
            stmt = stmt.where(AlertRuleRecord.namespace_uid == namespace_uid)
        if rule_group is not None:
            stmt = stmt.where(AlertRuleRecord.rule_group == rule_group)
        stmt = stmt.order_by(
            AlertRuleRecord.namespace_uid.asc(),
            AlertRuleRecord.rule_group.asc(),
            AlertRuleRecord.id.asc(),
        )
        return [_to_schema(record) for record in await session.scalars(stmt)]

    async def list_versions(self, session: AsyncSession, org_id: int, uid: str) -> list[AlertRuleVersion]:
        stmt = (
            sa.select(AlertRuleVersionRecord)
            .where(AlertRuleVersionRecord.rule_org_id == org_id, AlertRuleVersionRecord.rule_uid == uid)
            .order_by(AlertRuleVersionRecord.version.desc())
        )
        return [
            AlertRuleVersion(
                rule_id=entry.rule_id,
                rule_uid=entry.rule_uid,
                org_id=entry.rule_org_id,
                version=entry.version,
                parent_version=entry.parent_version,
                created_at=entry.created_at,
                rule=AlertRule.model_validate(entry.snapshot),
            )
            for entry in await session.scalars(stmt)
        ]
