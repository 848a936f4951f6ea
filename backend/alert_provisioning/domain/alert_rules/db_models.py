from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import sqlalchemy as sa
from sqlalchemy import BigInteger, DateTime, Index, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from alert_provisioning.domain.alert_rules.schemas import ExecErrState, NoDataState
from alert_provisioning.infra.db import ID_TYPE, Base


class UTCDateTime(TypeDecorator):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):  # type: ignore[override]
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):  # type: ignore[override]
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class AlertRuleRecord(Base):
    __tablename__ = "alert_rules"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    org_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    uid: Mapped[str] = mapped_column(String(40), nullable=False)
    title: Mapped[str] = mapped_column(String(190), nullable=False)
    condition: Mapped[str] = mapped_column(String(190), nullable=False)
    data: Mapped[list[Any]] = mapped_column(
        sa.JSON(),
        nullable=False,
        default=list,
        server_default=sa.text("'[]'"),
    )
    interval_seconds: Mapped[int] = mapped_column(BigInteger, nullable=False, default=60)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    namespace_uid: Mapped[str] = mapped_column(String(40), nullable=False, default="", server_default="")
    rule_group: Mapped[str] = mapped_column(String(190), nullable=False, default="", server_default="")
    for_microseconds: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    no_data_state: Mapped[str] = mapped_column(
        String(15), nullable=False, default=NoDataState.NO_DATA.value
    )
    exec_err_state: Mapped[str] = mapped_column(
        String(15), nullable=False, default=ExecErrState.ALERTING.value
    )
    labels: Mapped[dict[str, Any]] = mapped_column(
        sa.JSON(),
        nullable=False,
        default=dict,
        server_default=sa.text("'{}'"),
    )
    annotations: Mapped[dict[str, Any]] = mapped_column(
        sa.JSON(),
        nullable=False,
        default=dict,
        server_default=sa.text("'{}'"),
    )
    dashboard_uid: Mapped[str | None] = mapped_column(String(40))
    panel_id: Mapped[int | None] = mapped_column(BigInteger)
    updated: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("org_id", "uid", name="uq_alert_rules_org_uid"),
        UniqueConstraint("org_id", "namespace_uid", "title", name="uq_alert_rules_org_namespace_title"),
        Index("ix_alert_rules_group", "org_id", "namespace_uid", "rule_group"),
    )


class AlertRuleVersionRecord(Base):
    __tablename__ = "alert_rule_versions"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    rule_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    rule_org_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    rule_uid: Mapped[str] = mapped_column(String(40), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    parent_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    snapshot: Mapped[dict[str, Any]] = mapped_column(sa.JSON(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("rule_org_id", "rule_uid", "version", name="uq_alert_rule_versions_version"),
        Index("ix_alert_rule_versions_rule", "rule_org_id", "rule_uid"),
    )
