from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from alert_provisioning.domain.provenance.schemas import Provenance

EXPRESSION_DATASOURCE_UID = "__expr__"


class NoDataState(str, Enum):
    ALERTING = "Alerting"
    NO_DATA = "NoData"
    OK = "OK"


class ExecErrState(str, Enum):
    ALERTING = "Alerting"
    ERROR = "Error"
    OK = "OK"


class RelativeTimeRange(BaseModel):
    """Offsets back from evaluation time; ``from_`` is the older edge."""

    model_config = ConfigDict(populate_by_name=True)

    from_: timedelta = Field(default=timedelta(0), alias="from")
    to: timedelta = timedelta(0)


class AlertQuery(BaseModel):
    ref_id: str
    query_type: str = ""
    datasource_uid: str = ""
    model: dict[str, Any] = Field(default_factory=dict)
    relative_time_range: RelativeTimeRange = Field(default_factory=RelativeTimeRange)

    @property
    def is_expression(self) -> bool:
        return self.datasource_uid == EXPRESSION_DATASOURCE_UID


@dataclass(frozen=True)
class RuleGroupKey:
    org_id: int
    namespace_uid: str
    rule_group: str


class AlertRule(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int = 0
    org_id: int
    uid: str = ""
    title: str = ""
    condition: str = ""
    data: list[AlertQuery] = Field(default_factory=list)
    interval_seconds: int = 0
    version: int = 0
    namespace_uid: str = ""
    rule_group: str = ""
    for_: timedelta = Field(default=timedelta(0), alias="for")
    no_data_state: NoDataState = NoDataState.NO_DATA
    exec_err_state: ExecErrState = ExecErrState.ALERTING
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    dashboard_uid: str | None = None
    panel_id: int | None = None
    updated: datetime | None = None

    @property
    def group_key(self) -> RuleGroupKey:
        return RuleGroupKey(self.org_id, self.namespace_uid, self.rule_group)


class ProvisionedAlertRule(BaseModel):
    rule: AlertRule
    provenance: Provenance


class RuleGroup(BaseModel):
    org_id: int
    namespace_uid: str
    rule_group: str
    interval_seconds: int
    rules: list[AlertRule]


class AlertRuleVersion(BaseModel):
    rule_id: int
    rule_uid: str
    org_id: int
    version: int
    parent_version: int
    created_at: datetime
    rule: AlertRule
