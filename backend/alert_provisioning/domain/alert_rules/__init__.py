from alert_provisioning.domain.alert_rules.schemas import (
    AlertQuery,
    AlertRule,
    AlertRuleVersion,
    ExecErrState,
    NoDataState,
    ProvisionedAlertRule,
    RelativeTimeRange,
    RuleGroup,
    RuleGroupKey,
)
from alert_provisioning.domain.alert_rules.service import AlertRuleService, AlertRuleServiceConfig
from alert_provisioning.domain.alert_rules.store import DBRuleStore, RuleStore

__all__ = [
    "AlertQuery",
    "AlertRule",
    "AlertRuleService",
    "AlertRuleServiceConfig",
    "AlertRuleVersion",
    "DBRuleStore",
    "ExecErrState",
    "NoDataState",
    "ProvisionedAlertRule",
    "RelativeTimeRange",
    "RuleGroup",
    "RuleGroupKey",
    "RuleStore",
]
