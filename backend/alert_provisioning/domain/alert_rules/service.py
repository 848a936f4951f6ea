from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from alert_provisioning.domain.alert_rules.schemas import (
    AlertRule,
    AlertRuleVersion,
    ProvisionedAlertRule,
    RuleGroup,
)
from alert_provisioning.domain.alert_rules.store import RuleStore
from alert_provisioning.domain.alert_rules.validation import validate_alert_rule, validate_interval
from alert_provisioning.domain.errors import DomainError, NotFoundError, ProvenanceConflictError
from alert_provisioning.domain.provenance.schemas import Provenance, is_transition_allowed
from alert_provisioning.domain.provenance.store import ProvenanceStore
from alert_provisioning.infra.logging import log_context
from alert_provisioning.infra.metrics import Metrics, metrics as default_metrics
from alert_provisioning.infra.transactions import DEFAULT_TIMEOUT, TransactionManager

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class AlertRuleServiceConfig:
    base_interval_seconds: int = 10
    default_interval_seconds: int = 60

    @classmethod
    def from_settings(cls, app_settings) -> "AlertRuleServiceConfig":
        return cls(
            base_interval_seconds=app_settings.base_interval_seconds,
            default_interval_seconds=app_settings.default_interval_seconds,
        )


class AlertRuleService:
    """Single writer of alert rule definitions and their provenance.

    Every public operation runs in exactly one transaction. Two invariants are
    enforced here:

    * provenance only moves forward: an unmanaged rule may be claimed by the
      API or by file provisioning, after which only that channel may write it;
    * every member of a rule group shares one evaluation interval, and rules
      joining an existing group take the group's interval whatever they asked
      for.
    """

    def __init__(
        self,
        *,
        rule_store: RuleStore,
        provenance_store: ProvenanceStore,
        transactions: TransactionManager,
        config: AlertRuleServiceConfig,
        metrics: Metrics | None = None,
    ) -> None:
        self._rule_store = rule_store
        self._provenance_store = provenance_store
        self._transactions = transactions
        self._config = config
        self._metrics = metrics or default_metrics

    async def _execute(
        self,
        operation: str,
        work: Callable[[AsyncSession], Awaitable[T]],
        *,
        org_id: int | None = None,
        precheck: Callable[[], None] | None = None,
        write: bool = True,
        timeout: float | None | object = DEFAULT_TIMEOUT,
    ) -> T:
        with log_context(operation=operation, org_id=org_id):
            try:
                if precheck is not None:
                    precheck()
                result = await self._transactions.run_in_transaction(
                    work, operation=operation, write=write, timeout=timeout
                )
            except DomainError as exc:
                self._metrics.record_operation(operation, exc.kind.value)
                raise
        self._metrics.record_operation(operation, "success")
        return result

    def _resolve_interval(self, group_interval: int, group_exists: bool, requested: int, fallback: int) -> int:
        if group_exists:
            return group_interval
        if requested > 0:
            return requested
        return fallback

    async def create_alert_rule(
        self,
        rule: AlertRule,
        provenance: Provenance,
        *,
        timeout: float | None | object = DEFAULT_TIMEOUT,
    ) -> AlertRule:
        def precheck() -> None:
            validate_alert_rule(rule, base_interval_seconds=self._config.base_interval_seconds)

        async def work(session: AsyncSession) -> AlertRule:
            group_interval, group_exists = await self._rule_store.get_group_interval(
                session, rule.org_id, rule.namespace_uid, rule.rule_group
            )
            interval = self._resolve_interval(
                group_interval,
                group_exists,
                rule.interval_seconds,
                self._config.default_interval_seconds,
            )
            _, uid = await self._rule_store.insert_rule(session, rule.model_copy(update={"interval_seconds": interval}))
            await self._provenance_store.set_provenance(session, rule.org_id, uid, provenance)
            return await self._rule_store.get_rule(session, rule.org_id, uid)

        stored = await self._execute(
            "create_alert_rule", work, org_id=rule.org_id, precheck=precheck, timeout=timeout
        )
        logger.info(
            "alert_rule_created",
            extra={
                "extra": {
                    "org_id": stored.org_id,
                    "uid": stored.uid,
                    "rule_group": stored.rule_group,
                    "interval_seconds": stored.interval_seconds,
                    "requested_interval_seconds": rule.interval_seconds,
                    "provenance": provenance.label,
                }
            },
        )
        return stored

    async def get_alert_rule(
        self,
        org_id: int,
        uid: str,
        *,
        timeout: float | None | object = DEFAULT_TIMEOUT,
    ) -> tuple[AlertRule, Provenance]:
        async def work(session: AsyncSession) -> tuple[AlertRule, Provenance]:
            rule = await self._rule_store.get_rule(session, org_id, uid)
            provenance = await self._provenance_store.get_provenance(session, org_id, uid)
            return rule, provenance

        return await self._execute("get_alert_rule", work, org_id=org_id, write=False, timeout=timeout)

    async def update_alert_rule(
        self,
        rule: AlertRule,
        provenance: Provenance,
        *,
        timeout: float | None | object = DEFAULT_TIMEOUT,
    ) -> AlertRule:
        def precheck() -> None:
            validate_alert_rule(rule, base_interval_seconds=self._config.base_interval_seconds)

        async def work(session: AsyncSession) -> AlertRule:
            current = await self._provenance_store.get_provenance(
                session, rule.org_id, rule.uid, for_update=True
            )
            if not is_transition_allowed(current, provenance):
                self._metrics.record_provenance_conflict(current.value, provenance.value)
                logger.warning(
                    "alert_rule_provenance_conflict",
                    extra={
                        "extra": {
                            "org_id": rule.org_id,
                            "uid": rule.uid,
                            "current_provenance": current.label,
                            "requested_provenance": provenance.label,
                        }
                    },
                )
                raise ProvenanceConflictError(
                    detail=f"cannot change provenance from '{current.label}' to '{provenance.label}'",
                    current=current.value,
                    requested=provenance.value,
                )
            stored = await self._rule_store.get_rule(session, rule.org_id, rule.uid)
            # group locks before the row lock, the order update_alert_group uses
            await self._rule_store.lock_groups(session, [stored.group_key, rule.group_key])
            stored = await self._rule_store.get_rule(session, rule.org_id, rule.uid, for_update=True)
            group_interval, group_exists = await self._rule_store.get_group_interval(
                session,
                rule.org_id,
                rule.namespace_uid,
                rule.rule_group,
                exclude_uid=rule.uid,
            )
            if not group_exists and rule.group_key == stored.group_key:
                # only update_alert_group changes the interval of an existing group
                interval = stored.interval_seconds
            else:
                interval = self._resolve_interval(
                    group_interval,
                    group_exists,
                    rule.interval_seconds,
                    stored.interval_seconds,
                )
            updated = await self._rule_store.update_rule(
                session, rule.model_copy(update={"interval_seconds": interval})
            )
            await self._provenance_store.set_provenance(session, rule.org_id, rule.uid, provenance)
            return updated

        updated = await self._execute(
            "update_alert_rule", work, org_id=rule.org_id, precheck=precheck, timeout=timeout
        )
        logger.info(
            "alert_rule_updated",
            extra={
                "extra": {
                    "org_id": updated.org_id,
                    "uid": updated.uid,
                    "version": updated.version,
                    "provenance": provenance.label,
                }
            },
        )
        return updated

    async def update_alert_group(
        self,
        org_id: int,
        namespace_uid: str,
        rule_group: str,
        interval_seconds: int,
        *,
        timeout: float | None | object = DEFAULT_TIMEOUT,
    ) -> None:
        """Set the evaluation interval of every rule in the group.

        A group without members is accepted and nothing is written.
        """

        def precheck() -> None:
            validate_interval(interval_seconds, base_interval_seconds=self._config.base_interval_seconds)

        async def work(session: AsyncSession) -> list[str]:
            return await self._rule_store.update_group_interval(
                session, org_id, namespace_uid, rule_group, interval_seconds
            )

        uids = await self._execute(
            "update_alert_group", work, org_id=org_id, precheck=precheck, timeout=timeout
        )
        logger.info(
            "alert_rule_group_updated",
            extra={
                "extra": {
                    "org_id": org_id,
                    "namespace_uid": namespace_uid,
                    "rule_group": rule_group,
                    "interval_seconds": interval_seconds,
                    "rules_affected": len(uids),
                }
            },
        )

    async def list_alert_rules(
        self,
        org_id: int,
        *,
        namespace_uid: str | None = None,
        rule_group: str | None = None,
        timeout: float | None | object = DEFAULT_TIMEOUT,
    ) -> list[ProvisionedAlertRule]:
        async def work(session: AsyncSession) -> list[ProvisionedAlertRule]:
            rules = await self._rule_store.list_rules(
                session, org_id, namespace_uid=namespace_uid, rule_group=rule_group
            )
            provenances = await self._provenance_store.get_provenances(session, org_id)
            return [
                ProvisionedAlertRule(rule=rule, provenance=provenances.get(rule.uid, Provenance.NONE))
                for rule in rules
            ]

        return await self._execute("list_alert_rules", work, org_id=org_id, write=False, timeout=timeout)

    async def get_rule_group(
        self,
        org_id: int,
        namespace_uid: str,
        rule_group: str,
        *,
        timeout: float | None | object = DEFAULT_TIMEOUT,
    ) -> RuleGroup:
        async def work(session: AsyncSession) -> RuleGroup:
            rules = await self._rule_store.list_rules(
                session, org_id, namespace_uid=namespace_uid, rule_group=rule_group
            )
            if not rules:
                raise NotFoundError(detail=f"rule group '{rule_group}' not found in namespace '{namespace_uid}'")
            return RuleGroup(
                org_id=org_id,
                namespace_uid=namespace_uid,
                rule_group=rule_group,
                interval_seconds=rules[0].interval_seconds,
                rules=rules,
            )

        return await self._execute("get_rule_group", work, org_id=org_id, write=False, timeout=timeout)

    async def get_alert_rule_versions(
        self,
        org_id: int,
        uid: str,
        *,
        timeout: float | None | object = DEFAULT_TIMEOUT,
    ) -> list[AlertRuleVersion]:
        async def work(session: AsyncSession) -> list[AlertRuleVersion]:
            await self._rule_store.get_rule(session, org_id, uid)
            return await self._rule_store.list_versions(session, org_id, uid)

        return await self._execute(
            "get_alert_rule_versions", work, org_id=org_id, write=False, timeout=timeout
        )
