from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from alert_provisioning.domain.alert_rules.service import AlertRuleService, AlertRuleServiceConfig
from alert_provisioning.domain.alert_rules.store import DBRuleStore
from alert_provisioning.domain.provenance.store import DBProvenanceStore
from alert_provisioning.infra.db import dispose_engine, get_session_factory
from alert_provisioning.infra.metrics import Metrics, configure_metrics
from alert_provisioning.infra.transactions import TransactionManager


@dataclass
class ProvisioningServices:
    """Typed container for the wired provisioning runtime."""

    alert_rules: AlertRuleService
    transactions: TransactionManager
    metrics: Metrics
    engine: AsyncEngine | None = None

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
        else:
            await dispose_engine()


def build_provisioning_services(
    app_settings,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    metrics: Metrics | None = None,
    engine: AsyncEngine | None = None,
) -> ProvisioningServices:
    metrics_client = metrics or configure_metrics(app_settings.metrics_enabled)
    transactions = TransactionManager(
        session_factory or get_session_factory(),
        timeout=app_settings.transaction_timeout,
        metrics=metrics_client,
    )
    alert_rules = AlertRuleService(
        rule_store=DBRuleStore(),
        provenance_store=DBProvenanceStore(),
        transactions=transactions,
        config=AlertRuleServiceConfig.from_settings(app_settings),
        metrics=metrics_client,
    )
    return ProvisioningServices(
        alert_rules=alert_rules,
        transactions=transactions,
        metrics=metrics_client,
        engine=engine,
    )
