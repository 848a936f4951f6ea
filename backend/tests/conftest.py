import asyncio
import sys
from datetime import timedelta
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from alert_provisioning.domain.alert_rules.schemas import (
    AlertQuery,
    AlertRule,
    ExecErrState,
    NoDataState,
    RelativeTimeRange,
)
from alert_provisioning.domain.alert_rules.service import AlertRuleService, AlertRuleServiceConfig
from alert_provisioning.domain.alert_rules.store import DBRuleStore
from alert_provisioning.domain.provenance.store import DBProvenanceStore
from alert_provisioning.infra.db import Base, create_schema
from alert_provisioning.infra.metrics import Metrics
from alert_provisioning.infra.transactions import TransactionManager

DEFAULT_ORG_ID = 1


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="session")
def test_engine(tmp_path_factory):
    db_path = tmp_path_factory.mktemp("db") / "test.db"
    # NullPool: every session opens its own connection, so concurrent
    # transactions contend on the SQLite write lock like separate clients.
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{db_path}",
        connect_args={"timeout": 30},
        poolclass=NullPool,
    )
    asyncio.run(create_schema(engine))
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture(scope="session")
def async_session_maker(test_engine):
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest.fixture(autouse=True)
def clean_database(test_engine):
    async def truncate_tables() -> None:
        async with test_engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                await conn.execute(table.delete())

    asyncio.run(truncate_tables())
    yield


@pytest.fixture()
def metrics_client():
    return Metrics(enabled=True)


@pytest.fixture()
def transactions(async_session_maker, metrics_client):
    return TransactionManager(async_session_maker, timeout=30, metrics=metrics_client)


@pytest.fixture()
def rule_service(transactions, metrics_client):
    return AlertRuleService(
        rule_store=DBRuleStore(),
        provenance_store=DBProvenanceStore(),
        transactions=transactions,
        config=AlertRuleServiceConfig(base_interval_seconds=10, default_interval_seconds=60),
        metrics=metrics_client,
    )


@pytest.fixture()
def dummy_rule():
    def _build(title: str, org_id: int = DEFAULT_ORG_ID, **overrides) -> AlertRule:
        fields = {
            "org_id": org_id,
            "title": title,
            "condition": "A",
            "version": 1,
            "interval_seconds": 60,
            "data": [
                AlertQuery(
                    ref_id="A",
                    datasource_uid="prometheus",
                    model={"expr": "up == 0"},
                    relative_time_range=RelativeTimeRange(from_=timedelta(seconds=60), to=timedelta(0)),
                )
            ],
            "rule_group": "my-cool-group",
            "for_": timedelta(seconds=60),
            "no_data_state": NoDataState.OK,
            "exec_err_state": ExecErrState.OK,
        }
        fields.update(overrides)
        return AlertRule(**fields)

    return _build
