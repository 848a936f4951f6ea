from __future__ import annotations

import time

import anyio
import pytest
import sqlalchemy as sa

from alert_provisioning.domain.alert_rules.db_models import AlertRuleRecord
from alert_provisioning.domain.errors import ErrorKind, NotFoundError, StoreError
from alert_provisioning.domain.provenance.db_models import ProvenanceRecord
from alert_provisioning.domain.provenance.schemas import Provenance
from alert_provisioning.domain.provenance.store import DBProvenanceStore


async def _count(async_session_maker, model) -> int:
    async with async_session_maker() as session:
        return await session.scalar(sa.select(sa.func.count()).select_from(model))


@pytest.mark.anyio
async def test_commits_on_success(transactions, async_session_maker):
    store = DBProvenanceStore()

    async def work(session):
        await store.set_provenance(session, 1, "committed", Provenance.API)
        return "done"

    assert await transactions.run_in_transaction(work) == "done"
    assert await _count(async_session_maker, ProvenanceRecord) == 1


@pytest.mark.anyio
async def test_domain_error_rolls_back_and_passes_through(transactions, async_session_maker):
    store = DBProvenanceStore()

    async def work(session):
        await store.set_provenance(session, 1, "rolled-back", Provenance.FILE)
        raise NotFoundError(detail="missing")

    with pytest.raises(NotFoundError):
        await transactions.run_in_transaction(work)
    assert await _count(async_session_maker, ProvenanceRecord) == 0


@pytest.mark.anyio
async def test_storage_failure_becomes_store_error(transactions, async_session_maker):
    store = DBProvenanceStore()

    async def work(session):
        await store.set_provenance(session, 1, "partial", Provenance.API)
        await session.execute(sa.text("SELECT * FROM table_that_does_not_exist"))

    with pytest.raises(StoreError) as excinfo:
        await transactions.run_in_transaction(work, operation="broken")

    assert excinfo.value.kind == ErrorKind.STORE
    assert excinfo.value.operation == "broken"
    assert isinstance(excinfo.value.__cause__, sa.exc.SQLAlchemyError)
    assert await _count(async_session_maker, ProvenanceRecord) == 0


@pytest.mark.anyio
async def test_deadline_expiry_rolls_back(transactions, async_session_maker):
    store = DBProvenanceStore()

    async def work(session):
        await store.set_provenance(session, 1, "slow", Provenance.API)
        await anyio.sleep(5)

    with pytest.raises(StoreError):
        await transactions.run_in_transaction(work, operation="slow", timeout=0.05)
    assert await _count(async_session_maker, ProvenanceRecord) == 0


@pytest.mark.anyio
async def test_duplicate_uid_leaves_no_partial_rule(rule_service, dummy_rule, async_session_maker):
    await rule_service.create_alert_rule(dummy_rule("original", uid="taken"), Provenance.API)

    with pytest.raises(StoreError):
        await rule_service.create_alert_rule(dummy_rule("duplicate", uid="taken"), Provenance.FILE)

    assert await _count(async_session_maker, AlertRuleRecord) == 1
    _, provenance = await rule_service.get_alert_rule(1, "taken")
    assert provenance == Provenance.API


@pytest.mark.anyio
async def test_latency_is_recorded(transactions, metrics_client):
    async def work(session):
        return None

    await transactions.run_in_transaction(work, operation="noop", write=False)

    assert (
        metrics_client.registry.get_sample_value(
            "alert_rule_transaction_seconds_count",
            {"operation": "noop"},
        )
        == 1.0
    )


@pytest.mark.anyio
async def test_cancellation_rolls_back_and_propagates(rule_service, dummy_rule, async_session_maker, monkeypatch):
    store = DBProvenanceStore()
    entered = anyio.Event()
    cancelled = []

    async def slow_set_provenance(session, org_id, uid, provenance):
        await store.set_provenance(session, org_id, uid, provenance)
        entered.set()
        await anyio.sleep(30)

    monkeypatch.setattr(rule_service._provenance_store, "set_provenance", slow_set_provenance)

    async def create() -> None:
        try:
            await rule_service.create_alert_rule(dummy_rule("cancelled"), Provenance.API)
        except anyio.get_cancelled_exc_class():
            cancelled.append(True)
            raise

    async with anyio.create_task_group() as tg:
        tg.start_soon(create)
        await entered.wait()
        tg.cancel_scope.cancel()

    assert cancelled == [True]
    assert await _count(async_session_maker, AlertRuleRecord) == 0
    assert await _count(async_session_maker, ProvenanceRecord) == 0


@pytest.mark.anyio
async def test_unexpected_error_becomes_store_error(transactions, async_session_maker):
    store = DBProvenanceStore()

    async def work(session):
        await store.set_provenance(session, 1, "unexpected", Provenance.API)
        raise RuntimeError("driver went away")

    with pytest.raises(StoreError) as excinfo:
        await transactions.run_in_transaction(work, operation="unexpected")

    assert excinfo.value.operation == "unexpected"
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert await _count(async_session_maker, ProvenanceRecord) == 0


@pytest.mark.anyio
async def test_deadline_bounds_wait_for_write_lock(rule_service, dummy_rule, test_engine, async_session_maker):
    async with test_engine.connect() as blocker:
        await blocker.exec_driver_sql("BEGIN IMMEDIATE")
        started = time.perf_counter()
        try:
            with pytest.raises(StoreError):
                await rule_service.create_alert_rule(dummy_rule("blocked"), Provenance.API, timeout=0.2)
            elapsed = time.perf_counter() - started
        finally:
            await blocker.rollback()

    assert elapsed < 5
    assert await _count(async_session_maker, AlertRuleRecord) == 0

    rule = await rule_service.create_alert_rule(dummy_rule("unblocked"), Provenance.API)
    assert rule.version == 1
