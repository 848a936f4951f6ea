from __future__ import annotations

import json
import logging

import pytest
from pydantic import ValidationError as SettingsValidationError

from alert_provisioning.domain.alert_rules.service import AlertRuleServiceConfig
from alert_provisioning.domain.errors import ProvenanceConflictError
from alert_provisioning.domain.provenance.schemas import Provenance
from alert_provisioning.infra.logging import LOG_CONTEXT, JsonFormatter, log_context
from alert_provisioning.infra.metrics import Metrics
from alert_provisioning.settings import Settings


def _format(message: str, extra: dict | None = None) -> dict:
    logger = logging.getLogger("alert_provisioning.test")
    record = logger.makeRecord(
        logger.name,
        logging.INFO,
        __file__,
        1,
        message,
        (),
        None,
        extra={"extra": extra} if extra is not None else None,
    )
    return json.loads(JsonFormatter().format(record))


def test_formatter_emits_structured_extra():
    payload = _format("alert_rule_created", {"uid": "abc", "interval_seconds": 60})

    assert payload["message"] == "alert_rule_created"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "alert_provisioning.test"
    assert payload["uid"] == "abc"
    assert payload["interval_seconds"] == 60


def test_formatter_redacts_credentials():
    payload = _format(
        "connecting to postgresql+asyncpg://provisioner:s3cret@db:5432/alerts",
        {"database_url": "postgresql://provisioner:s3cret@db/alerts"},
    )

    assert "s3cret" not in json.dumps(payload)
    assert payload["message"] == "connecting to postgresql+asyncpg://provisioner:***@db:5432/alerts"
    assert payload["database_url"] == "[REDACTED]"


def test_formatter_includes_log_context():
    with log_context(org_id=7, request_id=None):
        payload = _format("alert_rule_updated")
        with log_context(operation="inner"):
            nested = _format("alert_rule_updated")

    assert payload["org_id"] == 7
    assert "request_id" not in payload
    assert "operation" not in payload
    assert nested["org_id"] == 7
    assert nested["operation"] == "inner"
    assert LOG_CONTEXT.get() == {}


class _JsonCapture(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.INFO)
        self.setFormatter(JsonFormatter())
        self.payloads: list[dict] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.payloads.append(json.loads(self.format(record)))


@pytest.fixture()
def captured_logs():
    handler = _JsonCapture()
    package_logger = logging.getLogger("alert_provisioning")
    previous_level = package_logger.level
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.INFO)
    yield handler.payloads
    package_logger.removeHandler(handler)
    package_logger.setLevel(previous_level)


@pytest.mark.anyio
async def test_service_logs_carry_operation_context(rule_service, dummy_rule, captured_logs):
    rule = await rule_service.create_alert_rule(dummy_rule("context", org_id=3), Provenance.FILE)

    with pytest.raises(ProvenanceConflictError):
        await rule_service.update_alert_rule(rule, Provenance.API)

    conflict = next(item for item in captured_logs if item["message"] == "alert_rule_provenance_conflict")
    assert conflict["operation"] == "update_alert_rule"
    assert conflict["org_id"] == 3
    assert LOG_CONTEXT.get() == {}


def test_disabled_metrics_are_noops():
    disabled = Metrics(enabled=False)

    disabled.record_operation("create_alert_rule", "success")
    disabled.record_provenance_conflict("api", "file")

    body, _ = disabled.render()
    assert body == b"metrics_disabled 1\n"


def test_settings_defaults():
    app_settings = Settings(_env_file=None)

    config = AlertRuleServiceConfig.from_settings(app_settings)
    assert config.base_interval_seconds == 10
    assert config.default_interval_seconds == 60
    assert app_settings.transaction_timeout == 30.0


def test_zero_transaction_timeout_disables_deadline():
    assert Settings(_env_file=None, transaction_timeout_seconds=0).transaction_timeout is None


@pytest.mark.parametrize(
    "overrides",
    [
        {"default_interval_seconds": 45},
        {"default_interval_seconds": 0},
        {"base_interval_seconds": 0},
        {"transaction_timeout_seconds": -1},
    ],
)
def test_settings_reject_inconsistent_intervals(overrides):
    with pytest.raises(SettingsValidationError):
        Settings(_env_file=None, **overrides)


def test_postgres_detection():
    assert Settings(_env_file=None, database_url="postgresql+asyncpg://u:p@db/alerts").is_postgres
    assert not Settings(_env_file=None).is_postgres
