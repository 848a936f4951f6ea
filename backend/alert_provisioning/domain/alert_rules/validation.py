from __future__ import annotations

from datetime import timedelta

from alert_provisioning.domain.alert_rules.schemas import AlertRule, RelativeTimeRange
from alert_provisioning.domain.errors import ValidationError

ALERT_RULE_MAX_TITLE_LENGTH = 190
ALERT_RULE_MAX_RULE_GROUP_LENGTH = 190
ALERT_RULE_MAX_UID_LENGTH = 40


def _error(field: str, message: str) -> dict[str, str]:
    return {"field": field, "message": message}


def interval_errors(interval_seconds: int, base_interval_seconds: int) -> list[dict[str, str]]:
    if interval_seconds <= 0:
        return [_error("interval_seconds", "interval must be positive")]
    if interval_seconds % base_interval_seconds != 0:
        return [
            _error(
                "interval_seconds",
                f"interval {interval_seconds}s is not a multiple of the base interval {base_interval_seconds}s",
            )
        ]
    return []


def _time_range_errors(field: str, time_range: RelativeTimeRange) -> list[dict[str, str]]:
    if time_range.from_ < timedelta(0) or time_range.to < timedelta(0):
        return [_error(field, "relative time range offsets must not be negative")]
    if time_range.from_ < time_range.to:
        return [_error(field, "relative time range 'from' must not be later than 'to'")]
    return []


def collect_alert_rule_errors(rule: AlertRule, *, base_interval_seconds: int) -> list[dict[str, str]]:
    errors: list[dict[str, str]] = []
    if not rule.title.strip():
        errors.append(_error("title", "title must not be empty"))
    elif len(rule.title) > ALERT_RULE_MAX_TITLE_LENGTH:
        errors.append(_error("title", f"title is longer than {ALERT_RULE_MAX_TITLE_LENGTH} characters"))
    if len(rule.rule_group) > ALERT_RULE_MAX_RULE_GROUP_LENGTH:
        errors.append(
            _error("rule_group", f"rule group is longer than {ALERT_RULE_MAX_RULE_GROUP_LENGTH} characters")
        )
    if len(rule.uid) > ALERT_RULE_MAX_UID_LENGTH:
        errors.append(_error("uid", f"uid is longer than {ALERT_RULE_MAX_UID_LENGTH} characters"))
    if rule.for_ < timedelta(0):
        errors.append(_error("for", "for must not be negative"))

    if not rule.data:
        errors.append(_error("data", "at least one query is required"))
    ref_ids: set[str] = set()
    for index, query in enumerate(rule.data):
        field = f"data.{index}"
        if not query.ref_id:
            errors.append(_error(f"{field}.ref_id", "ref_id must not be empty"))
        elif query.ref_id in ref_ids:
            errors.append(_error(f"{field}.ref_id", f"duplicate ref_id '{query.ref_id}'"))
        else:
            ref_ids.add(query.ref_id)
        if not query.is_expression:
            errors.extend(_time_range_errors(f"{field}.relative_time_range", query.relative_time_range))

    if not rule.condition:
        errors.append(_error("condition", "condition must not be empty"))
    elif rule.data and rule.condition not in ref_ids:
        errors.append(_error("condition", f"condition '{rule.condition}' does not match any query ref_id"))

    # zero means "not provided": the group or the default decides
    if rule.interval_seconds != 0:
        errors.extend(interval_errors(rule.interval_seconds, base_interval_seconds))
    return errors


def validate_alert_rule(rule: AlertRule, *, base_interval_seconds: int) -> None:
    errors = collect_alert_rule_errors(rule, base_interval_seconds=base_interval_seconds)
    if errors:
        raise ValidationError(detail=errors[0]["message"], errors=errors)


def validate_interval(interval_seconds: int, *, base_interval_seconds: int) -> None:
    errors = interval_errors(interval_seconds, base_interval_seconds)
    if errors:
        raise ValidationError(detail=errors[0]["message"], errors=errors)
