"""
Serialization module for FinSched persistence.

Purpose
-------
JSON-compatible dict conversion for rules, templates and records, used
by the SQLite backend (template / contract columns) and by the CLI's
``export`` / ``import`` commands.

Design Principles
-----------------
- Type-safe: incoming dicts are validated through the Pydantic configs
- Human-readable: ISO dates, enum names, plain numbers
- Versioned: files carry ``schema_version``; mismatches warn

Example
-------
>>> from finsched.serialization import save_rules, load_rules
>>> save_rules(registry.list(), Path("rules.json"))
>>> rules = load_rules(Path("rules.json"))
"""

from __future__ import annotations

import json
import warnings
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from .config import ContractRefConfig, ScheduleConfig, TemplateConfig, format_validation_error
from .constants import SCHEMA_VERSION
from .exceptions import InvalidRuleError
from .models import (
    ContractRef,
    GeneratedRecord,
    RecordTemplate,
    RecurrenceRule,
    Schedule,
)

__all__ = [
    "SCHEMA_VERSION",
    "schedule_to_dict",
    "schedule_from_dict",
    "template_to_dict",
    "template_from_dict",
    "contract_ref_to_dict",
    "contract_ref_from_dict",
    "rule_to_dict",
    "rule_from_dict",
    "record_to_dict",
    "save_rules",
    "load_rules",
]


def _validated(model_cls, data: Dict[str, Any]):
    try:
        return model_cls.model_validate(data)
    except ValidationError as exc:
        raise InvalidRuleError(format_validation_error(exc)) from exc


def _iso(value: Optional[Union[date, datetime]]) -> Optional[str]:
    return value.isoformat() if value is not None else None


# ---------------------------------------------------------------------------
# Schedule / template / contract
# ---------------------------------------------------------------------------

def schedule_to_dict(schedule: Schedule) -> Dict[str, Any]:
    return {
        "periodicity": schedule.periodicity.value,
        "day_policy": schedule.day_selection.policy.value,
        "specific_day": schedule.day_selection.day,
        "start_date": _iso(schedule.start_date),
        "end_date": _iso(schedule.end_date),
    }


def schedule_from_dict(data: Dict[str, Any]) -> Schedule:
    return _validated(ScheduleConfig, data).to_schedule()


def template_to_dict(template: RecordTemplate) -> Dict[str, Any]:
    return TemplateConfig.from_template(template).model_dump()


def template_from_dict(data: Dict[str, Any]) -> RecordTemplate:
    return _validated(TemplateConfig, data).to_template()


def contract_ref_to_dict(ref: Optional[ContractRef]) -> Optional[Dict[str, Any]]:
    if ref is None:
        return None
    return {
        "document_id": ref.document_id,
        "file_url": ref.file_url,
        "confidence": ref.confidence,
        "extracted_fields": dict(ref.extracted_fields),
    }


def contract_ref_from_dict(data: Optional[Dict[str, Any]]) -> Optional[ContractRef]:
    if not data:
        return None
    return _validated(ContractRefConfig, data).to_contract_ref()


# ---------------------------------------------------------------------------
# Rules and records
# ---------------------------------------------------------------------------

def rule_to_dict(rule: RecurrenceRule) -> Dict[str, Any]:
    """
    Serialize a rule, including its generation metadata.

    Returns
    -------
    dict
        JSON-compatible mapping accepted by ``rule_from_dict``.
    """
    return {
        "id": rule.id,
        "kind": rule.kind.value,
        "name": rule.name,
        "schedule": schedule_to_dict(rule.schedule),
        "template": template_to_dict(rule.template),
        "last_year_generated": rule.last_year_generated,
        "total_generated": rule.total_generated,
        "contract_ref": contract_ref_to_dict(rule.contract_ref),
        "created_at": _iso(rule.created_at),
        "updated_at": _iso(rule.updated_at),
    }


def rule_from_dict(data: Dict[str, Any]) -> RecurrenceRule:
    """
    Rebuild a rule from ``rule_to_dict`` output.

    Raises
    ------
    InvalidRuleError
        If the schedule or template is invalid or a required key is missing.
    """
    for key in ("id", "kind", "schedule", "template"):
        if key not in data:
            raise InvalidRuleError(f"rule is missing '{key}'")
    created = data.get("created_at")
    updated = data.get("updated_at")
    return RecurrenceRule(
        id=str(data["id"]),
        kind=data["kind"],
        name=data.get("name") or "",
        schedule=schedule_from_dict(data["schedule"]),
        template=template_from_dict(data["template"]),
        last_year_generated=data.get("last_year_generated"),
        total_generated=int(data.get("total_generated") or 0),
        contract_ref=contract_ref_from_dict(data.get("contract_ref")),
        created_at=datetime.fromisoformat(created) if created else None,
        updated_at=datetime.fromisoformat(updated) if updated else None,
    )


def record_to_dict(record: GeneratedRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "kind": record.kind.value,
        "date": record.date.isoformat(),
        "number": record.number,
        "concept": record.concept,
        "base_amount": record.base_amount,
        "vat_rate": record.vat_rate,
        "vat_amount": record.vat_amount,
        "withholding_rate": record.withholding_rate,
        "withholding_amount": record.withholding_amount,
        "total": record.total,
        "counterparty_name": record.counterparty_name,
        "counterparty_tax_id": record.counterparty_tax_id,
        "category": record.category,
        "description": record.description,
        "status": record.status,
        "series_id": record.series_id,
        "extra": dict(record.extra),
    }


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------

def save_rules(rules: Iterable[RecurrenceRule], path: Path) -> Path:
    """Write rules to a JSON file; parent directories are created."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "schema_version": SCHEMA_VERSION,
        "rules": [rule_to_dict(r) for r in rules],
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, ensure_ascii=False)
    return path


def load_rules(path: Path) -> List[RecurrenceRule]:
    """Read rules written by ``save_rules``."""
    with open(Path(path), "r", encoding="utf-8") as f:
        payload = json.load(f)

    version = payload.get("schema_version")
    if version != SCHEMA_VERSION:
        warnings.warn(
            f"Schema version mismatch: file has {version}, expected {SCHEMA_VERSION}",
            UserWarning,
        )
    return [rule_from_dict(item) for item in payload.get("rules", [])]
