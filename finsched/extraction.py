"""
Document-extraction adapter.

Contract OCR happens elsewhere; what arrives here is a loose data bag.
This module maps it onto a validated ``RuleConfig``. Both the Spanish
keys emitted by the contract extractor and plain English keys are
accepted:

=======================  ======================
Extractor key            Rule field
=======================  ======================
periodicidad             schedule.periodicity
tipo_dia                 schedule.day_policy
dia_especifico           schedule.specific_day
fecha_inicio             schedule.start_date
fecha_fin                schedule.end_date
importe                  template.base_amount
tipo_iva                 template.vat_rate
tipo_irpf                template.withholding_rate
concepto                 template.concept
categoria                template.category
parte_a_* / parte_b_*    template.counterparty_*
=======================  ======================

Party A is the provider (landlord, supplier) and party B the client, so
an EXPENSE rule takes party A as counterparty and an INCOME rule party B.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Union

from .config import RuleConfig, parse_rule_config
from .exceptions import InvalidRuleError
from .models import RecordKind

__all__ = ["PERIODICITY_ALIASES", "DAY_POLICY_ALIASES", "rule_from_extraction"]

PERIODICITY_ALIASES = {
    "MENSUAL": "MONTHLY",
    "TRIMESTRAL": "QUARTERLY",
    "SEMESTRAL": "SEMIANNUAL",
    "ANUAL": "ANNUAL",
}

DAY_POLICY_ALIASES = {
    "ULTIMO_DIA_LABORAL": "LAST_BUSINESS_DAY",
    "PRIMER_DIA_LABORAL": "FIRST_BUSINESS_DAY",
    "ULTIMO_DIA": "LAST_CALENDAR_DAY",
    "PRIMER_DIA": "FIRST_CALENDAR_DAY",
    "DIA_ESPECIFICO": "SPECIFIC_DAY",
}

_SCHEDULE_KEYS = {
    "periodicity": ("periodicity", "periodicidad"),
    "day_policy": ("day_policy", "tipo_dia"),
    "specific_day": ("specific_day", "dia_especifico"),
    "start_date": ("start_date", "fecha_inicio"),
    "end_date": ("end_date", "fecha_fin"),
}

_TEMPLATE_KEYS = {
    "concept": ("concept", "concepto"),
    "base_amount": ("base_amount", "importe", "base_imponible"),
    "vat_rate": ("vat_rate", "tipo_iva"),
    "withholding_rate": ("withholding_rate", "tipo_irpf"),
    "category": ("category", "categoria"),
    "description": ("description", "descripcion"),
}

_PARTY_KEYS = {
    RecordKind.EXPENSE: ("parte_a_nombre", "parte_a_cif"),
    RecordKind.INCOME: ("parte_b_nombre", "parte_b_cif"),
}


def _first(bag: Mapping[str, Any], keys) -> Any:
    for key in keys:
        value = bag.get(key)
        if value is not None and value != "":
            return value
    return None


def _alias(value: Any, aliases: Mapping[str, str]) -> Any:
    if isinstance(value, str):
        upper = value.strip().upper()
        return aliases.get(upper, upper)
    return value


def rule_from_extraction(
    bag: Mapping[str, Any],
    kind: Union[RecordKind, str],
    name: Optional[str] = None,
    document_id: Optional[str] = None,
    file_url: str = "",
    confidence: Optional[float] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> RuleConfig:
    """
    Build a RuleConfig from an extracted contract data bag.

    Parameters
    ----------
    bag : mapping
        Extracted fields; unknown keys are kept on the contract reference
        only.
    kind : RecordKind or str
        Ledger the series writes into.
    name : str, optional
        Series name; defaults to ``"Series <concept>"`` at creation.
    document_id, file_url, confidence : optional
        Source document link. Without ``document_id`` no contract
        reference is attached.
    overrides : mapping, optional
        Flat field values (English keys) that win over the bag, e.g. a
        day policy the user picked after reviewing the extraction.

    Raises
    ------
    InvalidRuleError
        If the merged data does not form a valid rule.
    """
    if not isinstance(bag, Mapping):
        raise InvalidRuleError("extraction result must be a mapping")
    try:
        kind = RecordKind(str(getattr(kind, "value", kind)).upper())
    except ValueError as exc:
        raise InvalidRuleError(f"kind must be INCOME or EXPENSE, got {kind!r}") from exc
    overrides = dict(overrides or {})

    schedule: Dict[str, Any] = {}
    for field_name, keys in _SCHEDULE_KEYS.items():
        value = overrides.pop(field_name, None)
        if value is None:
            value = _first(bag, keys)
        if value is not None:
            schedule[field_name] = value
    if "periodicity" in schedule:
        schedule["periodicity"] = _alias(schedule["periodicity"], PERIODICITY_ALIASES)
    if "day_policy" in schedule:
        schedule["day_policy"] = _alias(schedule["day_policy"], DAY_POLICY_ALIASES)

    template: Dict[str, Any] = {}
    for field_name, keys in _TEMPLATE_KEYS.items():
        value = overrides.pop(field_name, None)
        if value is None:
            value = _first(bag, keys)
        if value is not None:
            template[field_name] = value

    name_key, tax_id_key = _PARTY_KEYS[kind]
    counterparty = overrides.pop("counterparty_name", None) or _first(
        bag, ("counterparty_name", name_key)
    )
    counterparty_tax_id = overrides.pop("counterparty_tax_id", None) or _first(
        bag, ("counterparty_tax_id", tax_id_key)
    )
    if counterparty:
        template["counterparty_name"] = str(counterparty).strip()
    if counterparty_tax_id:
        template["counterparty_tax_id"] = str(counterparty_tax_id).strip()
    if "concept" not in template and counterparty:
        template["concept"] = str(counterparty).strip()

    if overrides:
        raise InvalidRuleError(f"unknown override fields: {', '.join(sorted(overrides))}")

    payload: Dict[str, Any] = {
        "kind": kind.value,
        "name": name,
        "schedule": schedule,
        "template": template,
    }
    if document_id:
        payload["contract_ref"] = {
            "document_id": document_id,
            "file_url": file_url,
            "confidence": confidence,
            "extracted_fields": dict(bag),
        }
    return parse_rule_config(payload)
