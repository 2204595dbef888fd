"""
Global constants for FinSched.

Purpose
-------
Centralizes default values and magic numbers used throughout the FinSched
codebase: tax rates stamped onto new records, retry budgets, stepper
safety limits and storage locations.

Usage
-----
>>> from finsched.constants import DEFAULT_VAT_RATE, MAX_OCCURRENCES
>>> template = RecordTemplate(concept="Office rent", base_amount=800.0)
>>> template.vat_rate == DEFAULT_VAT_RATE
True

Categories
----------
- Taxes: default VAT / withholding rates
- Recurrence: stepper safety cap, period lengths
- Materialization: retry attempts and backoff
- Records: statuses, number format
- Storage: default database location
"""

from pathlib import Path
from typing import Dict

__all__ = [
    # Taxes
    "DEFAULT_VAT_RATE",
    "DEFAULT_INCOME_WITHHOLDING_RATE",
    "DEFAULT_EXPENSE_WITHHOLDING_RATE",
    # Recurrence
    "MAX_OCCURRENCES",
    "MONTHS_PER_PERIOD",
    "SERIES_NAME_PREFIX",
    "SERIES_NAME_CONCEPT_CHARS",
    # Materialization
    "DEFAULT_RETRY_ATTEMPTS",
    "DEFAULT_RETRY_BACKOFF_SECONDS",
    # Records
    "DEFAULT_RECORD_STATUS",
    "RECORD_NUMBER_FORMAT",
    # Storage
    "DEFAULT_DB_PATH",
    "SCHEMA_VERSION",
]


# =============================================================================
# Tax Defaults
# =============================================================================

DEFAULT_VAT_RATE: float = 21.0
"""Default VAT percentage applied to new records."""

DEFAULT_INCOME_WITHHOLDING_RATE: float = 7.0
"""Default income-tax withholding percentage on issued invoices."""

DEFAULT_EXPENSE_WITHHOLDING_RATE: float = 0.0
"""Default withholding percentage on expenses (most suppliers withhold nothing)."""


# =============================================================================
# Recurrence Defaults
# =============================================================================

MAX_OCCURRENCES: int = 120
"""Upper bound on dates yielded by a single stepper run (10 years monthly)."""

MONTHS_PER_PERIOD: Dict[str, int] = {
    "MONTHLY": 1,
    "QUARTERLY": 3,
    "SEMIANNUAL": 6,
    "ANNUAL": 12,
}
"""Cursor advance, in months, for each periodicity."""

SERIES_NAME_PREFIX: str = "Series"
"""Prefix of the default series name."""

SERIES_NAME_CONCEPT_CHARS: int = 50
"""Characters of the template concept kept in the default series name."""


# =============================================================================
# Materialization Defaults
# =============================================================================

DEFAULT_RETRY_ATTEMPTS: int = 3
"""Attempts per record before a store conflict becomes a MaterializationError."""

DEFAULT_RETRY_BACKOFF_SECONDS: float = 0.5
"""Linear backoff base: attempt ``k`` waits ``k * base`` seconds."""


# =============================================================================
# Record Defaults
# =============================================================================

DEFAULT_RECORD_STATUS: str = "PENDING"
"""Status stamped onto freshly generated records."""

RECORD_NUMBER_FORMAT: str = "{year}-{seq:03d}"
"""External number format for income records, e.g. ``2025-007``."""


# =============================================================================
# Storage
# =============================================================================

DEFAULT_DB_PATH: Path = Path.home() / ".finsched" / "finsched.db"
"""Default SQLite database location."""

SCHEMA_VERSION: str = "0.1.0"
"""Version tag written into JSON exports."""
