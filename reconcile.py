# reconcile.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping


@dataclass(frozen=True)
class Reconciliation:
    missing: frozenset[str]
    present: frozenset[str]

    def to_dict(self) -> dict[str, list[str]]:
        return {"missing": sorted(self.missing), "present": sorted(self.present)}


def _type_of(item: Any) -> str | None:
    if isinstance(item, str):
        return item
    if isinstance(item, Mapping):
        value = item.get("type")
        return str(value) if value else None
    value = getattr(item, "type", None)
    return str(value) if value else None


def dedupe_by_type(records: Iterable[Any]) -> dict[str, Any]:
    """type -> first record of that type, in input order."""
    out: dict[str, Any] = {}
    for record in records or []:
        opportunity_type = _type_of(record)
        if opportunity_type and opportunity_type not in out:
            out[opportunity_type] = record
    return out


def reconcile(expected: Iterable[Any], actual: Iterable[Any]) -> Reconciliation:
    """
    missing = expected - actual; present = every actual type.

    Actual types nobody expected (legacy producers) stay in `present` and can
    never show up in `missing`.
    """
    expected_types = set(dedupe_by_type(expected))
    actual_types = set(dedupe_by_type(actual))
    return Reconciliation(
        missing=frozenset(expected_types - actual_types),
        present=frozenset(actual_types),
    )
