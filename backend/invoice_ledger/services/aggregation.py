"""Shape movement query results for the natural-language query endpoint."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

from invoice_ledger.models.ledger import Movement

AGGREGATION_MODES = ("list", "sum", "average", "count")


def format_brl(amount: Any) -> str:
    """Format *amount* as Brazilian currency: ``3449`` -> ``"R$ 3.449,00"``."""
    value = Decimal(str(amount or 0)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    sign = "-" if value < 0 else ""
    grouped = f"{abs(value):,.2f}"
    # 1,234.56 -> 1.234,56
    localized = grouped.replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{sign}R$ {localized}"


def summarize_movement(movement: Movement) -> dict[str, Any]:
    classifications = movement.classifications
    supplier = movement.supplier
    return {
        "id": movement.id,
        "invoice_number": movement.invoice_number,
        "supplier": supplier.legal_name if supplier is not None else None,
        "total": float(movement.total_amount),
        "issue_date": movement.issue_date.isoformat() if movement.issue_date else None,
        "description": movement.description,
        "category": classifications[0].description if classifications else "N/A",
    }


def aggregate_movements(movements: Iterable[Movement], mode: str) -> dict[str, Any]:
    rows = list(movements)
    mode = (mode or "list").strip().lower()

    if mode == "list":
        return {"type": "list", "count": len(rows), "data": [summarize_movement(m) for m in rows]}

    if mode == "sum":
        total = sum((Decimal(str(m.total_amount)) for m in rows), Decimal("0"))
        return {
            "type": "sum",
            "total": float(total),
            "total_formatted": format_brl(total),
            "count": len(rows),
        }

    if mode == "average":
        if not rows:
            average = Decimal("0")
        else:
            total = sum((Decimal(str(m.total_amount)) for m in rows), Decimal("0"))
            average = (total / len(rows)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        return {
            "type": "average",
            "average": float(average),
            "average_formatted": format_brl(average),
            "count": len(rows),
        }

    if mode == "count":
        return {"type": "count", "count": len(rows)}

    return {"type": "unknown", "data": rows}
