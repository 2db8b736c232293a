"""Context builder — fetch recent domain data and render the grounding block.

For each category the classifier asked for, a bounded newest-first page is
read through the data gateway and reduced to headline aggregates.  The
resulting ``ContextBundle`` is rendered into a short Arabic summary that is
appended to the system prompt, and its client list doubles as the lookup
table for resolving client names in action directives.

A failing category never takes the others down: it is logged, recorded in
``ContextBundle.errors`` and left out of the rendered block.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime
from typing import Any, Callable, Iterable, Optional

from pydantic import BaseModel, Field

from ishaar_assistant.config import (
    CONTEXT_CLIENT_LIMIT,
    CONTEXT_DEBT_LIMIT,
    CONTEXT_INVOICE_LIMIT,
    CONTEXT_TASK_LIMIT,
)
from ishaar_assistant.gateway import (
    CLIENTS_TABLE,
    DEBTS_TABLE,
    INVOICES_TABLE,
    TASKS_TABLE,
    DataGateway,
)
from ishaar_assistant.intents import CLIENTS, DEBTS, INVOICES, TASKS, needs_category

logger = logging.getLogger(__name__)

SAMPLE_SIZE = 5
CURRENCY = "ر.س"


# ─────────────────────────────────────────────
# Sections
# ─────────────────────────────────────────────


class InvoiceSection(BaseModel):
    rows: list[dict[str, Any]] = Field(default_factory=list)
    total: int = 0
    total_amount: float = 0.0
    pending: int = 0
    paid: int = 0
    cancelled: int = 0


class ClientSection(BaseModel):
    rows: list[dict[str, Any]] = Field(default_factory=list)
    total: int = 0


class DebtSection(BaseModel):
    rows: list[dict[str, Any]] = Field(default_factory=list)
    total: int = 0
    total_amount: float = 0.0
    total_paid: float = 0.0
    pending: int = 0
    overdue: int = 0

    @property
    def remaining(self) -> float:
        return self.total_amount - self.total_paid


class TaskSection(BaseModel):
    rows: list[dict[str, Any]] = Field(default_factory=list)
    total: int = 0
    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    cancelled: int = 0
    total_service_amount: float = 0.0
    total_government_fees: float = 0.0


class ContextBundle(BaseModel):
    """Per-request snapshot of fetched records and their aggregates."""

    invoices: Optional[InvoiceSection] = None
    clients: Optional[ClientSection] = None
    debts: Optional[DebtSection] = None
    tasks: Optional[TaskSection] = None
    errors: list[str] = Field(default_factory=list)

    @property
    def client_rows(self) -> list[dict[str, Any]]:
        return self.clients.rows if self.clients else []

    def is_empty(self) -> bool:
        return not any((self.invoices, self.clients, self.debts, self.tasks))


# ─────────────────────────────────────────────
# Aggregates
# ─────────────────────────────────────────────


def _num(value: Any) -> float:
    """Coerce a numeric column (possibly null or a string) to float."""
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _count(rows: Iterable[dict[str, Any]], status: str) -> int:
    return sum(1 for r in rows if r.get("status") == status)


def _parse_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def summarize_invoices(rows: list[dict[str, Any]]) -> InvoiceSection:
    return InvoiceSection(
        rows=rows,
        total=len(rows),
        total_amount=sum(_num(r.get("total_amount")) for r in rows),
        pending=_count(rows, "pending"),
        paid=_count(rows, "paid"),
        cancelled=_count(rows, "cancelled"),
    )


def summarize_clients(rows: list[dict[str, Any]]) -> ClientSection:
    return ClientSection(rows=rows, total=len(rows))


def summarize_debts(
    rows: list[dict[str, Any]], now: datetime | None = None
) -> DebtSection:
    """Debt aggregates; a pending debt is overdue once its expected payment
    day is strictly before today."""
    today = (now or datetime.now()).date()
    overdue = 0
    for r in rows:
        due = _parse_date(r.get("expected_payment_date"))
        if r.get("status") == "pending" and due is not None and due < today:
            overdue += 1
    return DebtSection(
        rows=rows,
        total=len(rows),
        total_amount=sum(_num(r.get("amount")) for r in rows),
        total_paid=sum(_num(r.get("paid_amount")) for r in rows),
        pending=_count(rows, "pending"),
        overdue=overdue,
    )


def summarize_tasks(rows: list[dict[str, Any]]) -> TaskSection:
    return TaskSection(
        rows=rows,
        total=len(rows),
        pending=_count(rows, "pending"),
        in_progress=_count(rows, "in_progress"),
        completed=_count(rows, "completed"),
        cancelled=_count(rows, "cancelled"),
        total_service_amount=sum(_num(r.get("service_amount")) for r in rows),
        total_government_fees=sum(_num(r.get("government_fees")) for r in rows),
    )


# ─────────────────────────────────────────────
# Fetching
# ─────────────────────────────────────────────

# category → (table, page size)
SOURCES: dict[str, tuple[str, int]] = {
    INVOICES: (INVOICES_TABLE, CONTEXT_INVOICE_LIMIT),
    CLIENTS: (CLIENTS_TABLE, CONTEXT_CLIENT_LIMIT),
    DEBTS: (DEBTS_TABLE, CONTEXT_DEBT_LIMIT),
    TASKS: (TASKS_TABLE, CONTEXT_TASK_LIMIT),
}


async def fetch_section(
    category: str, gateway: DataGateway, now: datetime | None = None
) -> BaseModel:
    """Fetch and summarise one category.  Raises if the read fails."""
    table, limit = SOURCES[category]
    rows = await gateway.list_recent(table, limit)
    if category == INVOICES:
        return summarize_invoices(rows)
    if category == CLIENTS:
        return summarize_clients(rows)
    if category == DEBTS:
        return summarize_debts(rows, now)
    return summarize_tasks(rows)


async def fetch_guarded(
    category: str, gateway: DataGateway, now: datetime | None = None
) -> Optional[BaseModel]:
    """``fetch_section`` that logs a failed read and returns ``None``."""
    try:
        return await fetch_section(category, gateway, now)
    except Exception:
        logger.exception("context | fetch failed category=%s", category)
        return None


async def build_context(
    intents: Iterable[str], gateway: DataGateway, now: datetime | None = None
) -> ContextBundle:
    """Fetch every category *intents* need, concurrently.  Never raises.

    The chat graph runs the same ``fetch_guarded`` step as one node per
    category; this is the single-call form for callers outside the graph.
    """
    tags = set(intents)
    categories = [c for c in SOURCES if needs_category(tags, c)]
    sections = await asyncio.gather(
        *(fetch_guarded(c, gateway, now) for c in categories)
    )

    bundle = ContextBundle()
    for category, section in zip(categories, sections):
        if section is None:
            bundle.errors.append(category)
        else:
            setattr(bundle, category, section)

    logger.info(
        "context | categories=%s | failed=%s",
        [c for c in categories if c not in bundle.errors],
        bundle.errors,
    )
    return bundle


# ─────────────────────────────────────────────
# Rendering
# ─────────────────────────────────────────────


def format_sar(value: float) -> str:
    """``15000`` → ``15,000 ر.س``; fractional amounts keep two decimals."""
    if float(value).is_integer():
        return f"{int(value):,} {CURRENCY}"
    return f"{value:,.2f} {CURRENCY}"


def _render_invoices(s: InvoiceSection) -> list[str]:
    lines = [
        f"\n### الفواتير (آخر {s.total} فاتورة):",
        f"- إجمالي المبالغ: {format_sar(s.total_amount)}",
        f"- معلقة: {s.pending} | مدفوعة: {s.paid} | ملغاة: {s.cancelled}",
    ]
    if s.rows:
        lines.append("- أحدث الفواتير:")
        for inv in s.rows[:SAMPLE_SIZE]:
            lines.append(
                f"  • {inv.get('invoice_number', '-')} - {inv.get('client_name', '-')}: "
                f"{format_sar(_num(inv.get('total_amount')))} ({inv.get('status', '-')})"
            )
    return lines


def _render_clients(s: ClientSection) -> list[str]:
    lines = ["\n### العملاء:", f"- إجمالي العملاء: {s.total}"]
    if s.rows:
        lines.append("- أحدث العملاء:")
        for cli in s.rows[:SAMPLE_SIZE]:
            phone = f" ({cli['phone']})" if cli.get("phone") else ""
            lines.append(f"  • {cli.get('name', '-')}{phone}")
    return lines


def _render_debts(s: DebtSection) -> list[str]:
    lines = [
        "\n### الديون والمستحقات:",
        f"- إجمالي الديون: {format_sar(s.total_amount)}",
        f"- المبالغ المحصلة: {format_sar(s.total_paid)}",
        f"- المتبقي: {format_sar(s.remaining)}",
        f"- معلقة: {s.pending} | متأخرة: {s.overdue}",
    ]
    if s.rows:
        lines.append("- تفاصيل الديون:")
        for d in s.rows[:SAMPLE_SIZE]:
            remaining = _num(d.get("amount")) - _num(d.get("paid_amount"))
            lines.append(
                f"  • {d.get('client_name', '-')} ({d.get('service_type', '-')}): "
                f"{format_sar(remaining)} متبقي ({d.get('status', '-')})"
            )
    return lines


def _render_tasks(s: TaskSection) -> list[str]:
    lines = [
        "\n### المهام والخدمات:",
        f"- إجمالي المهام: {s.total}",
        f"- معلقة: {s.pending} | قيد التنفيذ: {s.in_progress} | "
        f"مكتملة: {s.completed} | ملغاة: {s.cancelled}",
        f"- إجمالي مبالغ الخدمات: {format_sar(s.total_service_amount)}",
        f"- إجمالي الرسوم الحكومية: {format_sar(s.total_government_fees)}",
    ]
    if s.rows:
        lines.append("- أحدث المهام:")
        for t in s.rows[:SAMPLE_SIZE]:
            lines.append(
                f"  • {t.get('title', '-')} - {t.get('client_name', '-')} ({t.get('status', '-')})"
            )
    return lines


_RENDERERS: list[tuple[str, Callable[[Any], list[str]]]] = [
    (INVOICES, _render_invoices),
    (CLIENTS, _render_clients),
    (DEBTS, _render_debts),
    (TASKS, _render_tasks),
]


def render_context(bundle: ContextBundle) -> str:
    """Render *bundle* as the grounding block appended to the system prompt."""
    header = "\n\n## البيانات الحقيقية من النظام:"
    if bundle.is_empty():
        return header + "\n- لا تتوفر بيانات من النظام حالياً."

    lines = [header]
    for category, render in _RENDERERS:
        section = getattr(bundle, category)
        if section is not None:
            lines.extend(render(section))
    return "\n".join(lines)


