"""Action directives — extraction, validation and execution.

The model may embed one side effect in its reply as a fenced block tagged
``action``::

    ```action
    {"action": "CREATE_TASK", "data": {"title": "...", "client_name": "..."}}
    ```

``extract_and_execute`` removes every such block from the visible text,
parses the first one, validates it against the handler registered for its
``action`` tag and performs the write(s) through the data gateway.  The
outcome is reported as an ``ActionResult`` next to the cleaned reply:

  • no block / malformed JSON / unknown tag → no result, text only
  • invalid data → ``success=False`` with a validation message, no write
  • gateway error → ``success=False`` with the gateway message verbatim

Nothing here raises to the caller; an unexpected error returns the original
reply untouched with no result.
"""

from __future__ import annotations

import json
import logging
import random
import re
from abc import ABC, abstractmethod
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ishaar_assistant.gateway import (
    DEBTS_TABLE,
    INVOICE_ITEMS_TABLE,
    INVOICES_TABLE,
    TASKS_TABLE,
    DataGateway,
)
from ishaar_assistant.intents import normalize
from ishaar_assistant.prompts import DIRECTIVE_FENCE

logger = logging.getLogger(__name__)

VAT_RATE = Decimal("0.15")
TASK_DUE_DAYS = 7
DEBT_PAYMENT_TERM_DAYS = 30

_CENT = Decimal("0.01")

DIRECTIVE_PATTERN = re.compile(
    r"```" + re.escape(DIRECTIVE_FENCE) + r"(?![\w-])[ \t]*\r?\n?(.*?)```", re.DOTALL
)

# Arabic-Indic and Eastern Arabic-Indic digits → ASCII
_DIGITS = str.maketrans("٠١٢٣٤٥٦٧٨٩۰۱۲۳۴۵۶۷۸۹", "01234567890123456789")


# ─────────────────────────────────────────────
# Result
# ─────────────────────────────────────────────


class ActionResult(BaseModel):
    """Outcome of one executed directive, reported next to the reply."""

    type: Literal["task", "invoice", "debt"]
    success: bool
    message: str
    data: Optional[dict[str, Any]] = None


# ─────────────────────────────────────────────
# Extraction
# ─────────────────────────────────────────────


def _remove_span(text: str, start: int, end: int) -> str:
    before = text[:start].rstrip()
    after = text[end:].lstrip()
    if before and after:
        return f"{before}\n\n{after}"
    return before or after


def extract_directive(text: str) -> tuple[str, Optional[dict[str, Any]]]:
    """Split *text* into (visible text, parsed directive or None).

    Every ``action`` block is stripped from the visible text once one is
    found; only the first is parsed.  Invalid JSON or a non-object payload
    yields ``None``.
    """
    matches = list(DIRECTIVE_PATTERN.finditer(text))
    if not matches:
        return text, None

    clean = text
    for m in reversed(matches):
        clean = _remove_span(clean, m.start(), m.end())
    clean = clean.strip()

    raw = matches[0].group(1).strip()
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as exc:
        logger.warning("actions | malformed directive JSON — %s | raw=%s", exc, raw[:200])
        return clean, None

    if not isinstance(payload, dict):
        logger.warning("actions | directive is not an object: %r", type(payload).__name__)
        return clean, None
    if len(matches) > 1:
        logger.warning("actions | %d directive blocks found; only the first is used", len(matches))
    return clean, payload


# ─────────────────────────────────────────────
# Client resolution
# ─────────────────────────────────────────────


def resolve_client(
    name: Optional[str], clients: list[dict[str, Any]]
) -> Optional[dict[str, Any]]:
    """Best-effort match of *name* against the fetched client list.

    Names match when either contains the other after case folding and
    Arabic spelling normalisation.  The first match in fetch order (newest
    client first) wins; no match returns ``None``.
    """
    query = normalize(name or "").strip()
    if not query:
        return None
    for client in clients:
        candidate = normalize(str(client.get("name") or "")).strip()
        if candidate and (query in candidate or candidate in query):
            return client
    return None


# ─────────────────────────────────────────────
# Money
# ─────────────────────────────────────────────


def to_decimal(value: Any) -> Decimal:
    """Parse a money value from a number or a string like ``"5,000"``."""
    if isinstance(value, bool):
        raise ValueError("amount must be a number")
    if isinstance(value, (int, Decimal)):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(str(value))
    elif isinstance(value, str):
        cleaned = value.translate(_DIGITS).replace(",", "").replace("٬", "")
        cleaned = cleaned.replace("ر.س", "").replace("SAR", "").strip()
        try:
            result = Decimal(cleaned)
        except InvalidOperation as exc:
            raise ValueError(f"invalid amount: {value!r}") from exc
    else:
        raise ValueError(f"invalid amount: {value!r}")
    if not result.is_finite():
        raise ValueError(f"invalid amount: {value!r}")
    return result


def compute_invoice_amounts(amount: Decimal) -> tuple[Decimal, Decimal, Decimal]:
    """Return (amount, tax, total) with tax = 15% of amount, rounded to cents."""
    if amount < 0:
        raise ValueError("amount must not be negative")
    amount = amount.quantize(_CENT, rounding=ROUND_HALF_UP)
    tax = (amount * VAT_RATE).quantize(_CENT, rounding=ROUND_HALF_UP)
    return amount, tax, amount + tax


def generate_invoice_number(kind: str, today: date) -> str:
    """``INV-YYYYMM-NNNNNN`` for sales, ``PUR-YYYYMM-NNNNNN`` for purchases."""
    prefix = "PUR" if kind == "purchase" else "INV"
    return f"{prefix}-{today:%Y%m}-{random.randint(100000, 999999)}"


def _money(value: Decimal) -> float:
    return float(value)


def _fmt(value: Decimal) -> str:
    return f"{value:,.2f} ر.س"


# ─────────────────────────────────────────────
# Payloads
# ─────────────────────────────────────────────


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, str_strip_whitespace=True)


class TaskPayload(_Payload):
    title: str = Field(min_length=1)
    client_name: Optional[str] = Field(default="", alias="clientName")
    description: Optional[str] = None
    priority: str = "medium"
    phone: Optional[str] = None

    @field_validator("client_name", mode="before")
    @classmethod
    def _optional_client(cls, v: Any) -> str:
        return "" if v is None else v

    @field_validator("priority", mode="before")
    @classmethod
    def _known_priority(cls, v: Any) -> str:
        v = str(v or "").strip().lower()
        return v if v in {"low", "medium", "high", "urgent"} else "medium"


class InvoicePayload(_Payload):
    client_name: str = Field(min_length=1, alias="clientName")
    amount: Optional[Decimal] = None
    type: str = "sales"
    description: Optional[str] = None
    quantity: Decimal = Decimal(1)
    unit_price: Optional[Decimal] = Field(default=None, alias="unitPrice")

    @field_validator("amount", "unit_price", mode="before")
    @classmethod
    def _parse_money(cls, v: Any) -> Optional[Decimal]:
        return None if v is None or v == "" else to_decimal(v)

    @field_validator("quantity", mode="before")
    @classmethod
    def _parse_quantity(cls, v: Any) -> Decimal:
        qty = Decimal(1) if v is None or v == "" else to_decimal(v)
        if qty <= 0:
            raise ValueError("quantity must be positive")
        return qty

    @field_validator("type", mode="before")
    @classmethod
    def _known_type(cls, v: Any) -> str:
        return "purchase" if str(v or "").strip().lower() == "purchase" else "sales"

    def pre_tax_amount(self) -> Decimal:
        if self.amount is not None:
            return self.amount
        if self.unit_price is not None:
            return self.unit_price * self.quantity
        raise ValueError("amount is required")


class DebtPayload(_Payload):
    client_name: str = Field(min_length=1, alias="clientName")
    amount: Decimal
    service_type: str = Field(default="خدمات محاسبية", alias="serviceType")
    notes: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def _parse_money(cls, v: Any) -> Decimal:
        amount = to_decimal(v)
        if amount <= 0:
            raise ValueError("amount must be positive")
        return amount

    @field_validator("service_type", mode="before")
    @classmethod
    def _default_service(cls, v: Any) -> str:
        return str(v).strip() if v and str(v).strip() else "خدمات محاسبية"


# ═════════════════════════════════════════════
# Handlers
# ═════════════════════════════════════════════


class ActionHandler(ABC):
    """Strategy interface for one directive tag."""

    result_type: str
    payload_model: type[_Payload]

    def parse(self, data: Any) -> _Payload:
        return self.payload_model.model_validate(data if isinstance(data, dict) else {})

    @abstractmethod
    async def execute(
        self,
        payload: Any,
        gateway: DataGateway,
        clients: list[dict[str, Any]],
        today: date,
    ) -> ActionResult: ...

    def failure(self, message: str) -> ActionResult:
        return ActionResult(type=self.result_type, success=False, message=message)


class TaskActionHandler(ActionHandler):
    result_type = "task"
    payload_model = TaskPayload

    async def execute(
        self,
        payload: Any,
        gateway: DataGateway,
        clients: list[dict[str, Any]],
        today: date,
    ) -> ActionResult:
        client = resolve_client(payload.client_name, clients)
        row = {
            "title": payload.title,
            "description": payload.description,
            "client_name": (client or {}).get("name") or payload.client_name or None,
            "client_id": (client or {}).get("id"),
            "phone": payload.phone or (client or {}).get("phone"),
            "priority": payload.priority,
            "status": "pending",
            "due_date": (today + timedelta(days=TASK_DUE_DAYS)).isoformat(),
        }
        result = await gateway.insert(TASKS_TABLE, row)
        if not result.ok:
            return self.failure(result.error or "")

        who = row["client_name"] or "بدون عميل"
        return ActionResult(
            type="task",
            success=True,
            message=f'تم إنشاء المهمة "{payload.title}" للعميل {who}',
            data=result.data or row,
        )


class InvoiceActionHandler(ActionHandler):
    result_type = "invoice"
    payload_model = InvoicePayload

    async def execute(
        self,
        payload: Any,
        gateway: DataGateway,
        clients: list[dict[str, Any]],
        today: date,
    ) -> ActionResult:
        try:
            amount, tax, total = compute_invoice_amounts(payload.pre_tax_amount())
        except ValueError as exc:
            return self.failure(f"بيانات الفاتورة غير صالحة: {exc}")

        client = resolve_client(payload.client_name, clients)
        row = {
            "invoice_number": generate_invoice_number(payload.type, today),
            "client_name": (client or {}).get("name") or payload.client_name,
            "client_id": (client or {}).get("id"),
            "type": payload.type,
            "amount": _money(amount),
            "tax_amount": _money(tax),
            "total_amount": _money(total),
            "status": "pending",
        }
        result = await gateway.insert(INVOICES_TABLE, row)
        if not result.ok:
            return self.failure(result.error or "")

        invoice = result.data or row
        message = (
            f"تم إنشاء الفاتورة {row['invoice_number']} للعميل {row['client_name']} "
            f"بمبلغ {_fmt(total)} شامل الضريبة"
        )

        if payload.description:
            unit_price = payload.unit_price
            if unit_price is None:
                unit_price = (amount / payload.quantity).quantize(_CENT, rounding=ROUND_HALF_UP)
            item = {
                "invoice_id": invoice.get("id"),
                "description": payload.description,
                "quantity": float(payload.quantity),
                "unit_price": _money(unit_price),
                "total": _money(amount),
            }
            item_result = await gateway.insert(INVOICE_ITEMS_TABLE, item)
            if item_result.ok:
                invoice = {**invoice, "items": [item_result.data or item]}
            else:
                message += f" (تعذر إضافة بند الفاتورة: {item_result.error})"

        return ActionResult(type="invoice", success=True, message=message, data=invoice)


class DebtActionHandler(ActionHandler):
    result_type = "debt"
    payload_model = DebtPayload

    async def execute(
        self,
        payload: Any,
        gateway: DataGateway,
        clients: list[dict[str, Any]],
        today: date,
    ) -> ActionResult:
        client = resolve_client(payload.client_name, clients)
        row = {
            "client_name": (client or {}).get("name") or payload.client_name,
            "amount": _money(payload.amount),
            "paid_amount": 0,
            "service_type": payload.service_type,
            "work_completion_date": today.isoformat(),
            "expected_payment_date": (today + timedelta(days=DEBT_PAYMENT_TERM_DAYS)).isoformat(),
            "status": "pending",
            "notes": payload.notes,
        }
        result = await gateway.insert(DEBTS_TABLE, row)
        if not result.ok:
            return self.failure(result.error or "")

        return ActionResult(
            type="debt",
            success=True,
            message=f"تم تسجيل دين على {row['client_name']} بمبلغ {_fmt(payload.amount)}",
            data=result.data or row,
        )


# ═════════════════════════════════════════════
# Registry
# ═════════════════════════════════════════════

_HANDLERS: dict[str, ActionHandler] = {
    "CREATE_TASK": TaskActionHandler(),
    "CREATE_INVOICE": InvoiceActionHandler(),
    "CREATE_DEBT": DebtActionHandler(),
}


def get_action_handler(action: Any) -> Optional[ActionHandler]:
    """Return the handler for a directive tag, or ``None`` if unknown."""
    if not isinstance(action, str):
        return None
    return _HANDLERS.get(action.strip().upper())


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


async def extract_and_execute(
    text: str,
    gateway: DataGateway,
    clients: list[dict[str, Any]],
    today: Optional[date] = None,
) -> tuple[str, Optional[ActionResult]]:
    """Strip the directive from *text* and execute it.

    Returns ``(clean_text, action_result)``; ``action_result`` is ``None``
    when no known directive was present.
    """
    try:
        clean, directive = extract_directive(text)
        if directive is None:
            return clean, None

        handler = get_action_handler(directive.get("action"))
        if handler is None:
            logger.warning("actions | unknown directive %r ignored", directive.get("action"))
            return clean, None

        try:
            payload = handler.parse(directive.get("data"))
        except ValidationError as exc:
            logger.warning("actions | invalid %s payload: %s", handler.result_type, exc)
            return clean, handler.failure(
                f"بيانات الإجراء غير صالحة: {_validation_message(exc)}"
            )

        result = await handler.execute(payload, gateway, clients, today or date.today())
        logger.info(
            "actions | type=%s | success=%s | tenant=%s",
            result.type,
            result.success,
            gateway.scope.tenant_id,
        )
        return clean, result
    except Exception:
        logger.exception("actions | unexpected failure; returning reply unchanged")
        return text, None
