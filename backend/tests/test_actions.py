"""Tests for directive extraction and record-creating actions."""

import json
from datetime import date
from decimal import Decimal

import pytest

from conftest import action_block
from ishaar_assistant.actions import (
    compute_invoice_amounts,
    extract_and_execute,
    extract_directive,
    generate_invoice_number,
    get_action_handler,
    resolve_client,
    to_decimal,
)

TODAY = date(2026, 10, 17)


def _directive(action: str, **data) -> str:
    return action_block(json.dumps({"action": action, "data": data}, ensure_ascii=False))


class TestExtractDirective:
    def test_no_block_returns_text_unchanged(self):
        text = "لديك 3 فواتير معلقة."

        assert extract_directive(text) == (text, None)

    def test_strips_block_and_parses_payload(self):
        text = "سأنشئ المهمة الآن.\n\n" + _directive("CREATE_TASK", title="x") + "\n\nتم."

        clean, payload = extract_directive(text)

        assert "```" not in clean
        assert clean == "سأنشئ المهمة الآن.\n\nتم."
        assert payload == {"action": "CREATE_TASK", "data": {"title": "x"}}

    def test_stripping_is_idempotent(self):
        text = "نص " + _directive("CREATE_TASK", title="x")

        once, _ = extract_directive(text)
        twice, payload = extract_directive(once)

        assert once == twice
        assert payload is None

    def test_malformed_json_is_dropped_silently(self):
        clean, payload = extract_directive("حسناً\n```action\n{not json}\n```")

        assert clean == "حسناً"
        assert payload is None

    def test_non_object_payload_is_ignored(self):
        _, payload = extract_directive(action_block("[1, 2, 3]"))

        assert payload is None

    def test_only_first_of_many_is_parsed_but_all_are_stripped(self):
        text = (
            _directive("CREATE_TASK", title="first")
            + "\nبين\n"
            + _directive("CREATE_DEBT", clientName="x", amount=5)
        )

        clean, payload = extract_directive(text)

        assert clean == "بين"
        assert payload["data"]["title"] == "first"

    @pytest.mark.parametrize(
        "text",
        [
            "```json\n{\"a\": 1}\n```",
            "code:\n```actionscript\ntrace('hi');\n```",
            "```actions\n{\"action\": \"CREATE_TASK\"}\n```",
            "```action-log\nstep 1\n```",
        ],
    )
    def test_other_fences_are_left_alone(self, text):
        assert extract_directive(text) == (text, None)

    def test_tag_followed_by_spaces_is_a_directive(self):
        _, payload = extract_directive("```action  \n{\"action\": \"CREATE_TASK\"}\n```")

        assert payload == {"action": "CREATE_TASK"}


class TestHelpers:
    def test_resolve_client_by_containment(self, clients_rows):
        assert resolve_client("أحمد", clients_rows)["id"] == "c-2"
        assert resolve_client("شركة النور", clients_rows)["id"] == "c-1"
        assert resolve_client("السيد احمد محمد", clients_rows)["id"] == "c-2"

    def test_resolve_client_no_match(self, clients_rows):
        assert resolve_client("خالد", clients_rows) is None
        assert resolve_client("", clients_rows) is None
        assert resolve_client(None, clients_rows) is None

    def test_resolve_client_first_match_wins(self):
        clients = [{"id": "new", "name": "محمد علي"}, {"id": "old", "name": "محمد سالم"}]

        assert resolve_client("محمد", clients)["id"] == "new"

    def test_to_decimal_accepts_formatted_strings(self):
        assert to_decimal("5,000") == Decimal("5000")
        assert to_decimal("٥٠٠٠") == Decimal("5000")
        assert to_decimal("1200 ر.س") == Decimal("1200")
        assert to_decimal(12.5) == Decimal("12.5")

    @pytest.mark.parametrize("bad", ["abc", True, None, "NaN", [1]])
    def test_to_decimal_rejects_garbage(self, bad):
        with pytest.raises(ValueError):
            to_decimal(bad)

    def test_invoice_amounts(self):
        assert compute_invoice_amounts(Decimal("5000")) == (
            Decimal("5000.00"),
            Decimal("750.00"),
            Decimal("5750.00"),
        )
        amount, tax, total = compute_invoice_amounts(Decimal("333.33"))
        assert tax == Decimal("50.00")
        assert total == amount + tax

    def test_invoice_amounts_reject_negative(self):
        with pytest.raises(ValueError):
            compute_invoice_amounts(Decimal("-1"))

    def test_invoice_number_format(self):
        assert generate_invoice_number("sales", TODAY).startswith("INV-202610-")
        number = generate_invoice_number("purchase", TODAY)
        assert number.startswith("PUR-202610-")
        assert len(number.rsplit("-", 1)[1]) == 6

    def test_handler_lookup_is_case_insensitive(self):
        assert get_action_handler(" create_task ").result_type == "task"
        assert get_action_handler("DELETE_TASK") is None
        assert get_action_handler(None) is None


class TestTaskAction:
    @pytest.mark.asyncio
    async def test_creates_task_for_matched_client(self, gateway, fake_db, clients_rows):
        reply = "تم.\n" + _directive(
            "CREATE_TASK",
            title="تجديد السجل التجاري",
            client_name="أحمد",
            description="تجديد قبل نهاية الشهر",
        )

        clean, result = await extract_and_execute(reply, gateway, clients_rows, today=TODAY)

        assert clean == "تم."
        assert result.type == "task"
        assert result.success is True
        assert "تجديد السجل التجاري" in result.message

        [row] = fake_db.inserted_into("tasks")
        assert row["client_id"] == "c-2"
        assert row["client_name"] == "أحمد محمد"
        assert row["phone"] == "0500000001"
        assert row["priority"] == "medium"
        assert row["status"] == "pending"
        assert row["due_date"] == "2026-10-24"
        assert row["tenant_id"] == "77777777-7777-7777-7777-777777777777"
        assert row["created_by"] == "11111111-1111-1111-1111-111111111111"
        assert result.data["id"] == "tasks-1"

    @pytest.mark.asyncio
    async def test_unknown_priority_defaults_to_medium(self, gateway, fake_db):
        reply = _directive("CREATE_TASK", title="مراجعة", priority="asap")

        _, result = await extract_and_execute(reply, gateway, [], today=TODAY)

        assert result.success is True
        [row] = fake_db.inserted_into("tasks")
        assert row["priority"] == "medium"
        assert row["client_id"] is None

    @pytest.mark.asyncio
    async def test_missing_title_is_rejected_without_write(self, gateway, fake_db):
        reply = _directive("CREATE_TASK", client_name="أحمد")

        clean, result = await extract_and_execute(reply, gateway, [], today=TODAY)

        assert clean == ""
        assert result.success is False
        assert "بيانات الإجراء غير صالحة" in result.message
        assert fake_db.inserted == []

    @pytest.mark.asyncio
    async def test_null_client_still_creates_task(self, gateway, fake_db):
        reply = action_block('{"action": "CREATE_TASK", "data": {"title": "مراجعة", "client_name": null}}')

        _, result = await extract_and_execute(reply, gateway, [], today=TODAY)

        assert result.success is True
        assert "بدون عميل" in result.message
        [row] = fake_db.inserted_into("tasks")
        assert row["client_id"] is None
        assert row["client_name"] is None

    @pytest.mark.asyncio
    async def test_write_failure_is_reported_verbatim(self, gateway, fake_db, clients_rows):
        fake_db.fail_writes["tasks"] = 'null value in column "title" violates not-null constraint'
        reply = "سأنشئ المهمة.\n" + _directive("CREATE_TASK", title="مراجعة", client_name="أحمد")

        clean, result = await extract_and_execute(reply, gateway, clients_rows, today=TODAY)

        assert clean == "سأنشئ المهمة."
        assert result.type == "task"
        assert result.success is False
        assert result.message == 'null value in column "title" violates not-null constraint'
        assert result.data is None
        assert fake_db.inserted == []


class TestInvoiceAction:
    @pytest.mark.asyncio
    async def test_unmatched_client_still_creates_invoice(self, gateway, fake_db, clients_rows):
        reply = _directive("CREATE_INVOICE", client_name="شركة الأمل", amount=5000)

        _, result = await extract_and_execute(reply, gateway, clients_rows, today=TODAY)

        assert result.type == "invoice"
        assert result.success is True
        [row] = fake_db.inserted_into("invoices")
        assert row["client_id"] is None
        assert row["client_name"] == "شركة الأمل"
        assert row["amount"] == 5000.0
        assert row["tax_amount"] == 750.0
        assert row["total_amount"] == 5750.0
        assert row["type"] == "sales"
        assert row["status"] == "pending"
        assert row["invoice_number"].startswith("INV-202610-")
        assert fake_db.inserted_into("invoice_items") == []

    @pytest.mark.asyncio
    async def test_item_written_when_description_given(self, gateway, fake_db, clients_rows):
        reply = _directive(
            "CREATE_INVOICE",
            clientName="النور",
            amount="5,000",
            description="إعداد القوائم المالية",
            type="purchase",
        )

        _, result = await extract_and_execute(reply, gateway, clients_rows, today=TODAY)

        assert result.success is True
        [invoice] = fake_db.inserted_into("invoices")
        assert invoice["client_id"] == "c-1"
        assert invoice["invoice_number"].startswith("PUR-")
        [item] = fake_db.inserted_into("invoice_items")
        assert item["invoice_id"] == invoice["id"]
        assert item["quantity"] == 1.0
        assert item["unit_price"] == 5000.0
        assert item["total"] == 5000.0
        assert "tenant_id" not in item
        assert result.data["items"][0]["description"] == "إعداد القوائم المالية"

    @pytest.mark.asyncio
    async def test_amount_derived_from_unit_price(self, gateway, fake_db):
        reply = _directive("CREATE_INVOICE", client_name="x", unit_price=100, quantity=3)

        _, result = await extract_and_execute(reply, gateway, [], today=TODAY)

        [row] = fake_db.inserted_into("invoices")
        assert row["amount"] == 300.0
        assert row["total_amount"] == 345.0
        assert result.success is True

    @pytest.mark.asyncio
    async def test_failed_invoice_skips_item(self, gateway, fake_db):
        fake_db.fail_writes["invoices"] = "permission denied for table invoices"
        reply = _directive("CREATE_INVOICE", client_name="x", amount=10, description="بند")

        _, result = await extract_and_execute(reply, gateway, [], today=TODAY)

        assert result.success is False
        assert result.message == "permission denied for table invoices"
        assert fake_db.inserted == []

    @pytest.mark.asyncio
    async def test_failed_item_keeps_invoice_success(self, gateway, fake_db):
        fake_db.fail_writes["invoice_items"] = "items table locked"
        reply = _directive("CREATE_INVOICE", client_name="x", amount=10, description="بند")

        _, result = await extract_and_execute(reply, gateway, [], today=TODAY)

        assert result.success is True
        assert "items table locked" in result.message
        assert len(fake_db.inserted_into("invoices")) == 1

    @pytest.mark.asyncio
    async def test_negative_amount_is_rejected(self, gateway, fake_db):
        reply = _directive("CREATE_INVOICE", client_name="x", amount=-50)

        _, result = await extract_and_execute(reply, gateway, [], today=TODAY)

        assert result.success is False
        assert fake_db.inserted == []

    @pytest.mark.asyncio
    async def test_missing_amount_is_rejected(self, gateway, fake_db):
        reply = _directive("CREATE_INVOICE", client_name="x")

        _, result = await extract_and_execute(reply, gateway, [], today=TODAY)

        assert result.type == "invoice"
        assert result.success is False
        assert fake_db.inserted == []


class TestDebtAction:
    @pytest.mark.asyncio
    async def test_creates_debt_with_terms(self, gateway, fake_db, clients_rows):
        reply = _directive("CREATE_DEBT", client_name="أحمد", amount=1200)

        _, result = await extract_and_execute(reply, gateway, clients_rows, today=TODAY)

        assert result.type == "debt"
        assert result.success is True
        [row] = fake_db.inserted_into("debts")
        assert row["client_name"] == "أحمد محمد"
        assert row["amount"] == 1200.0
        assert row["paid_amount"] == 0
        assert row["service_type"] == "خدمات محاسبية"
        assert row["work_completion_date"] == "2026-10-17"
        assert row["expected_payment_date"] == "2026-11-16"
        assert row["status"] == "pending"

    @pytest.mark.asyncio
    async def test_gateway_error_is_reported(self, gateway, fake_db):
        fake_db.fail_writes["debts"] = 'new row violates row-level security policy for table "debts"'
        reply = "سأسجل الدين.\n" + _directive("CREATE_DEBT", client_name="خالد", amount=1200)

        clean, result = await extract_and_execute(reply, gateway, [], today=TODAY)

        assert clean == "سأسجل الدين."
        assert result.success is False
        assert "row-level security" in result.message
        assert result.data is None

    @pytest.mark.asyncio
    async def test_zero_amount_is_rejected(self, gateway, fake_db):
        reply = _directive("CREATE_DEBT", client_name="خالد", amount=0)

        _, result = await extract_and_execute(reply, gateway, [], today=TODAY)

        assert result.success is False
        assert fake_db.inserted == []


class TestExtractAndExecute:
    @pytest.mark.asyncio
    async def test_plain_reply_has_no_action(self, gateway, fake_db):
        clean, result = await extract_and_execute("لا يوجد شيء", gateway, [], today=TODAY)

        assert clean == "لا يوجد شيء"
        assert result is None
        assert fake_db.queries == []

    @pytest.mark.asyncio
    async def test_unknown_action_is_stripped_and_ignored(self, gateway, fake_db):
        reply = "حسناً\n" + _directive("DELETE_EVERYTHING")

        clean, result = await extract_and_execute(reply, gateway, [], today=TODAY)

        assert clean == "حسناً"
        assert result is None
        assert fake_db.inserted == []

    @pytest.mark.asyncio
    async def test_malformed_json_produces_no_write(self, gateway, fake_db):
        reply = "حسناً\n```action\n{\"action\": \"CREATE_TASK\", \n```"

        clean, result = await extract_and_execute(reply, gateway, [], today=TODAY)

        assert clean == "حسناً"
        assert result is None
        assert fake_db.inserted == []
