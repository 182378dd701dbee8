"""
Tests for services/excel_export.py — payout processing workbook.

Tests verify:
  1. FILE GENERATION: file created, name from timestamp, output dir created
  2. TAB STRUCTURE: 2 tabs with correct names
  3. TAB 1 — Pending Payout Requests:
     - Bank upload headers, oldest first, UPI vs BANK columns
  4. TAB 2 — Unlocked Earnings:
     - Headers, sort order (editor then unlock time), amounts
  5. FORMATTING:
     - Bold header rows, frozen top row, currency + factor formats
  6. DATABASE-BACKED REPORT:
     - generate_payout_report reads REQUESTED requests and UNLOCKED breakdowns
"""

import sys
import os
from datetime import datetime
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from openpyxl import load_workbook

from models.db_models import PayoutRequestStatus
from models.schemas import EarningsReportRow, PayoutMethod, PayoutRequestOut
from services.excel_export import (
    CURRENCY_FORMAT,
    EARNINGS_TAB,
    FACTOR_FORMAT,
    PENDING_TAB,
    generate_payout_report,
    generate_report,
)
from services.payout import PayoutComputer
from services.payout_requests import PayoutRequestWorkflow
from services.unlock import UnlockCoordinator

GENERATED_AT = datetime(2026, 3, 1, 9, 30, 0)


# ===========================================================================
# Test data helpers
# ===========================================================================

def make_request(name="Asha", amount="600", method="UPI", created_at=None):
    if method == "UPI":
        payout_method = PayoutMethod(method="UPI", upi_id=f"{name.lower()}@okbank")
    else:
        payout_method = PayoutMethod(
            method="BANK", bank_name="State Bank",
            account_number="000123456789", ifsc_code="SBIN0000001",
        )
    return PayoutRequestOut(
        id=f"req-{name}",
        editor_id=f"ed-{name}",
        editor_name=name,
        amount=Decimal(amount),
        payout_method=payout_method,
        status=PayoutRequestStatus.REQUESTED,
        created_at=created_at or datetime(2026, 2, 20, 10, 0, 0),
    )


def make_earning(editor="Asha", project="Launch Reel", final="1050", unlocked_at=None):
    return EarningsReportRow(
        project_id=f"p-{project}",
        project_name=project,
        editor_id=f"ed-{editor}",
        editor_name=editor,
        billable_minutes=Decimal("100"),
        base_payout=Decimal("1000"),
        reliability_factor=Decimal("1"),
        quality_factor=Decimal("1.05"),
        capped_payout=Decimal(final),
        bonus_amount=Decimal("0"),
        final_payout=Decimal(final),
        unlocked_at=unlocked_at or datetime(2026, 2, 25, 18, 0, 0),
    )


def rows(ws):
    return [list(r) for r in ws.iter_rows(min_row=2, values_only=True)]


@pytest.fixture
def output_dir(tmp_path):
    return str(tmp_path / "reports")


# ===========================================================================
# 1. FILE GENERATION
# ===========================================================================

class TestFileGeneration:

    def test_file_created(self, output_dir):
        filepath = generate_report([make_request()], [make_earning()], output_dir, GENERATED_AT)
        assert os.path.exists(filepath)

    def test_filename_from_timestamp(self, output_dir):
        filepath = generate_report([], [], output_dir, GENERATED_AT)
        assert os.path.basename(filepath) == "Editor Payouts 2026-03-01 093000.xlsx"

    def test_output_dir_created(self, tmp_path):
        nested = str(tmp_path / "nested" / "deep")
        filepath = generate_report([], [], nested, GENERATED_AT)
        assert os.path.isdir(nested)
        assert filepath.startswith(nested)


# ===========================================================================
# 2. TAB STRUCTURE
# ===========================================================================

class TestTabStructure:

    def test_two_tabs(self, output_dir):
        wb = load_workbook(generate_report([], [], output_dir, GENERATED_AT))
        assert wb.sheetnames == [PENDING_TAB, EARNINGS_TAB]

    def test_empty_tabs_have_headers_only(self, output_dir):
        wb = load_workbook(generate_report([], [], output_dir, GENERATED_AT))
        assert wb[PENDING_TAB].max_row == 1
        assert wb[EARNINGS_TAB].max_row == 1


# ===========================================================================
# 3. TAB 1 — Pending Payout Requests
# ===========================================================================

class TestPendingRequestsTab:

    def test_bank_upload_headers(self, output_dir):
        ws = load_workbook(generate_report([], [], output_dir, GENERATED_AT))[PENDING_TAB]
        assert [c.value for c in ws[1]] == [
            "Name", "Amount", "Method", "UPI_ID", "Bank_Name",
            "Account_Number", "IFSC", "Requested At",
        ]

    def test_upi_row(self, output_dir):
        ws = load_workbook(
            generate_report([make_request("Asha", "600")], [], output_dir, GENERATED_AT)
        )[PENDING_TAB]
        assert rows(ws) == [[
            "Asha", 600, "UPI", "asha@okbank", None, None, None, "2026-02-20 10:00:00",
        ]]

    def test_bank_row(self, output_dir):
        ws = load_workbook(
            generate_report([make_request("Ravi", "750.5", method="BANK")], [], output_dir, GENERATED_AT)
        )[PENDING_TAB]
        assert rows(ws)[0][:7] == [
            "Ravi", 750.5, "BANK", None, "State Bank", "000123456789", "SBIN0000001",
        ]

    def test_oldest_request_first(self, output_dir):
        requests = [
            make_request("Late", created_at=datetime(2026, 2, 22)),
            make_request("Early", created_at=datetime(2026, 2, 18)),
        ]
        ws = load_workbook(generate_report(requests, [], output_dir, GENERATED_AT))[PENDING_TAB]
        assert [r[0] for r in rows(ws)] == ["Early", "Late"]


# ===========================================================================
# 4. TAB 2 — Unlocked Earnings
# ===========================================================================

class TestUnlockedEarningsTab:

    def test_headers(self, output_dir):
        ws = load_workbook(generate_report([], [], output_dir, GENERATED_AT))[EARNINGS_TAB]
        assert [c.value for c in ws[1]] == [
            "Editor", "Project", "Billable Minutes", "Base Payout", "Reliability",
            "Quality", "Capped Payout", "Bonus", "Final Payout", "Unlocked At",
        ]

    def test_row_values(self, output_dir):
        ws = load_workbook(generate_report([], [make_earning()], output_dir, GENERATED_AT))[EARNINGS_TAB]
        assert rows(ws) == [[
            "Asha", "Launch Reel", 100, 1000, 1, 1.05, 1050, 0, 1050, "2026-02-25 18:00:00",
        ]]

    def test_sorted_by_editor_then_unlock_time(self, output_dir):
        earnings = [
            make_earning("Ravi", "B"),
            make_earning("Asha", "Second", unlocked_at=datetime(2026, 2, 27)),
            make_earning("Asha", "First", unlocked_at=datetime(2026, 2, 26)),
        ]
        ws = load_workbook(generate_report([], earnings, output_dir, GENERATED_AT))[EARNINGS_TAB]
        assert [(r[0], r[1]) for r in rows(ws)] == [("Asha", "First"), ("Asha", "Second"), ("Ravi", "B")]


# ===========================================================================
# 5. FORMATTING
# ===========================================================================

class TestFormatting:

    def test_bold_headers_and_frozen_row(self, output_dir):
        wb = load_workbook(generate_report([make_request()], [make_earning()], output_dir, GENERATED_AT))
        for ws in wb.worksheets:
            assert all(c.font.bold for c in ws[1])
            assert ws.freeze_panes == "A2"

    def test_currency_and_factor_formats(self, output_dir):
        wb = load_workbook(generate_report([make_request()], [make_earning()], output_dir, GENERATED_AT))
        assert wb[PENDING_TAB].cell(row=2, column=2).number_format == CURRENCY_FORMAT
        earnings = wb[EARNINGS_TAB]
        assert earnings.cell(row=2, column=9).number_format == CURRENCY_FORMAT
        assert earnings.cell(row=2, column=5).number_format == FACTOR_FORMAT


# ===========================================================================
# 6. DATABASE-BACKED REPORT
# ===========================================================================

class TestGeneratePayoutReport:

    def test_reads_pending_requests_and_unlocked_breakdowns(self, db, factory, output_dir):
        project, editor = factory.standard_project()
        UnlockCoordinator(db).unlock_project_payouts(project.id)
        PayoutRequestWorkflow(db).create_request(
            editor.id, Decimal("600"), PayoutMethod(method="UPI", upi_id="asha@okbank"),
        )

        filepath, summary = generate_payout_report(db, output_dir, GENERATED_AT)

        assert summary == {
            "pending_requests": 1,
            "pending_total": "600.00",
            "unlocked_breakdowns": 1,
            "unlocked_total": "1050.00",
        }
        wb = load_workbook(filepath)
        assert rows(wb[PENDING_TAB])[0][:3] == ["Asha", 600, "UPI"]
        assert rows(wb[EARNINGS_TAB])[0][:2] == ["Asha", "Launch Reel"]

    def test_pending_breakdowns_not_reported(self, db, factory, output_dir):
        project, editor = factory.standard_project()
        PayoutComputer(db).compute_breakdown(project.id, editor.id)

        _, summary = generate_payout_report(db, output_dir, GENERATED_AT)
        assert summary["unlocked_breakdowns"] == 0
