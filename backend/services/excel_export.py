"""
Payout processing workbook.

Creates a 2-tab .xlsx file for the finance team:
  Tab 1: "Pending Payout Requests" — one row per REQUESTED withdrawal, in the
                                     bank upload layout (Name, Amount, Method,
                                     UPI_ID, Bank_Name, Account_Number, IFSC)
  Tab 2: "Unlocked Earnings"       — one row per UNLOCKED breakdown

File naming: "Editor Payouts {YYYY-MM-DD HHMMSS}.xlsx"

Formatting:
  - Bold header rows on all tabs
  - Auto-fit column widths (with min/max constraints)
  - Freeze top row (header) on all tabs
  - Currency format for amount columns (₹#,##0.00)
  - Four-decimal format for reliability / quality factors
"""

import os
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from openpyxl import Workbook
from openpyxl.styles import Font, Alignment
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet
from sqlalchemy.orm import Session

import config
from database import transaction
from models.db_models import (
    BreakdownStatus, PayoutBreakdownDB, PayoutRequestStatus, ProjectDB, UserDB, utcnow,
)
from models.schemas import EarningsReportRow, PayoutRequestOut
from services.adjustments import ZERO, to_money
from services.payout_requests import PayoutRequestWorkflow

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
MIN_COL_WIDTH = 10      # Minimum column width (characters)
MAX_COL_WIDTH = 50      # Maximum column width (avoid super-wide columns)
HEADER_FONT = Font(bold=True)
CURRENCY_FORMAT = '₹#,##0.00'
FACTOR_FORMAT = '0.0000'
MINUTES_FORMAT = '#,##0.00'

PENDING_TAB = "Pending Payout Requests"
EARNINGS_TAB = "Unlocked Earnings"


# ===========================================================================
# Public API
# ===========================================================================

def generate_payout_report(
    db: Session,
    output_dir: Optional[str] = None,
    generated_at: Optional[datetime] = None,
) -> tuple[str, dict]:
    """
    Load pending requests + unlocked earnings and write the workbook.

    Returns:
        (absolute file path, summary dict with counts and totals)
    """
    requests = PayoutRequestWorkflow(db).list_requests(PayoutRequestStatus.REQUESTED)
    earnings = load_unlocked_earnings(db)
    filepath = generate_report(requests, earnings, output_dir, generated_at)

    summary = {
        "pending_requests": len(requests),
        "pending_total": str(to_money(sum((r.amount for r in requests), ZERO))),
        "unlocked_breakdowns": len(earnings),
        "unlocked_total": str(to_money(sum((e.final_payout for e in earnings), ZERO))),
    }
    return filepath, summary


def load_unlocked_earnings(db: Session) -> list[EarningsReportRow]:
    with transaction(db):
        rows = (
            db.query(PayoutBreakdownDB, ProjectDB.name, UserDB.name)
            .join(ProjectDB, ProjectDB.id == PayoutBreakdownDB.project_id)
            .join(UserDB, UserDB.id == PayoutBreakdownDB.editor_id)
            .filter(PayoutBreakdownDB.status == BreakdownStatus.UNLOCKED)
            .all()
        )
        return [
            EarningsReportRow(
                project_id=b.project_id,
                project_name=project_name,
                editor_id=b.editor_id,
                editor_name=editor_name,
                billable_minutes=b.billable_minutes,
                base_payout=b.base_payout,
                reliability_factor=b.reliability_factor,
                quality_factor=b.quality_factor,
                capped_payout=b.capped_payout,
                bonus_amount=b.bonus_amount,
                final_payout=b.final_payout,
                unlocked_at=b.unlocked_at,
            )
            for b, project_name, editor_name in rows
        ]


def generate_report(
    requests: list[PayoutRequestOut],
    earnings: list[EarningsReportRow],
    output_dir: Optional[str] = None,
    generated_at: Optional[datetime] = None,
) -> str:
    """
    Generate the .xlsx payout workbook with 2 tabs.

    Args:
        requests:     REQUESTED payout requests for Tab 1
        earnings:     UNLOCKED breakdowns for Tab 2
        output_dir:   Directory to save the file (defaults to config.OUTPUT_DIR)
        generated_at: Timestamp used in the filename (defaults to now)

    Returns:
        Absolute file path of the generated .xlsx report.
    """
    if output_dir is None:
        output_dir = config.OUTPUT_DIR
    if generated_at is None:
        generated_at = utcnow()

    os.makedirs(output_dir, exist_ok=True)

    filename = f"Editor Payouts {generated_at.strftime('%Y-%m-%d %H%M%S')}.xlsx"
    filepath = os.path.join(output_dir, filename)

    logger.info(f"Generating report: {filepath}")

    wb = Workbook()

    ws1 = wb.active
    ws1.title = PENDING_TAB
    _build_pending_requests_tab(ws1, requests)

    ws2 = wb.create_sheet(EARNINGS_TAB)
    _build_unlocked_earnings_tab(ws2, earnings)

    wb.save(filepath)
    logger.info(
        f"Report saved: {filepath} "
        f"({len(requests)} pending requests, {len(earnings)} unlocked breakdowns)"
    )

    return filepath


# ===========================================================================
# Tab 1: Pending Payout Requests
# ===========================================================================

def _build_pending_requests_tab(
    ws: Worksheet,
    requests: list[PayoutRequestOut],
) -> None:
    """
    Tab 1: bank upload layout, oldest request first.

    Columns:
      Name | Amount | Method | UPI_ID | Bank_Name | Account_Number | IFSC |
      Requested At

    Payout method fields that do not apply to the method are left blank.
    """
    headers = [
        "Name",
        "Amount",
        "Method",
        "UPI_ID",
        "Bank_Name",
        "Account_Number",
        "IFSC",
        "Requested At",
    ]
    ws.append(headers)

    sorted_requests = sorted(requests, key=lambda r: r.created_at or datetime.min)

    for r in sorted_requests:
        method = r.payout_method
        is_upi = method.method == "UPI"
        ws.append([
            r.editor_name,
            _money_cell(r.amount),
            method.method,
            method.upi_id if is_upi else None,
            None if is_upi else method.bank_name,
            None if is_upi else method.account_number,
            None if is_upi else method.ifsc_code,
            _format_datetime(r.created_at),
        ])

    _format_header_row(ws)
    _freeze_top_row(ws)
    _apply_column_format(ws, col_idx=2, fmt=CURRENCY_FORMAT, start_row=2)
    _auto_fit_columns(ws)


# ===========================================================================
# Tab 2: Unlocked Earnings
# ===========================================================================

def _build_unlocked_earnings_tab(
    ws: Worksheet,
    earnings: list[EarningsReportRow],
) -> None:
    """
    Tab 2: One row per unlocked breakdown.

    Columns:
      Editor | Project | Billable Minutes | Base Payout | Reliability |
      Quality | Capped Payout | Bonus | Final Payout | Unlocked At

    Sorted by Editor, then Unlocked At.
    """
    headers = [
        "Editor",
        "Project",
        "Billable Minutes",
        "Base Payout",
        "Reliability",
        "Quality",
        "Capped Payout",
        "Bonus",
        "Final Payout",
        "Unlocked At",
    ]
    ws.append(headers)

    sorted_earnings = sorted(
        earnings, key=lambda e: (e.editor_name, e.unlocked_at or datetime.max)
    )

    for e in sorted_earnings:
        ws.append([
            e.editor_name,
            e.project_name,
            float(e.billable_minutes),
            _money_cell(e.base_payout),
            float(e.reliability_factor),
            float(e.quality_factor),
            _money_cell(e.capped_payout),
            _money_cell(e.bonus_amount),
            _money_cell(e.final_payout),
            _format_datetime(e.unlocked_at),
        ])

    _format_header_row(ws)
    _freeze_top_row(ws)

    _apply_column_format(ws, col_idx=3, fmt=MINUTES_FORMAT, start_row=2)
    for col_idx in [5, 6]:
        _apply_column_format(ws, col_idx=col_idx, fmt=FACTOR_FORMAT, start_row=2)
    for col_idx in [4, 7, 8, 9]:
        _apply_column_format(ws, col_idx=col_idx, fmt=CURRENCY_FORMAT, start_row=2)

    _auto_fit_columns(ws)


# ===========================================================================
# Formatting helpers
# ===========================================================================

def _money_cell(amount: Decimal) -> float:
    """Cells hold floats; amounts are already rounded to paise."""
    return float(to_money(amount))


def _format_header_row(ws: Worksheet) -> None:
    """Bold the entire header row (row 1)."""
    for cell in ws[1]:
        cell.font = HEADER_FONT
        cell.alignment = Alignment(horizontal="center", vertical="center")


def _freeze_top_row(ws: Worksheet) -> None:
    ws.freeze_panes = "A2"


def _apply_column_format(
    ws: Worksheet,
    col_idx: int,
    fmt: str,
    start_row: int = 2,
) -> None:
    """Apply a number format to all non-empty data cells in a 1-based column."""
    for row in range(start_row, ws.max_row + 1):
        cell = ws.cell(row=row, column=col_idx)
        if cell.value is not None:
            cell.number_format = fmt


def _auto_fit_columns(ws: Worksheet) -> None:
    """
    Auto-fit column widths based on cell content, with 2 chars of padding
    and MIN_COL_WIDTH / MAX_COL_WIDTH bounds.
    """
    for col_idx in range(1, ws.max_column + 1):
        col_letter = get_column_letter(col_idx)
        max_length = max(
            (
                len(str(ws.cell(row=row, column=col_idx).value))
                for row in range(1, ws.max_row + 1)
                if ws.cell(row=row, column=col_idx).value is not None
            ),
            default=0,
        )
        width = min(max(max_length + 2, MIN_COL_WIDTH), MAX_COL_WIDTH)
        ws.column_dimensions[col_letter].width = width


def _format_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Format a datetime as YYYY-MM-DD HH:MM:SS, or None if missing."""
    if dt is None:
        return None
    return dt.strftime("%Y-%m-%d %H:%M:%S")
