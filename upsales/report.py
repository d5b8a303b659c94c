"""
Excel report writer.

Renders a CompensationReport into one .xlsx workbook: per month a detail
sheet "Розрахунок МП M.YYYY" and a summary sheet "Виконання M.YYYY".
The workbook is saved to a temporary file next to the target and moved
into place with os.replace, so readers never see a partial report.
"""
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence, Union
from zoneinfo import ZoneInfo

import openpyxl
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from upsales.config import DEFAULT_TIERS, ReportConfig, TierConfig
from upsales.exceptions import ReportGenerationError
from upsales.models import ManagerSummaryRow, ReportRow
from upsales.observability import Timer, get_logger
from upsales.pipeline import CompensationReport, MonthReport

logger = get_logger(__name__)

CURRENCY_FORMAT = '#,##0.00" грн"'

DETAIL_SHEET_PREFIX = "Розрахунок МП"
SUMMARY_SHEET_PREFIX = "Виконання"
EMPTY_SHEET_TITLE = "Немає даних"

# Styles
HEADER_FONT = Font(name='Arial', size=10, bold=True)
HEADER_FILL = PatternFill(start_color="DDEBF7", end_color="DDEBF7", fill_type="solid")
SUBTOTAL_FONT = Font(name='Arial', size=10, bold=True)
SUBTOTAL_FILL = PatternFill(start_color="E8F0FE", end_color="E8F0FE", fill_type="solid")
GRAND_TOTAL_FONT = Font(name='Arial', size=10, bold=True, color="FFFFFF")
GRAND_TOTAL_FILL = PatternFill(start_color="1A73E8", end_color="1A73E8", fill_type="solid")

DETAIL_WIDTHS = (17, 21, 14, 20, 31, 19, 19, 17, 17, 17, 17, 17)


def detail_headers(tiers: Sequence[TierConfig]) -> list:
    return [
        "Дата", "Менеджер", "ID Менеджера", "Тип", "Назва замовлення",
        "Ціна продажу (грн)", "Собівартість (грн)", "Маржа (грн)",
        *[tier.header for tier in tiers],
        "ID Замовлення",
    ]


def summary_headers(tiers: Sequence[TierConfig]) -> list:
    headers = ["ПІБ", "ID Менеджера"]
    for tier in tiers:
        headers += [
            f"Ставка Р{tier.level} ({tier.rate_pct:g}%)",
            f"Бонус Р{tier.level} ({tier.bonus_pct:g}%)",
            f"Загалом Р{tier.level}",
        ]
    return headers


def _write_header(ws: Worksheet, headers: Sequence[str], widths: Sequence[int]) -> None:
    ws.append(list(headers))
    for col, _ in enumerate(headers, start=1):
        cell = ws.cell(row=1, column=col)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
        width = widths[col - 1] if col <= len(widths) else 17
        ws.column_dimensions[get_column_letter(col)].width = width
    ws.freeze_panes = "A2"


def _style_row(ws: Worksheet, row: int, columns: int, font: Font, fill: PatternFill) -> None:
    for col in range(1, columns + 1):
        cell = ws.cell(row=row, column=col)
        cell.font = font
        cell.fill = fill


def _format_currency(ws: Worksheet, row: int, first_col: int, last_col: int) -> None:
    for col in range(first_col, last_col + 1):
        ws.cell(row=row, column=col).number_format = CURRENCY_FORMAT


class WorkbookReportWriter:
    """
    Writes compensation reports as .xlsx workbooks.

    Usage:
        writer = WorkbookReportWriter(config.report, config.compensation.tiers)
        path = writer.write(report)
    """

    def __init__(
        self,
        report_config: Optional[ReportConfig] = None,
        tiers: Sequence[TierConfig] = DEFAULT_TIERS,
    ):
        self.config = report_config or ReportConfig()
        self.tiers = tuple(tiers)

    def default_path(self, now: Optional[datetime] = None) -> Path:
        """Target path in the output directory, stamped with the run time."""
        now = now or datetime.now(ZoneInfo(self.config.timezone))
        filename = self.config.filename_template.format(stamp=now.strftime("%Y%m%d_%H%M%S"))
        return Path(self.config.output_dir) / filename

    # ═══════════════════════════════════════════════════════════════════════════
    # SHEETS
    # ═══════════════════════════════════════════════════════════════════════════

    def _detail_values(self, row: ReportRow) -> list:
        return [
            row.date,
            row.manager_name,
            row.manager_id or "",
            row.type_label,
            row.name,
            row.sale_price if row.sale_price is not None else "",
            row.cost_price if row.cost_price is not None else "",
            row.margin,
            *row.amounts,
            row.order_id if row.order_id is not None else "",
        ]

    def _write_detail_sheet(self, ws: Worksheet, month: MonthReport) -> None:
        headers = detail_headers(self.tiers)
        _write_header(ws, headers, DETAIL_WIDTHS)
        amount_last_col = 8 + len(self.tiers)

        for row in month.rows:
            ws.append(self._detail_values(row))
            excel_row = ws.max_row
            _format_currency(ws, excel_row, 6, amount_last_col)
            if row.is_grand_total:
                _style_row(ws, excel_row, len(headers), GRAND_TOTAL_FONT, GRAND_TOTAL_FILL)
            elif row.is_subtotal:
                _style_row(ws, excel_row, len(headers), SUBTOTAL_FONT, SUBTOTAL_FILL)

    def _write_summary_sheet(self, ws: Worksheet, rows: Sequence[ManagerSummaryRow]) -> None:
        headers = summary_headers(self.tiers)
        _write_header(ws, headers, (30, 14))

        for summary in rows:
            values = [summary.manager_name, summary.manager_id or ""]
            for rate, bonus, total in zip(summary.rates, summary.bonuses, summary.totals):
                values += [rate, bonus, total]
            ws.append(values)
            _format_currency(ws, ws.max_row, 3, len(headers))

    def build_workbook(self, report: CompensationReport) -> openpyxl.Workbook:
        """Render the report into an in-memory workbook."""
        wb = openpyxl.Workbook()
        default_sheet = wb.active

        if report.is_empty:
            default_sheet.title = EMPTY_SHEET_TITLE
            default_sheet["A1"] = "За обраний період замовлень не знайдено"
            default_sheet["A1"].font = HEADER_FONT
            return wb

        wb.remove(default_sheet)
        for month in report.months:
            self._write_detail_sheet(wb.create_sheet(f"{DETAIL_SHEET_PREFIX} {month.key}"), month)
            self._write_summary_sheet(wb.create_sheet(f"{SUMMARY_SHEET_PREFIX} {month.key}"), month.summary)
        return wb

    def write(self, report: CompensationReport, path: Union[str, Path, None] = None) -> Path:
        """
        Save the report, replacing any existing file at path atomically.

        Raises:
            ReportGenerationError: If the workbook cannot be built or saved
        """
        target = Path(path) if path else self.default_path()
        temp_path = None

        try:
            with Timer("report_write", logger):
                wb = self.build_workbook(report)
                target.parent.mkdir(parents=True, exist_ok=True)
                with tempfile.NamedTemporaryFile(
                    dir=target.parent, prefix=".upsales_", suffix=".xlsx", delete=False
                ) as temp_file:
                    temp_path = temp_file.name
                wb.save(temp_path)
                os.replace(temp_path, target)
                temp_path = None
        except (OSError, ValueError, TypeError) as e:
            logger.error(f"Failed to write report {target}: {e}", exc_info=True)
            raise ReportGenerationError(f"Failed to write report {target}", cause=e) from e
        finally:
            if temp_path and os.path.exists(temp_path):
                os.remove(temp_path)

        logger.info(
            f"Report written: {target}",
            extra={"path": str(target), "months": [m.key for m in report.months]}
        )
        return target
