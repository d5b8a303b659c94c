"""
One compensation batch: fetch orders, compute, publish the workbook.

Shared by the command-line script and the scheduled job. Any failure
propagates before the report is written, so a run either publishes a
complete workbook or nothing.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional
from zoneinfo import ZoneInfo

from upsales.config import AppConfig, config as default_config, validate_config
from upsales.filters import DateRange, resolve_period
from upsales.keycrm import KeyCRMClient
from upsales.observability import Timer, get_logger, run_scope
from upsales.pipeline import CompensationPipeline, CompensationReport
from upsales.report import WorkbookReportWriter

logger = get_logger(__name__)


@dataclass
class RunResult:
    """Outcome of one batch."""
    report: CompensationReport
    path: Optional[Path] = None
    date_range: Optional[DateRange] = None
    stats: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": str(self.path) if self.path else None,
            "created_between": self.date_range.as_filter() if self.date_range else None,
            **self.stats,
        }


async def run_compensation(
    app_config: Optional[AppConfig] = None,
    period: Optional[str] = None,
    output: Optional[Path] = None,
    dry_run: bool = False,
    client_factory: Callable[..., KeyCRMClient] = KeyCRMClient,
) -> RunResult:
    """
    Fetch orders for the period, compute compensation and write the report.

    Args:
        app_config: Configuration (defaults to the global instance)
        period: Period name overriding the configured one
        output: Report path (defaults to a stamped file in the output dir)
        dry_run: Compute without writing the workbook
        client_factory: Builds the KeyCRM client from APIConfig

    Raises:
        ConfigurationError, ValidationError, KeyCRMError, ReportGenerationError
    """
    app_config = app_config or default_config
    validate_config(app_config)

    report_config = app_config.report
    date_range = resolve_period(
        period or report_config.period,
        custom_start=report_config.custom_start,
        custom_end=report_config.custom_end,
        tz=ZoneInfo(report_config.timezone),
    )

    with run_scope():
        logger.info(
            "Compensation run started",
            extra={
                "period": period or report_config.period,
                "created_between": date_range.as_filter(report_config.convert_dates_to_utc) if date_range else None,
            }
        )

        with Timer("compensation_run", logger):
            async with client_factory(app_config.api) as client:
                orders = await client.fetch_orders(date_range, report_config.convert_dates_to_utc)

            report = CompensationPipeline(app_config).run(orders)

            path = None
            if not dry_run:
                writer = WorkbookReportWriter(report_config, app_config.compensation.tiers)
                path = writer.write(report, output)

    result = RunResult(report=report, path=path, date_range=date_range, stats=dict(report.stats))
    logger.info("Compensation run finished", extra=result.to_dict())
    return result
