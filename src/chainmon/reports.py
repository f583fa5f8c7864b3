"""
Periodic transfer reports.

Summarizes the transfers stored for the monitored accounts over a time
window and writes the summary as CSV. Reports read from the database
only and are independent of the polling engine.
"""

import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

import pandas as pd

from .database import MonitorDatabase
from .models import Context, ContextData

logger = logging.getLogger(__name__)

REPORT_COLUMNS = [
    "stash",
    "network",
    "description",
    "incoming_count",
    "incoming_amount",
    "outgoing_count",
    "outgoing_amount",
]


class TransfersReport:
    """
    Per-account summary of transfers since the previous report.

    A report is due once ``report_range`` seconds have passed since the
    last one; before that, fetch_data() returns None.

    Example:
        report = TransfersReport(db, accounts, report_range=86400)
        path = report.run_once()
    """

    def __init__(
        self,
        db: MonitorDatabase,
        contexts: Iterable[Context],
        report_range: int = 86400,
        output_dir: str | Path = "reports",
        last_report: Optional[int] = None,
    ):
        self.db = db
        self.contexts = tuple(contexts)
        self.report_range = report_range
        self.output_dir = Path(output_dir)
        self.last_report = last_report

    def fetch_data(self, now: Optional[int] = None) -> Optional[list[ContextData]]:
        """
        Load the transfers of the current window, if a report is due.

        Args:
            now: Window end as UNIX seconds (defaults to current time)

        Returns:
            Transfers in (last_report, now], or None if no report is due
        """
        now = int(time.time()) if now is None else now
        last_report = self.last_report or 0

        if last_report >= now - self.report_range:
            return None

        return self.db.fetch_transfers(self.contexts, last_report, now)

    @staticmethod
    def generate(data: list[ContextData]) -> pd.DataFrame:
        """Aggregate transfers into one row per account and direction."""
        rows = []
        for record in data:
            ctx, transfer = record.context, record.data
            incoming = transfer.to == ctx.stash
            rows.append({
                "stash": ctx.stash,
                "network": ctx.network.value,
                "description": ctx.description,
                "incoming_count": int(incoming),
                "incoming_amount": transfer.amount_value if incoming else 0.0,
                "outgoing_count": int(not incoming),
                "outgoing_amount": 0.0 if incoming else transfer.amount_value,
            })

        if not rows:
            return pd.DataFrame(columns=REPORT_COLUMNS)

        df = pd.DataFrame(rows)
        return (
            df.groupby(["stash", "network", "description"], as_index=False)
            .sum()
            .loc[:, REPORT_COLUMNS]
        )

    def publish(self, report: pd.DataFrame, now: Optional[int] = None) -> Path:
        """
        Write the report as CSV and mark the window as reported.

        Returns:
            Path to the written file
        """
        now = int(time.time()) if now is None else now
        self.output_dir.mkdir(parents=True, exist_ok=True)

        stamp = datetime.fromtimestamp(now, tz=timezone.utc).strftime("%Y%m%dT%H%M%S")
        filepath = self.output_dir / f"transfers_report_{stamp}.csv"
        report.to_csv(filepath, index=False)

        self.last_report = now
        logger.info(f"Saved transfer report for {len(report)} accounts to {filepath}")
        return filepath

    def run_once(self, now: Optional[int] = None) -> Optional[Path]:
        """Fetch, generate and publish a report if one is due."""
        now = int(time.time()) if now is None else now

        data = self.fetch_data(now)
        if data is None:
            logger.debug("Transfer report not due yet")
            return None

        return self.publish(self.generate(data), now)
