"""
Tests for TransfersReport.
"""

from pathlib import Path

import pandas as pd
import pytest

from src.chainmon.database import MonitorDatabase
from src.chainmon.reports import REPORT_COLUMNS, TransfersReport

from .factories import ALICE, BOB, generate_transfer, transfers_response


@pytest.fixture
def report_db(empty_db: MonitorDatabase) -> MonitorDatabase:
    """Alice: two incoming, one outgoing transfer. Bob: one incoming."""
    empty_db.store_transfers(ALICE, transfers_response([
        generate_transfer(ALICE, 1, incoming=True, amount="10", block_timestamp=1_000),
        generate_transfer(ALICE, 2, incoming=True, amount="5.5", block_timestamp=2_000),
        generate_transfer(ALICE, 3, incoming=False, amount="3", block_timestamp=3_000),
    ]))
    empty_db.store_transfers(BOB, transfers_response([
        generate_transfer(BOB, 1, incoming=True, amount="7", block_timestamp=2_500),
    ]))
    return empty_db


class TestFetchData:
    """Tests for report windowing."""

    def test_first_report_covers_everything(self, report_db):
        report = TransfersReport(report_db, [ALICE, BOB], report_range=100)

        data = report.fetch_data(now=10_000)

        assert len(data) == 4

    def test_not_due_returns_none(self, report_db):
        report = TransfersReport(report_db, [ALICE], report_range=5_000, last_report=8_000)

        assert report.fetch_data(now=10_000) is None

    def test_window_starts_after_last_report(self, report_db):
        report = TransfersReport(report_db, [ALICE, BOB], report_range=100, last_report=2_000)

        data = report.fetch_data(now=10_000)

        assert sorted(r.data.block_timestamp for r in data) == [2_500, 3_000]


class TestGenerate:
    """Tests for the per-account summary."""

    def test_summary_per_account(self, report_db):
        report = TransfersReport(report_db, [ALICE, BOB], report_range=100)

        df = report.generate(report.fetch_data(now=10_000))

        assert list(df.columns) == REPORT_COLUMNS
        alice = df[df["stash"] == ALICE.stash].iloc[0]
        assert alice["incoming_count"] == 2
        assert alice["incoming_amount"] == pytest.approx(15.5)
        assert alice["outgoing_count"] == 1
        assert alice["outgoing_amount"] == pytest.approx(3.0)
        bob = df[df["stash"] == BOB.stash].iloc[0]
        assert bob["incoming_count"] == 1
        assert bob["outgoing_count"] == 0

    def test_empty_data(self):
        df = TransfersReport.generate([])

        assert df.empty
        assert list(df.columns) == REPORT_COLUMNS


class TestPublish:
    """Tests for CSV output."""

    def test_run_once_writes_csv(self, report_db, temp_dir: Path):
        report = TransfersReport(
            report_db, [ALICE, BOB], report_range=100, output_dir=temp_dir / "reports"
        )

        path = report.run_once(now=10_000)

        assert path is not None and path.exists()
        assert len(pd.read_csv(path)) == 2
        assert report.last_report == 10_000

    def test_second_run_waits_for_range(self, report_db, temp_dir: Path):
        report = TransfersReport(
            report_db, [ALICE], report_range=3_600, output_dir=temp_dir
        )
        report.run_once(now=10_000)

        assert report.run_once(now=10_500) is None
        assert report.run_once(now=14_000) is not None
