from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from spendlens.cli import app
from tests.helpers.db import bootstrap_sqlite_db

runner = CliRunner()

CSV_TEXT = (
    "Date,Description,Amount\n"
    "01/05/2024,STARBUCKS #1234,-4.50\n"
    "01/06/2024,ACME PAYROLL,2000.00\n"
    "01/07/2024,Grocery,abc\n"
    "01/08/2024,SHELL OIL 5744,-30.00\n"
    "01/09/2024,BOOK STORE,-12.00\n"
)


@pytest.fixture()
def csv_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    # Keep the callback's .env lookup inside the temp dir.
    monkeypatch.chdir(tmp_path)
    path = tmp_path / "activity.csv"
    path.write_text(CSV_TEXT, encoding="utf-8")
    return path


def _lines(output: str) -> dict[str, str]:
    out: dict[str, str] = {}
    for line in output.splitlines():
        key, _, rest = line.partition("\t")
        out.setdefault(key, rest)
    return out


def test_detect_format(csv_path: Path):
    result = runner.invoke(app, ["detect-format", str(csv_path)])

    assert result.exit_code == 0, result.output
    assert "profile\tgeneric\tGeneric CSV" in result.output
    assert "column\tamount\tAmount" in result.output


def test_detect_format_unrecognized(tmp_path: Path, csv_path: Path):
    bad = tmp_path / "bad.csv"
    bad.write_text("Foo,Bar\n1,2\n", encoding="utf-8")

    result = runner.invoke(app, ["detect-format", str(bad)])

    assert result.exit_code == 1
    assert "unrecognized CSV header" in result.output


def test_missing_file(tmp_path: Path, csv_path: Path):
    result = runner.invoke(app, ["detect-format", str(tmp_path / "nope.csv")])
    assert result.exit_code == 1
    assert "File not found" in result.output


def test_import_dry_run_needs_no_database(csv_path: Path):
    result = runner.invoke(app, ["import", str(csv_path), "--user", "u1", "--dry-run"])

    assert result.exit_code == 0, result.output
    fields = _lines(result.output)
    assert fields["rows"] == "5"
    assert fields["parsed"] == "4"
    assert fields["errors"] == "1"
    assert fields["imported"] == "4"


def test_database_commands_require_a_url(csv_path: Path):
    result = runner.invoke(app, ["import", str(csv_path), "--user", "u1"])
    assert result.exit_code == 1
    assert "DATABASE_URL is not set" in result.output


def test_end_to_end_with_sqlite(tmp_path: Path, csv_path: Path):
    url = bootstrap_sqlite_db(tmp_path / "cli.db")
    db = ["--database-url", url]

    added = runner.invoke(app, ["add-category", "Dining", "--user", "u1", *db])
    assert added.exit_code == 0, added.output
    dining_id = added.output.split("\t")[0]

    seeded = runner.invoke(app, ["seed-rules", "--user", "u1", *db])
    assert seeded.exit_code == 0, seeded.output
    assert int(_lines(seeded.output)["seeded"]) > 0

    imported = runner.invoke(app, ["import", str(csv_path), "--user", "u1", *db])
    assert imported.exit_code == 0, imported.output
    assert _lines(imported.output)["categorized"] == "1"

    again = runner.invoke(
        app, ["import", str(csv_path), "--user", "u1", "--skip-duplicates", *db]
    )
    assert _lines(again.output)["skipped"] == "4"

    budget = runner.invoke(
        app,
        [
            "set-budget",
            "--user",
            "u1",
            "--category-id",
            dining_id,
            "--amount",
            "100.00",
            "--month",
            "2024-01",
            *db,
        ],
    )
    assert budget.exit_code == 0, budget.output
    assert budget.output.strip().endswith("2024-01-01\t100.00")

    status = runner.invoke(app, ["budget-status", "--user", "u1", "--month", "2024-01", *db])
    assert status.exit_code == 0, status.output
    assert "Dining\t100.00\t4.50\t95.50\t4.5%" in status.output

    summary = runner.invoke(app, ["summary", "--user", "u1", "--month", "2024-01", *db])
    fields = _lines(summary.output)
    assert fields["spending"] == "46.50"
    assert fields["income"] == "2000.00"
    assert fields["net"] == "1953.50"

    stats = runner.invoke(app, ["stats", "--user", "u1", "--start", "2024-01-01", *db])
    fields = _lines(stats.output)
    assert fields["total"] == "4"
    assert fields["categorized"] == "1"


def test_recategorize_requires_a_target(csv_path: Path):
    result = runner.invoke(app, ["recategorize", "tx-1", "--user", "u1"])
    assert result.exit_code == 1
    assert "exactly one of --category-id or --clear" in result.output


def test_set_budget_rejects_bad_month(csv_path: Path):
    result = runner.invoke(
        app,
        ["set-budget", "--user", "u1", "--category-id", "c", "--amount", "1", "--month", "13-2024"],
    )
    assert result.exit_code == 1
    assert "YYYY-MM" in result.output
