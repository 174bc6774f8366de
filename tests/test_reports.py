import csv
from datetime import datetime, timezone
from io import StringIO

import pytest

from intake.schemas.submission import SubmissionStatus
from intake.services.reports import (
    CSV_HEADERS,
    SubmissionReportWriter,
    format_amount,
    format_bilingual_date,
    format_text_report,
    submissions_to_csv,
    submissions_to_text,
)

from conftest import make_payload, make_submission


def test_format_amount_groups_thousands() -> None:
    assert format_amount(10_000_000) == "10 000 000 DA"
    assert format_amount("7500000") == "7 500 000 DA"
    assert format_amount(None) == ""


def test_bilingual_date_uses_french_names() -> None:
    moment = datetime(2026, 1, 15, 9, 30, tzinfo=timezone.utc)
    assert format_bilingual_date(moment) == "Jeudi 15 Janvier 2026 (09:30)"


def test_text_report_contains_applicant_and_status() -> None:
    submission = make_submission(status=SubmissionStatus.SYNCED, ip="41.200.1.2")

    report = format_text_report(submission)

    assert "Amina Benali" in report
    assert "10 000 000 DA" in report
    assert "Oui / نعم" in report
    assert "Synchronisé / متزامن" in report
    assert "41.200.1.2" in report
    assert submission.id in report


def test_text_report_prefers_custom_profession() -> None:
    submission = make_submission(data=make_payload(profession="Autre", customProfession="Pharmacienne", notes=None))

    report = format_text_report(submission)

    assert "Pharmacienne" in report
    assert "Aucune note / لا توجد ملاحظات" in report


def test_csv_export_has_header_and_one_row_per_submission() -> None:
    first = make_submission()
    second = make_submission(status=SubmissionStatus.SYNCED, synced_to_remote=True)

    rows = list(csv.reader(StringIO(submissions_to_csv([first, second]))))

    assert rows[0] == CSV_HEADERS
    assert len(rows) == 3
    assert rows[1][0] == first.id
    assert rows[1][2] == "pending"
    assert rows[2][3] == "yes"
    assert rows[2][CSV_HEADERS.index("full_name")] == "Amina Benali"


def test_text_export_concatenates_reports() -> None:
    submissions = [make_submission(), make_submission()]
    text = submissions_to_text(submissions)
    assert text.count("RAPPORT DE DEMANDE DE FINANCEMENT") == 2


@pytest.mark.asyncio
async def test_report_writer_writes_and_removes(tmp_path) -> None:
    reports = SubmissionReportWriter(tmp_path / "reports")
    submission = make_submission()

    path = await reports.write(submission)

    assert path == reports.path_for(submission.id)
    assert path.read_text(encoding="utf-8").startswith("═")

    await reports.remove(submission.id)
    assert not path.exists()
    await reports.remove(submission.id)
