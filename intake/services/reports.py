from __future__ import annotations

import asyncio
import csv
import logging
from datetime import datetime
from io import StringIO
from pathlib import Path
from typing import Any, Iterable

from intake.schemas.submission import StoredSubmission, SubmissionStatus
from intake.services.atomic_files import atomic_write_text

logger = logging.getLogger(__name__)

_FRENCH_DAYS = ["Lundi", "Mardi", "Mercredi", "Jeudi", "Vendredi", "Samedi", "Dimanche"]
_FRENCH_MONTHS = [
    "Janvier", "Février", "Mars", "Avril", "Mai", "Juin",
    "Juillet", "Août", "Septembre", "Octobre", "Novembre", "Décembre",
]
_DIVIDER = "═" * 70
_THIN_DIVIDER = "─" * 70

_STATUS_LABELS = {
    SubmissionStatus.SYNCED: "Synchronisé / متزامن",
    SubmissionStatus.PENDING: "En attente / قيد الانتظار",
    SubmissionStatus.FAILED: "Échec / فشل",
}

CSV_HEADERS = [
    "id",
    "timestamp",
    "status",
    "synced_to_remote",
    "full_name",
    "phone",
    "email",
    "wilaya",
    "profession",
    "monthly_income_range",
    "salary_receive_method",
    "financing_type",
    "requested_amount",
    "is_existing_customer",
    "preferred_contact_time",
    "notes",
]


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def format_amount(amount: Any) -> str:
    try:
        return f"{int(amount):,}".replace(",", " ") + " DA"
    except (TypeError, ValueError):
        return _stringify(amount)


def format_bilingual_date(moment: datetime) -> str:
    day = _FRENCH_DAYS[moment.weekday()]
    month = _FRENCH_MONTHS[moment.month - 1]
    return f"{day} {moment.day} {month} {moment.year} ({moment:%H:%M})"


def _profession(data: dict[str, Any]) -> str:
    custom = data.get("customProfession")
    return custom or data.get("profession") or "Non spécifié / غير محدد"


def format_text_report(submission: StoredSubmission) -> str:
    data = submission.data
    existing = data.get("isExistingCustomer") == "نعم"
    lines = [
        _DIVIDER,
        "RAPPORT DE DEMANDE DE FINANCEMENT / تقرير طلب التمويل".center(70),
        _DIVIDER,
        "",
        f"Date / التاريخ                 : {format_bilingual_date(submission.timestamp)}",
        f"ID Référence                   : {submission.id}",
        "",
        _THIN_DIVIDER,
        "INFORMATIONS CLIENT / معلومات العميل".center(70),
        _THIN_DIVIDER,
        f"Nom Complet / الاسم الكامل      : {_stringify(data.get('fullName'))}",
        f"Téléphone / الهاتف              : {_stringify(data.get('phone'))}",
        f"Email / البريد الإلكتروني       : {data.get('email') or 'Non fourni / غير متوفر'}",
        f"Wilaya / الولاية                : {_stringify(data.get('wilaya'))}",
        f"Client Existant / عميل حالي     : {'Oui / نعم' if existing else 'Non / لا'}",
        "",
        _THIN_DIVIDER,
        "INFORMATIONS PROFESSIONNELLES / المعلومات المهنية".center(70),
        _THIN_DIVIDER,
        f"Profession / المهنة             : {_profession(data)}",
        f"Réception Salaire / استلام الراتب : {_stringify(data.get('salaryReceiveMethod'))}",
        f"Tranche de Revenu / نطاق الدخل  : {data.get('monthlyIncomeRange') or 'Non spécifié / غير محدد'}",
        "",
        _THIN_DIVIDER,
        "DÉTAILS DU FINANCEMENT / تفاصيل التمويل".center(70),
        _THIN_DIVIDER,
        f"Type de Financement / نوع التمويل : {_stringify(data.get('financingType'))}",
        f"Montant Demandé / المبلغ المطلوب  : {format_amount(data.get('requestedAmount'))}",
        f"Contact Préféré / وقت التواصل    : {data.get('preferredContactTime') or 'Non spécifié / غير محدد'}",
        "",
        _THIN_DIVIDER,
        "NOTES ADDITIONNELLES / ملاحظات إضافية".center(70),
        _THIN_DIVIDER,
        data.get("notes") or "Aucune note / لا توجد ملاحظات",
        "",
        _DIVIDER,
        f"Synchronisation / المزامنة      : {_STATUS_LABELS[submission.status]}",
        f"IP Client                      : {submission.ip or 'Non disponible'}",
        _DIVIDER,
    ]
    return "\n".join(lines) + "\n"


class SubmissionReportWriter:
    """Keeps one printable report per submission next to the local store."""

    def __init__(self, reports_dir: Path) -> None:
        self.reports_dir = Path(reports_dir)

    def path_for(self, submission_id: str) -> Path:
        return self.reports_dir / f"{submission_id}.txt"

    async def write(self, submission: StoredSubmission) -> Path | None:
        target = self.path_for(submission.id)
        try:
            await asyncio.to_thread(atomic_write_text, target, format_text_report(submission))
        except OSError as exc:
            logger.warning(
                "Could not write submission report",
                extra={"submission_id": submission.id, "error": str(exc)},
            )
            return None
        return target

    async def remove(self, submission_id: str) -> None:
        try:
            await asyncio.to_thread(self.path_for(submission_id).unlink, missing_ok=True)
        except OSError as exc:
            logger.warning(
                "Could not remove submission report",
                extra={"submission_id": submission_id, "error": str(exc)},
            )


def submissions_to_csv(submissions: Iterable[StoredSubmission]) -> str:
    buffer = StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_HEADERS)
    for submission in submissions:
        data = submission.data
        writer.writerow(
            [
                submission.id,
                submission.timestamp.isoformat(),
                submission.status.value,
                "yes" if submission.synced_to_remote else "no",
                _stringify(data.get("fullName")),
                _stringify(data.get("phone")),
                _stringify(data.get("email")),
                _stringify(data.get("wilaya")),
                _profession(data) if data.get("profession") or data.get("customProfession") else "",
                _stringify(data.get("monthlyIncomeRange")),
                _stringify(data.get("salaryReceiveMethod")),
                _stringify(data.get("financingType")),
                _stringify(data.get("requestedAmount")),
                _stringify(data.get("isExistingCustomer")),
                _stringify(data.get("preferredContactTime")),
                _stringify(data.get("notes")),
            ]
        )
    return buffer.getvalue()


def submissions_to_text(submissions: Iterable[StoredSubmission]) -> str:
    return "\n".join(format_text_report(submission) for submission in submissions)
