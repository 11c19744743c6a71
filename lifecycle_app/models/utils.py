import re
from datetime import date, datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def mask_phone(phone: str | None) -> str | None:
    if not phone:
        return None
    digits = re.sub(r"\D", "", phone)
    if len(digits) <= 4:
        return "*" * len(digits)
    return f"{'*' * (len(digits) - 4)}{digits[-4:]}"


def mask_account_number(account_number: str | None) -> str | None:
    if not account_number:
        return None
    clean = re.sub(r"\s", "", account_number)
    return f"****{clean[-4:]}"


def normalize_phone(phone: str) -> str:
    clean = re.sub(r"[^\d+]", "", phone)

    if clean.startswith("0") and len(clean) == 10:
        return "+256" + clean[1:]

    if clean.startswith("256") and len(clean) == 12:
        return "+" + clean

    if len(clean) == 9 and clean[0] in "37":
        return "+256" + clean

    return clean


def nights_between(check_in: date, check_out: date) -> int:
    return (check_out - check_in).days
