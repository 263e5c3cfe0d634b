from __future__ import annotations

import csv
import io
from dataclasses import dataclass

from app.spipuniform.modules.schools.models import SCHOOL_LEVELS


@dataclass(frozen=True)
class CsvRowError:
    row_number: int
    message: str


def _get(row: dict[str, str], *names: str) -> str:
    for n in names:
        if n in row and row[n] is not None:
            return str(row[n]).strip()
    return ""


def normalize_level(raw: str) -> str | None:
    v = (raw or "").strip().lower()
    if not v:
        return None
    if v.startswith("prim") or v in ("national", "ns", "national school"):
        return "primary"
    if v.startswith("sec") or v in ("post-primary", "post primary", "community", "comprehensive", "vocational"):
        return "secondary"
    if v in SCHOOL_LEVELS:
        return v
    return None


def parse_schools_csv(file_bytes: bytes, *, default_level: str = "primary") -> tuple[list[dict], list[CsvRowError]]:
    """
    Parse a schools CSV export.

    Required headers (a few common variants are accepted):
    - Name (Official School Name)
    - County

    Optional headers:
    - Roll Number (Roll No, External ID)
    - Address (Address 1..3 are joined)
    - Locality (Town)
    - Level (School Level)
    - Website, Phone, Email

    Returns:
      (rows, errors)
    Where each row is a dict suitable for service.upsert_school_from_row().
    """
    text = file_bytes.decode("utf-8-sig", errors="replace")
    f = io.StringIO(text)
    reader = csv.DictReader(f)
    if not reader.fieldnames:
        raise ValueError("CSV has no header row.")

    rows: list[dict] = []
    errors: list[CsvRowError] = []
    for idx, row in enumerate(reader, start=2):
        name = _get(row, "Name", "Official School Name", "School Name", "name")
        county = _get(row, "County", "county", "County Description")
        if not name:
            errors.append(CsvRowError(idx, "Missing school name."))
            continue
        if not county:
            errors.append(CsvRowError(idx, f"Missing county for {name}."))
            continue

        level_raw = _get(row, "Level", "School Level", "level")
        level = normalize_level(level_raw)
        if level_raw and level is None:
            errors.append(CsvRowError(idx, f"Unknown school level '{level_raw}' for {name}."))
            continue

        address = _get(row, "Address", "address")
        if not address:
            parts = [_get(row, f"Address ({i})", f"Address {i}", f"Address Line {i}") for i in (1, 2, 3)]
            address = ", ".join(p for p in parts if p)

        rows.append(
            {
                "row_number": idx,
                "name": name,
                "county": county,
                "locality": _get(row, "Locality", "Town", "locality", "town") or None,
                "external_id": _get(row, "Roll Number", "Roll No", "External ID", "external_id") or None,
                "address": address or None,
                "level": level or default_level,
                "website": _get(row, "Website", "website") or None,
                "phone": _get(row, "Phone", "Telephone", "phone") or None,
                "email": _get(row, "Email", "email") or None,
                "source_row": {k: v for k, v in row.items() if k},
            }
        )
    return rows, errors
