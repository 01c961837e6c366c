from __future__ import annotations

import logging
from typing import Any

import polars as pl

# ─── Logger ──────────────────────────────────────────────────────────────────
logger = logging.getLogger(__name__)

# ─── Constants ───────────────────────────────────────────────────────────────
REQUIRED_COLUMNS: tuple[str, ...] = ("firstname", "phone", "notes")

# ─── Custom Exceptions ───────────────────────────────────────────────────────
class InvalidCSVHeadersError(Exception):
    pass

class EmptyFileError(Exception):
    pass

class ParseError(Exception):
    pass

# ─── Header Check ────────────────────────────────────────────────────────────
def read_headers(file_path: str) -> list[str]:
    """Read only the header line, lowercased and trimmed."""
    try:
        header_df = pl.read_csv(file_path, n_rows=0, infer_schema_length=0)
    except pl.exceptions.NoDataError as e:
        raise EmptyFileError("File is empty") from e
    except Exception as e:
        logger.error("Header read failed: %s", e)
        raise ParseError(f"Could not parse file: {str(e)}") from e
    return [str(name).strip().lower() for name in header_df.columns]


def validate_headers(headers: list[str]) -> None:
    missing = [col for col in REQUIRED_COLUMNS if col not in headers]
    if missing:
        raise InvalidCSVHeadersError(
            "CSV must contain FirstName, Phone, and Notes columns "
            f"(missing: {', '.join(missing)})"
        )

# ─── Row Loader (Polars) ─────────────────────────────────────────────────────
def load_contact_rows(file_path: str) -> list[dict[str, Any]]:
    """
    Load every row of a contact CSV as lowercase-keyed string dicts.

    Headers are validated before any row is read. Rows are not validated
    individually: short rows come back with empty strings.
    """
    logger.info("═══ load_contact_rows (Polars) started — '%s' ═══", file_path)

    headers = read_headers(file_path)
    validate_headers(headers)

    try:
        df = pl.read_csv(
            file_path,
            infer_schema_length=0,          # every column as Utf8
            truncate_ragged_lines=True,
        )
    except Exception as e:
        logger.error("Parse failed: %s", e)
        raise ParseError(f"Could not parse file: {str(e)}") from e

    # Headers differing only by case keep their first occurrence
    first_by_key: dict[str, str] = {}
    for name in df.columns:
        first_by_key.setdefault(name.strip().lower(), name)
    df = df.select([
        pl.col(original).fill_null("").alias(key)
        for key, original in first_by_key.items()
    ])

    rows = df.to_dicts()
    logger.info("Loaded %d rows × %d columns", df.height, df.width)
    return rows


def row_to_task_fields(row: dict[str, Any]) -> dict[str, str]:
    return {
        "first_name": str(row.get("firstname") or ""),
        "phone": str(row.get("phone") or ""),
        "notes": str(row.get("notes") or ""),
    }
