from __future__ import annotations

import csv
import io
import logging
from typing import Any

from fastapi import HTTPException, status
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.crm.schemas import IMPORTABLE_CONTACT_FIELDS, ContactCreate, ContactImportResult, ImportRowError
from app.metrics import observe_import_rows
from app.platform.security.context import AuthContext


logger = logging.getLogger("app.crm.import")

REQUIRED_CONTACT_FIELDS = ("nom", "prenom")


def _row_error(row_number: int, code: str, message: str) -> ImportRowError:
    return ImportRowError(row_number=row_number, error_code=code, message=message)


def _validate_mapping(mapping: Any, header: list[str]) -> dict[str, str]:
    if not isinstance(mapping, dict):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="mapping must be an object")

    unknown = sorted(key for key in mapping if key not in IMPORTABLE_CONTACT_FIELDS)
    if unknown:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"mapping has unknown fields: {', '.join(unknown)}",
        )
    missing = [field for field in REQUIRED_CONTACT_FIELDS if not mapping.get(field)]
    if missing:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"mapping {' and '.join(missing)} are required",
        )

    resolved = {field: str(column) for field, column in mapping.items() if column}
    absent_columns = sorted({column for column in resolved.values() if column not in header})
    if absent_columns:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"csv is missing columns: {', '.join(absent_columns)}",
        )
    return resolved


def import_contacts_csv(
    session: Session,
    ctx: AuthContext,
    content: bytes,
    mapping: Any,
    *,
    contact_service: Any,
) -> ContactImportResult:
    """Create one contact per CSV row, owned by the importing user.

    Rows are independent: a rejected row, or one the store fails to save, is reported
    and the others still land.
    """

    try:
        csv_text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="csv must be utf-8 encoded")

    reader = csv.DictReader(io.StringIO(csv_text))
    columns = _validate_mapping(mapping, list(reader.fieldnames or []))
    max_rows = get_settings().import_max_rows

    created_count = 0
    errors: list[ImportRowError] = []

    for index, raw_row in enumerate(reader, start=2):
        if index - 1 > max_rows:
            errors.append(_row_error(index, "ROW_LIMIT", f"import is limited to {max_rows} rows"))
            break

        row = {key: (value.strip() if isinstance(value, str) else value) for key, value in raw_row.items()}
        payload = {field: row.get(column) or None for field, column in columns.items()}
        if payload.get("statut_lead") is None:
            payload.pop("statut_lead", None)
        try:
            for field in REQUIRED_CONTACT_FIELDS:
                if not payload.get(field):
                    raise ValueError(f"{field} is required")
            dto = ContactCreate(**payload)
            contact_service.create_contact(session, ctx, dto)
            created_count += 1
        except ValidationError as exc:
            errors.append(_row_error(index, "VALIDATION", str(exc.errors()[0].get("msg", "invalid row"))))
        except ValueError as exc:
            errors.append(_row_error(index, "VALIDATION", str(exc)))
        except HTTPException as exc:
            errors.append(_row_error(index, "HTTP_ERROR", str(exc.detail)))
        except SQLAlchemyError as exc:
            session.rollback()
            logger.warning("crm.import.row_store_failed", extra={"row_number": index, "error": str(exc)})
            errors.append(_row_error(index, "STORE_ERROR", "row could not be saved"))

    observe_import_rows(created=created_count, failed=len(errors))
    logger.info(
        "crm.import.contacts",
        extra={"user_id": ctx.user_id, "row_count": created_count + len(errors)},
    )
    return ContactImportResult(created_count=created_count, error_count=len(errors), errors=errors)
