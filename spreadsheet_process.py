import datetime
import io
import logging
import time
import uuid
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pandas as pd
from pydantic import BaseModel

from config import SHEET_SELECTOR, TransformSchema
from utils.result import Result

logger = logging.getLogger(__name__)

Row = Dict[str, Any]

ENGAGEMENT_PREFIX = "Ext. at "
COMPOSITE_DELIMITER = " - "
NAME_DELIMITER = ", "
VALUE_SEPARATOR = ","


class LogContext:
    """Context manager for tracking and logging operation metrics"""
    def __init__(self, operation_name: str, **kwargs):
        self.operation_name = operation_name
        self.start_time = None
        self.request_id = kwargs.pop('request_id', str(uuid.uuid4())[:8])
        self.extra = kwargs

    def __enter__(self):
        self.start_time = time.time()
        logger.info(f"Starting {self.operation_name}", extra={"request_id": self.request_id, **self.extra})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.time() - self.start_time
        if exc_type:
            logger.error(
                f"Failed {self.operation_name} in {duration:.2f}s: {str(exc_val)}",
                extra={"request_id": self.request_id, "duration": duration, **self.extra},
                exc_info=(exc_type, exc_val, exc_tb)
            )
        else:
            logger.info(
                f"Completed {self.operation_name} in {duration:.2f}s",
                extra={"request_id": self.request_id, "duration": duration, **self.extra}
            )


class CompositeField(BaseModel):
    """
    A column holding "[Ext. at ]<Client> - <Project>" and the keys it derives.

    Attributes:
        source: Column read from the sheet
        client_key: Output key for the client segment
        project_key: Output key for the project segment
        combined_key: Optional output key for the value with the prefix stripped
    """
    source: str
    client_key: str
    project_key: str
    combined_key: Optional[str] = None


class TransformLayout(BaseModel):
    """Composite columns and "Last, First" name columns handled by one schema."""
    composites: List[CompositeField]
    name_fields: List[str]


LAYOUTS: Dict[TransformSchema, TransformLayout] = {
    TransformSchema.SINGLE: TransformLayout(
        composites=[
            CompositeField(source="Primary Opp", client_key="Client", project_key="Project"),
        ],
        name_fields=["Name", "Primary Owner"],
    ),
    TransformSchema.DUAL: TransformLayout(
        composites=[
            CompositeField(
                source="Current Eng.",
                combined_key="ClientProject",
                client_key="Client",
                project_key="Project",
            ),
            CompositeField(
                source="Primary Opp",
                combined_key="NextClientOpp",
                client_key="NextClient",
                project_key="NextProject",
            ),
        ],
        name_fields=["Name", "Primary Owner", "Current Owner", "Manager"],
    ),
}


def split_composite(value: Any) -> Dict[str, str]:
    """
    Split a composite engagement value into its parts.

    Args:
        value: Raw cell value, e.g. "Ext. at Acme - Widget"

    Returns:
        dict with "combined", "client" and "project"; all empty strings
        when the value is missing, empty or not text, and client/project
        empty when the delimiter is absent
    """
    parts = {"combined": "", "client": "", "project": ""}
    if not value or not isinstance(value, str):
        return parts

    combined = value[len(ENGAGEMENT_PREFIX):] if value.startswith(ENGAGEMENT_PREFIX) else value
    parts["combined"] = combined

    segments = combined.split(COMPOSITE_DELIMITER)
    if len(segments) >= 2:
        parts["client"] = segments[0]
        parts["project"] = segments[1]
    return parts


def reformat_name(value: Any) -> str:
    """Turn "Last, First" into "First Last"; anything else becomes ""."""
    if not isinstance(value, str):
        return ""
    segments = value.split(NAME_DELIMITER)
    if len(segments) >= 2 and segments[1]:
        return f"{segments[1]} {segments[0]}"
    return ""


def transform_row(row: Mapping[str, Any], layout: TransformLayout) -> Row:
    """
    Build the output row for a single sheet row.

    The input mapping is left untouched: name fields are rewritten on a
    copy and the derived composite keys are appended after the original
    columns.
    """
    new_row = dict(row)

    derived: Row = {}
    for composite in layout.composites:
        parts = split_composite(row.get(composite.source))
        if composite.combined_key:
            derived[composite.combined_key] = parts["combined"]
        derived[composite.client_key] = parts["client"]
        derived[composite.project_key] = parts["project"]

    for field in layout.name_fields:
        # Empty or missing name cells are left as they are
        if row.get(field):
            new_row[field] = reformat_name(row[field])

    new_row.update(derived)
    return new_row


def transform_rows(rows: Sequence[Mapping[str, Any]], schema: TransformSchema = TransformSchema.DUAL) -> List[Row]:
    """
    Apply the schema's derivations to every row.

    Args:
        rows: Rows as parsed from the sheet
        schema: Which derived-field layout to produce

    Returns:
        List[Row]: One transformed row per input row, in the same order
    """
    layout = LAYOUTS[TransformSchema(schema)]
    return [transform_row(row, layout) for row in rows]


def filter_rows(rows: Sequence[Mapping[str, Any]], constraints: Mapping[str, str]) -> List[Row]:
    """
    Keep rows matching every constraint.

    Each constraint value is a comma separated list of accepted values; a
    row passes a constraint when its value for that column equals one of
    them exactly. The sheet selector key never excludes a row.

    Args:
        rows: Transformed rows
        constraints: Column name to accepted-values string

    Returns:
        List[Row]: Matching rows in their original order
    """
    accepted = {
        field: value.split(VALUE_SEPARATOR)
        for field, value in constraints.items()
        if field != SHEET_SELECTOR
    }

    return [
        dict(row) for row in rows
        if all(field in row and row[field] in values for field, values in accepted.items())
    ]


def _is_blank(value: Any) -> bool:
    """True for cells the workbook leaves empty."""
    if isinstance(value, str):
        return value == ""
    return pd.isna(value)


def _to_cell_value(value: Any) -> Any:
    """Convert a pandas cell into a JSON friendly Python value."""
    if isinstance(value, (datetime.date, datetime.time, pd.Timedelta)):
        return value.isoformat()
    if hasattr(value, "item"):
        # numpy scalar
        return value.item()
    return value


class SpreadsheetProcessor:
    """
    Reads worksheets out of a workbook and turns them into filtered rows.

    This class contains methods to:
    - Parse a named sheet of an .xlsx workbook into rows
    - Run the transform and filter steps over those rows
    """

    @staticmethod
    def process_sheet(
        content: bytes,
        sheet_name: str,
        constraints: Optional[Mapping[str, str]] = None,
        schema: TransformSchema = TransformSchema.DUAL,
    ) -> Result[List[Row]]:
        """
        Load a sheet, transform its rows and apply the query constraints.

        Args:
            content: Raw workbook bytes
            sheet_name: Name of the worksheet (tab) to read
            constraints: Column name to comma separated accepted values
            schema: Derived-field layout for the transformer

        Returns:
            Result[List[Row]]: The filtered rows, or the loader's failure
        """
        request_id = str(uuid.uuid4())[:8]
        log_context = {
            "request_id": request_id,
            "sheet_name": sheet_name,
            "constraints": dict(constraints or {}),
            "schema": TransformSchema(schema).value,
        }
        logger.info("Processing spreadsheet tab", extra=log_context)

        try:
            with LogContext("sheet parsing", **log_context):
                load_result = SpreadsheetProcessor.load_sheet(content, sheet_name)

            if not load_result.is_success():
                logger.warning(f"Sheet loading failed: {load_result.error}", extra=log_context)
                return load_result

            rows = load_result.data
            log_context["row_count"] = len(rows)

            with LogContext("row transformation", **log_context):
                transformed = transform_rows(rows, schema)

            with LogContext("row filtering", **log_context):
                filtered = filter_rows(transformed, constraints or {})

            logger.info(f"Returning {len(filtered)} of {len(rows)} rows", extra=log_context)
            return Result.ok(filtered)

        except Exception as e:
            logger.exception("Unexpected error during sheet processing", extra={**log_context, "error": str(e)})
            return Result.server_error(f"Processing error: {str(e)}")

    @staticmethod
    def load_sheet(content: bytes, sheet_name: str) -> Result[List[Row]]:
        """
        Parse one worksheet into rows keyed by the header row.

        Empty cells are left out of the row they belong to and rows with no
        values at all are skipped.

        Args:
            content: Raw workbook bytes
            sheet_name: Name of the worksheet to read

        Returns:
            Result containing the rows, a 404 failure when the tab does not
            exist, or a 400 failure when the workbook cannot be read
        """
        try:
            start_time = time.time()
            with pd.ExcelFile(io.BytesIO(content), engine="openpyxl") as workbook:
                if sheet_name not in workbook.sheet_names:
                    logger.error(
                        "Sheet not found",
                        extra={"sheet_name": sheet_name, "available_sheets": workbook.sheet_names}
                    )
                    return Result.not_found(f'Tab "{sheet_name}" not found in the spreadsheet.')
                # Cell text such as "NA" or "null" is data, not a missing value
                df = workbook.parse(sheet_name, dtype=object, keep_default_na=False, na_values=[])
        except Exception as e:
            logger.error(
                "Failed to read workbook",
                extra={"sheet_name": sheet_name, "error": str(e), "error_type": type(e).__name__}
            )
            return Result.fail(f"Failed to read spreadsheet: {str(e)}")

        rows = []
        for record in df.to_dict(orient="records"):
            row = {str(column): _to_cell_value(value) for column, value in record.items() if not _is_blank(value)}
            # Blank lines inside the sheet produce no row
            if row:
                rows.append(row)
        logger.info(
            "Successfully read sheet",
            extra={
                "sheet_name": sheet_name,
                "row_count": len(rows),
                "column_count": len(df.columns),
                "read_time_seconds": f"{time.time() - start_time:.2f}"
            }
        )
        return Result.ok(rows)
