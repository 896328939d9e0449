"""
CSV record loader.
Reads files whose columns are already mapped to canonical record fields.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Optional
import logging

import pandas as pd

from ..config import InputConfig
from ..models.record import Record, RecordSource
from ..utils.exceptions import RecordLoadError

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("transaction_id", "reference_number", "amount", "date")


class RecordLoader:
    """
    Loader for canonical record CSV files.

    Columns not named in the column mappings are kept in the record's
    additional data. Rows missing a required value are skipped with a warning.
    """

    def __init__(self, config: InputConfig):
        self.config = config
        self.column_mappings = config.column_mappings

    def load_file(
        self,
        file_path: Path,
        source: RecordSource,
        batch_ref: Optional[str] = None,
    ) -> list[Record]:
        """
        Load records from a CSV file.

        Args:
            file_path: Path to the CSV file
            source: Partition the records belong to
            batch_ref: Batch the records belong to (upload records only)

        Returns:
            List of records

        Raises:
            RecordLoadError: If the file cannot be read or lacks required columns
        """
        logger.info(f"Loading {source.value} records from: {file_path}")

        try:
            df = pd.read_csv(
                file_path,
                encoding=self.config.encoding,
                delimiter=self.config.delimiter,
                dtype=str,
            )
        except Exception as e:
            logger.error(f"Failed to read CSV file: {e}")
            raise RecordLoadError(f"Failed to read CSV file: {e}") from e

        return self.load_dataframe(df, source, batch_ref)

    def load_dataframe(
        self,
        df: pd.DataFrame,
        source: RecordSource,
        batch_ref: Optional[str] = None,
    ) -> list[Record]:
        """
        Convert DataFrame rows to records.

        Args:
            df: DataFrame with one record per row
            source: Partition the records belong to
            batch_ref: Batch the records belong to (upload records only)

        Returns:
            List of records
        """
        missing = [
            self._column(name) for name in REQUIRED_FIELDS if self._column(name) not in df.columns
        ]
        if missing:
            raise RecordLoadError(f"Missing required columns: {', '.join(missing)}")

        records: list[Record] = []
        for idx, row in df.iterrows():
            record = self._row_to_record(row, int(idx), source, batch_ref)
            if record:
                records.append(record)

        logger.info(f"Loaded {len(records)} of {len(df)} rows as {source.value} records")
        return records

    def _column(self, name: str) -> str:
        return self.column_mappings.get(name, name)

    def _row_to_record(
        self,
        row: pd.Series,
        idx: int,
        source: RecordSource,
        batch_ref: Optional[str],
    ) -> Optional[Record]:
        transaction_id = self._parse_text(row.get(self._column("transaction_id")))
        reference_number = self._parse_text(row.get(self._column("reference_number")))
        if not transaction_id or not reference_number:
            logger.warning(f"Row {idx}: Missing identifiers, skipping")
            return None

        amount = self._parse_amount(row.get(self._column("amount")))
        if amount is None or amount < 0:
            logger.warning(f"Row {idx}: Invalid amount, skipping")
            return None

        record_date = self._parse_date(row.get(self._column("date")))
        if record_date is None:
            logger.warning(f"Row {idx}: Invalid date, skipping")
            return None

        # Ids are scoped to their partition so files may reuse row numbers
        prefix = batch_ref if source == RecordSource.UPLOAD else "SYSTEM"
        record_id = self._parse_text(row.get(self._column("id"))) or f"row{idx:05d}"
        record_id = f"{prefix}-{record_id}"

        mapped = {self._column(name) for name in ("id",) + REQUIRED_FIELDS}
        additional: dict[str, Any] = {
            str(col): value
            for col, value in row.items()
            if col not in mapped and pd.notna(value)
        }

        return Record(
            id=record_id,
            source=source,
            transaction_id=transaction_id,
            reference_number=reference_number,
            amount=amount,
            date=record_date,
            batch_ref=batch_ref if source == RecordSource.UPLOAD else None,
            additional_data=additional,
        )

    @staticmethod
    def _parse_text(value) -> Optional[str]:
        if value is None or pd.isna(value):
            return None
        text = str(value).strip()
        return text or None

    def _parse_date(self, date_value) -> Optional[datetime]:
        """Parse a timestamp value from the CSV."""
        if date_value is None or pd.isna(date_value):
            return None

        parsed: Optional[datetime] = None
        if self.config.date_format:
            try:
                parsed = datetime.strptime(str(date_value).strip(), self.config.date_format)
            except ValueError:
                parsed = None

        if parsed is None:
            try:
                timestamp = pd.to_datetime(date_value)
            except (ValueError, TypeError):
                return None
            if pd.isna(timestamp):
                return None
            parsed = timestamp.to_pydatetime()

        return parsed

    @staticmethod
    def _parse_amount(amount_value) -> Optional[Decimal]:
        if amount_value is None or pd.isna(amount_value) or amount_value == "":
            return None

        try:
            if isinstance(amount_value, str):
                amount_value = amount_value.replace("$", "").replace(",", "").strip()
            amount = Decimal(str(amount_value))
        except (InvalidOperation, ValueError):
            return None
        return amount if amount.is_finite() else None
