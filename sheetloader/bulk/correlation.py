"""
Match bulk job result rows back to the dataset rows that produced them

Result CSVs start with two reserved columns (``sf__Id`` and
``sf__Created``/``sf__Error``) followed by an echo of every submitted
column, in submission order.
"""
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Sequence, Tuple

from sheetloader.common.exceptions import CorrelationMissError
from sheetloader.common.logging import get_logger

# Reserved leading columns in successfulResults/failedResults (API v41.0+)
RESULT_COLUMN_OFFSET = 2

logger = get_logger("correlation")


@dataclass
class IngestOutcome:
    """Result rows of one ingest job, already split by endpoint"""
    submitted_columns: List[str]
    successful: List[List[str]] = field(default_factory=list)
    failed: List[List[str]] = field(default_factory=list)

    @property
    def failure_count(self) -> int:
        return len(self.failed)


@dataclass
class CorrelatedResult:
    row_index: int
    success: bool
    record_id: str = ""
    error: str = ""


class RowCorrelator:
    """
    Resolve result rows to dataset row indices

    ``key_column`` names a submitted column whose value identifies a row
    (record Id or unique field). Without it, rows are matched on the whole
    echoed payload, consuming duplicates in submission order.
    """

    def __init__(
        self,
        submitted_columns: Sequence[str],
        submitted_rows: Sequence[Sequence[str]],
        row_indices: Sequence[int],
        key_column: Optional[str] = None
    ):
        """
        Args:
            submitted_columns: CSV header that was uploaded
            submitted_rows: Uploaded rows, in upload order
            row_indices: Dataset row index of each uploaded row
            key_column: Submitted column used as correlation key
        """
        self.submitted_columns = list(submitted_columns)
        self.key_position: Optional[int] = None
        if key_column is not None and key_column in self.submitted_columns:
            self.key_position = self.submitted_columns.index(key_column)

        self._pending: Dict[Tuple[str, ...], Deque[int]] = defaultdict(deque)
        for values, row_index in zip(submitted_rows, row_indices):
            self._pending[self._submitted_key(values)].append(row_index)

        if self.key_position is None:
            logger.warning(
                "No identifier or unique field available for correlation; "
                "matching result rows by submitted values and order"
            )

    @property
    def mode(self) -> str:
        return "key" if self.key_position is not None else "positional"

    def _submitted_key(self, values: Sequence[str]) -> Tuple[str, ...]:
        if self.key_position is not None:
            return (values[self.key_position],)
        return tuple(values)

    def _result_key(self, result_row: Sequence[str]) -> Tuple[str, ...]:
        echo = list(result_row[RESULT_COLUMN_OFFSET:])
        if len(echo) < len(self.submitted_columns):
            echo += [""] * (len(self.submitted_columns) - len(echo))
        return self._submitted_key(echo[:len(self.submitted_columns)])

    def match(self, result_row: Sequence[str]) -> int:
        """
        Dataset row index for one result row

        Raises:
            CorrelationMissError: If no pending submitted row matches
        """
        key = self._result_key(result_row)
        pending = self._pending.get(key)
        if not pending:
            raise CorrelationMissError(f"No submitted row matches result {list(result_row)}")
        return pending.popleft()

    def correlate(self, outcome: IngestOutcome) -> List[CorrelatedResult]:
        """
        Correlate every successful and failed result row

        Rows that cannot be matched are logged and dropped.
        """
        results = []
        for row in outcome.successful:
            try:
                results.append(CorrelatedResult(
                    row_index=self.match(row),
                    success=True,
                    record_id=row[0] if row else ""
                ))
            except CorrelationMissError as e:
                logger.warning(f"Successful result not correlated: {e}")

        for row in outcome.failed:
            try:
                results.append(CorrelatedResult(
                    row_index=self.match(row),
                    success=False,
                    record_id=row[0] if row else "",
                    error=row[1] if len(row) > 1 else ""
                ))
            except CorrelationMissError as e:
                logger.warning(f"Failed result not correlated: {e}")

        return results
