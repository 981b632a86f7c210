"""
Dataset-level import/export on top of BulkJobClient

Selects the columns and rows that an operation may submit, runs the ingest
job, and writes the remote outcome back into the dataset as result columns.
"""
from dataclasses import dataclass, field
from typing import List, Optional

from sheetloader.bulk.client import BulkJobClient
from sheetloader.bulk.correlation import IngestOutcome, RowCorrelator
from sheetloader.common.exceptions import DatasetError
from sheetloader.common.logging import get_logger
from sheetloader.common.models import Dataset, ImportOperation, ImportStage

ID_FIELD = "Id"
IMPORT_ID_COLUMN = "_ImportId"
IMPORT_ERROR_COLUMN = "_ErrorInsertMessage"
DELETE_ERROR_COLUMN = "_ErrorDeleteMessage"

RESULT_COLUMNS = (IMPORT_ID_COLUMN, IMPORT_ERROR_COLUMN, DELETE_ERROR_COLUMN)

logger = get_logger("ingest")


@dataclass
class IngestPayload:
    """What will be uploaded, and which dataset rows it came from"""
    columns: List[str]
    rows: List[List[str]] = field(default_factory=list)
    row_indices: List[int] = field(default_factory=list)
    key_column: Optional[str] = None

    def __len__(self) -> int:
        return len(self.rows)


@dataclass
class ImportSummary:
    submitted: int = 0
    succeeded: int = 0
    failed: int = 0
    uncorrelated: int = 0
    record_ids: List[str] = field(default_factory=list)  # Ids written to _ImportId


def _record_id(dataset: Dataset, row: List[str], id_column: Optional[str] = None) -> str:
    """Existing record Id of a row: the Id column, else a previous import's result"""
    if id_column:
        return row[dataset.column_index(id_column)]
    for key in (ID_FIELD, IMPORT_ID_COLUMN):
        index = dataset.find_column(key)
        if index is not None and row[index]:
            return row[index]
    return ""


def build_payload(dataset: Dataset, stage: ImportStage) -> IngestPayload:
    """
    Select submitted columns and eligible rows for an import stage

    * insert: every non-result column except Id; rows without a record Id
    * update: Id first, then the other columns; rows with a record Id
    * upsert: every non-result column except Id (unless Id is the unique
      field); rows with a value in the unique field
    * delete: only Id; rows with a record Id

    ``stage.id_column`` pins where record Ids are read from; otherwise the
    Id column is used, falling back to ``_ImportId``. A delete whose pinned
    column does not exist has nothing to submit. ``stage.record_ids`` limits
    a delete to those Ids, each submitted once.

    Raises:
        DatasetError: If a configured column is missing from the dataset
    """
    operation = stage.operation

    if operation == ImportOperation.DELETE:
        payload = IngestPayload(columns=[ID_FIELD], key_column=ID_FIELD)
        if stage.id_column and not dataset.has_column(stage.id_column):
            logger.info(f"'{dataset.name}' has no '{stage.id_column}' column, nothing to delete")
            return payload
        wanted = set(stage.record_ids) if stage.record_ids is not None else None
        for i, row in enumerate(dataset.rows):
            record_id = _record_id(dataset, row, stage.id_column)
            if not record_id:
                continue
            if wanted is not None:
                if record_id not in wanted:
                    continue
                wanted.discard(record_id)
            payload.rows.append([record_id])
            payload.row_indices.append(i)
        if wanted:
            logger.warning(
                f"{len(wanted)} record Id(s) to delete are no longer in '{dataset.name}'; "
                f"they are not submitted"
            )
        return payload

    if stage.columns is not None:
        for column in stage.columns:
            dataset.column_index(column)
        data_columns = [c for c in stage.columns if c != ID_FIELD]
    else:
        data_columns = [
            key for key in dataset.column_keys
            if key not in RESULT_COLUMNS and key != ID_FIELD
        ]

    if operation == ImportOperation.UPSERT:
        if not stage.unique_field:
            raise DatasetError(f"Upsert into {stage.object_name} needs a unique field")
        dataset.column_index(stage.unique_field)
        if stage.unique_field not in data_columns:
            data_columns.append(stage.unique_field)

    indices = [dataset.column_index(c) for c in data_columns]
    unique_index = dataset.find_column(stage.unique_field) if stage.unique_field else None

    if operation == ImportOperation.UPDATE:
        payload = IngestPayload(columns=[ID_FIELD] + data_columns, key_column=ID_FIELD)
    elif operation == ImportOperation.UPSERT:
        payload = IngestPayload(columns=data_columns, key_column=stage.unique_field)
    else:
        key_column = stage.unique_field if stage.unique_field in data_columns else None
        payload = IngestPayload(columns=data_columns, key_column=key_column)

    for i, row in enumerate(dataset.rows):
        values = [row[index] for index in indices]
        record_id = _record_id(dataset, row, stage.id_column)

        if operation == ImportOperation.INSERT:
            if record_id:
                continue
        elif operation == ImportOperation.UPDATE:
            if not record_id:
                continue
            values = [record_id] + values
        elif not row[unique_index]:
            continue

        payload.rows.append(values)
        payload.row_indices.append(i)

    return payload


def apply_results(
    dataset: Dataset,
    payload: IngestPayload,
    outcome: IngestOutcome,
    operation: ImportOperation
) -> ImportSummary:
    """
    Write correlated results into the dataset

    Submitted rows get their error cell cleared, then successes set
    ``_ImportId`` and failures set the error column. Rows that were not
    submitted, or whose result could not be correlated, keep their values.
    """
    if operation == ImportOperation.DELETE:
        id_index = None
        error_index = dataset.ensure_column(DELETE_ERROR_COLUMN)
    else:
        id_index = dataset.ensure_column(IMPORT_ID_COLUMN)
        error_index = dataset.ensure_column(IMPORT_ERROR_COLUMN)

    for row_index in payload.row_indices:
        dataset.rows[row_index][error_index] = ""

    correlator = RowCorrelator(payload.columns, payload.rows, payload.row_indices, payload.key_column)
    summary = ImportSummary(submitted=len(payload))

    results = correlator.correlate(outcome)
    for result in results:
        row = dataset.rows[result.row_index]
        if result.success:
            summary.succeeded += 1
            if id_index is not None:
                row[id_index] = result.record_id
                if result.record_id:
                    summary.record_ids.append(result.record_id)
        else:
            summary.failed += 1
            row[error_index] = result.error

    summary.uncorrelated = len(outcome.successful) + len(outcome.failed) - len(results)
    return summary


def import_dataset(client: BulkJobClient, dataset: Dataset, stage: ImportStage) -> ImportSummary:
    """
    Import a dataset through one ingest job and record the outcome in it

    Returns:
        ImportSummary (submitted == 0 means nothing was eligible and no
        job was created)
    """
    payload = build_payload(dataset, stage)
    if not payload.rows:
        logger.info(
            f"No eligible rows in '{dataset.name}' for {stage.operation.value} "
            f"into {stage.object_name}; skipping job"
        )
        return ImportSummary()

    logger.info(
        f"Submitting {len(payload)} row(s) of '{dataset.name}' for "
        f"{stage.operation.value} into {stage.object_name}"
    )
    outcome = client.run_ingest(
        stage.object_name,
        stage.operation,
        payload.columns,
        payload.rows,
        external_id_field=stage.unique_field
    )
    summary = apply_results(dataset, payload, outcome, stage.operation)

    if summary.uncorrelated:
        logger.warning(f"{summary.uncorrelated} result row(s) could not be matched to '{dataset.name}'")
    return summary
