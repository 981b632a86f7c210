"""
Stage functions used by ActionPipeline

Each function performs one stage of one action against the working set and
either returns the number of rows it handled or raises. The pipeline turns
those outcomes into StageResults.
"""
from dataclasses import dataclass, field
from typing import List, Optional

from sheetloader.bulk.client import BulkJobClient
from sheetloader.bulk.ingest import IMPORT_ID_COLUMN, import_dataset
from sheetloader.common.exceptions import MissingInputError, PartialImportError, PipelineError
from sheetloader.common.logging import get_logger
from sheetloader.common.models import (
    Action,
    ImportOperation,
    ImportStage,
    PlaceholderMissPolicy,
    WorkingSet,
)
from sheetloader.transformers.column_copier import copy_columns
from sheetloader.transformers.field_transformer import FieldTransformer
from sheetloader.transformers.merger import merge_datasets

logger = get_logger("PipelineCore")


@dataclass
class ImportRecord:
    """Record Ids one import stage wrote, kept so the run can be rolled back"""
    action: Action
    record_ids: List[str] = field(default_factory=list)


def working_sheet(action: Action) -> str:
    """
    Sheet that the transform and import stages act on

    Copy and export stages produce ``output_sheet``, so once either is
    configured the later stages continue from it; otherwise they start
    from ``input_sheet``.
    """
    if action.copy is not None or action.export is not None:
        return action.output_sheet
    return action.input_sheet


def _require(working_set: WorkingSet, name: str, action: Action):
    dataset = working_set.get(name)
    if dataset is None:
        raise MissingInputError(f"Action '{action.name}': sheet '{name}' not found")
    return dataset


def _require_client(client: Optional[BulkJobClient], action: Action) -> BulkJobClient:
    if client is None:
        raise PipelineError(f"Action '{action.name}' needs a bulk API client but none is configured")
    return client


def run_copy_stage(action: Action, working_set: WorkingSet) -> int:
    """
    Copy the configured columns of input_sheet into a new output_sheet

    Raises:
        MissingInputError: If input_sheet is absent
        DatasetError: If a source column is absent
    """
    source = _require(working_set, action.input_sheet, action)
    copied = copy_columns(source, action.copy.columns, action.output_sheet)
    working_set[action.output_sheet] = copied
    logger.info(
        f"Copied {len(copied.column_keys)} column(s) of '{source.name}' "
        f"into '{copied.name}' ({len(copied)} rows)"
    )
    return len(copied)


def run_export_stage(action: Action, working_set: WorkingSet, client: Optional[BulkJobClient]) -> int:
    """
    Query the remote system into output_sheet

    An existing output_sheet is merged with the query result when a match
    column is configured, and replaced otherwise.
    """
    exported = _require_client(client, action).run_query(action.export.query, action.output_sheet)

    existing = working_set.get(action.output_sheet)
    if existing is not None and action.export.match_column:
        working_set[action.output_sheet] = merge_datasets(existing, exported, action.export.match_column)
    else:
        if existing is not None:
            logger.info(f"Replacing '{action.output_sheet}' with exported data")
        working_set[action.output_sheet] = exported

    return len(working_set[action.output_sheet])


def run_transform_stage(
    action: Action,
    working_set: WorkingSet,
    miss_policy: PlaceholderMissPolicy = PlaceholderMissPolicy.KEEP
) -> int:
    """
    Apply the field expressions in place

    Raises:
        MissingInputError: If the sheet is absent (reported as skipped)
        InvalidExpressionError: On a bad expression or placeholder
    """
    dataset = _require(working_set, working_sheet(action), action)
    transformer = FieldTransformer(action.transform.fields, miss_policy)
    transformer.transform(dataset, working_set)
    return len(dataset)


def run_import_stage(
    action: Action,
    working_set: WorkingSet,
    client: Optional[BulkJobClient],
    journal: Optional[List[ImportRecord]] = None
) -> int:
    """
    Ingest the sheet and record ids/errors in it

    When output_sheet differs from the sheet being imported, the import
    runs on a deep copy stored under output_sheet so the source dataset is
    never modified by a failed import. The Ids the job wrote are appended
    to ``journal``, including those of a partially rejected import.

    Returns:
        Number of rows submitted (0 when no row was eligible)

    Raises:
        MissingInputError: If the sheet is absent (reported as skipped)
        RemoteJobError: On job failure/timeout
        PartialImportError: If the job completed with rejected rows
    """
    source_name = working_sheet(action)
    dataset = _require(working_set, source_name, action)
    bulk_client = _require_client(client, action)

    if source_name != action.output_sheet:
        dataset = dataset.clone(action.output_sheet)
        working_set[action.output_sheet] = dataset

    summary = import_dataset(bulk_client, dataset, action.import_)
    if journal is not None and summary.record_ids:
        journal.append(ImportRecord(action, summary.record_ids))
    if summary.failed:
        raise PartialImportError(
            f"{summary.failed} of {summary.submitted} row(s) rejected by "
            f"{action.import_.object_name} {action.import_.operation.value}"
        )
    return summary.submitted


def build_rollback_actions(journal: List[ImportRecord]) -> List[Action]:
    """
    Delete-only actions undoing the recorded imports, most recent first

    Each delete is limited to the Ids its import wrote, so records that
    already had an ``_ImportId`` from an earlier run are left alone. An Id
    is deleted once even when several imports wrote it; imports left with
    nothing new to delete get no rollback action. Deletes cannot be undone
    and are skipped.
    """
    rollback = []
    covered = set()
    for record in reversed(journal):
        stage = record.action.import_
        if stage.operation == ImportOperation.DELETE:
            logger.warning(f"Cannot roll back delete action '{record.action.name}', skipping")
            continue

        record_ids = []
        for record_id in record.record_ids:
            if (stage.object_name, record_id) not in covered:
                covered.add((stage.object_name, record_id))
                record_ids.append(record_id)
        if not record_ids:
            logger.info(f"Records of '{record.action.name}' are already covered by a later rollback")
            continue

        rollback.append(Action(
            name=f"rollback:{record.action.name}",
            input_sheet=record.action.output_sheet,
            output_sheet=record.action.output_sheet,
            import_=ImportStage(
                object_name=stage.object_name,
                operation=ImportOperation.DELETE,
                id_column=IMPORT_ID_COLUMN,
                record_ids=record_ids
            )
        ))
    return rollback
