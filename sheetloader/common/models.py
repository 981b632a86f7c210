"""
Data models for sheetloader
"""
import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from sheetloader.common.exceptions import DatasetError


class ImportOperation(Enum):
    """Supported ingest operations"""
    INSERT = "insert"
    UPDATE = "update"
    UPSERT = "upsert"
    DELETE = "delete"


class PlaceholderMissPolicy(Enum):
    """What a transform does when a placeholder key is not found"""
    KEEP = "keep"    # keep the original cell value
    EMPTY = "empty"  # replace the cell with an empty string


@dataclass
class Dataset:
    """
    In-memory named table of string cells

    ``column_keys`` address lookups and the remote object schema,
    ``display_labels`` are what a human sees in the spreadsheet.
    """
    name: str
    display_labels: List[str]
    column_keys: List[str]
    rows: List[List[str]] = field(default_factory=list)

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Check the shape invariants

        Raises:
            DatasetError: If labels/keys/rows disagree in width or keys repeat
        """
        if len(self.display_labels) != len(self.column_keys):
            raise DatasetError(
                f"Dataset '{self.name}': {len(self.display_labels)} labels "
                f"but {len(self.column_keys)} column keys"
            )

        seen = set()
        for key in self.column_keys:
            if key in seen:
                raise DatasetError(f"Dataset '{self.name}': duplicate column key '{key}'")
            seen.add(key)

        width = len(self.column_keys)
        for i, row in enumerate(self.rows):
            if len(row) != width:
                raise DatasetError(
                    f"Dataset '{self.name}': row {i} has {len(row)} cells, expected {width}"
                )

    @property
    def width(self) -> int:
        return len(self.column_keys)

    def __len__(self) -> int:
        return len(self.rows)

    def find_column(self, key: str) -> Optional[int]:
        """Index of a column key, or None if absent"""
        for i, existing in enumerate(self.column_keys):
            if existing == key:
                return i
        return None

    def has_column(self, key: str) -> bool:
        return self.find_column(key) is not None

    def column_index(self, key: str) -> int:
        """
        Index of a column key

        Raises:
            DatasetError: If the column does not exist
        """
        index = self.find_column(key)
        if index is None:
            raise DatasetError(f"Column '{key}' not found in dataset '{self.name}'")
        return index

    def ensure_column(self, key: str, label: Optional[str] = None, default: str = "") -> int:
        """
        Resolve a column, appending it if absent

        Args:
            key: Column key
            label: Display label for a new column (defaults to the key)
            default: Value written to every existing row of a new column

        Returns:
            Column index
        """
        index = self.find_column(key)
        if index is not None:
            return index

        self.column_keys.append(key)
        self.display_labels.append(label if label is not None else key)
        for row in self.rows:
            row.append(default)
        return len(self.column_keys) - 1

    def column_values(self, key: str) -> List[str]:
        index = self.column_index(key)
        return [row[index] for row in self.rows]

    def clone(self, name: Optional[str] = None) -> 'Dataset':
        """Deep copy, optionally under a new name"""
        return Dataset(
            name=name if name is not None else self.name,
            display_labels=list(self.display_labels),
            column_keys=list(self.column_keys),
            rows=copy.deepcopy(self.rows)
        )


WorkingSet = Dict[str, Dataset]


@dataclass
class RunPolicy:
    """Global settings for one pipeline run"""
    stop_on_error: bool = True
    rollback_on_error: bool = False
    poll_interval: float = 5.0   # seconds
    max_wait: float = 600.0      # seconds
    api_version: str = "58.0"
    placeholder_miss_policy: PlaceholderMissPolicy = PlaceholderMissPolicy.KEEP

    def for_rollback(self) -> 'RunPolicy':
        """Same policy with stop/rollback disabled, used for the rollback pipeline"""
        return RunPolicy(
            stop_on_error=False,
            rollback_on_error=False,
            poll_interval=self.poll_interval,
            max_wait=self.max_wait,
            api_version=self.api_version,
            placeholder_miss_policy=self.placeholder_miss_policy
        )


@dataclass
class ColumnMapping:
    """One source → target column pair of a copy stage"""
    source_column: str
    target_column: str


@dataclass
class CopySheetStage:
    columns: List[ColumnMapping]


@dataclass
class ExportStage:
    query: str
    match_column: Optional[str] = None


@dataclass
class FieldTransform:
    """Expression applied to one column"""
    target_column: str
    expression: str


@dataclass
class TransformStage:
    fields: List[FieldTransform]


@dataclass
class ImportStage:
    object_name: str
    operation: ImportOperation
    unique_field: Optional[str] = None
    columns: Optional[List[str]] = None  # explicit allow-list
    id_column: Optional[str] = None  # where record Ids are read from (update/delete)
    record_ids: Optional[List[str]] = None  # limits a delete to these Ids


@dataclass
class Action:
    """One configured unit of pipeline work against one logical sheet"""
    name: str
    input_sheet: str
    output_sheet: Optional[str] = None
    wait_before_start: float = 0.0
    copy: Optional[CopySheetStage] = None
    export: Optional[ExportStage] = None
    transform: Optional[TransformStage] = None
    import_: Optional[ImportStage] = None

    def __post_init__(self):
        if not self.output_sheet:
            self.output_sheet = self.input_sheet


@dataclass
class ConnectionSettings:
    """Where and how to authenticate against the remote org"""
    instance_url: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None


@dataclass
class PipelineConfig:
    """Everything a configuration file describes"""
    policy: RunPolicy
    actions: List[Action]
    connection: ConnectionSettings = field(default_factory=ConnectionSettings)


@dataclass
class StageResult:
    """Result from a single stage execution"""
    stage: str  # 'copy', 'export', 'transform', 'import'
    success: bool
    record_count: int = 0
    duration_seconds: float = 0.0
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    skipped: bool = False


@dataclass
class ActionResult:
    """Result of all stages of one action"""
    action: str
    stages: List[StageResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(stage.success for stage in self.stages)

    @property
    def failed_stage(self) -> Optional[StageResult]:
        for stage in self.stages:
            if not stage.success:
                return stage
        return None


@dataclass
class PipelineResult:
    """Result of a pipeline run"""

    success: bool

    actions: List[ActionResult] = field(default_factory=list)

    # Failure that stopped the run (first failure when the run continued)
    failed_action: Optional[str] = None
    failure_reason: Optional[str] = None

    rollback_attempted: bool = False
    rollback_result: Optional['PipelineResult'] = None

    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration_seconds: float = 0.0

    def summary(self) -> str:
        """Human-readable description of the outcome"""
        if self.success:
            return f"Pipeline succeeded: {len(self.actions)} action(s) completed"

        lines = [
            f"Pipeline failed at action '{self.failed_action}': {self.failure_reason}"
        ]
        if self.rollback_attempted:
            if self.rollback_result is None:
                lines.append("Rollback attempted: nothing to roll back")
            elif self.rollback_result.success:
                lines.append(
                    f"Rollback succeeded: {len(self.rollback_result.actions)} delete action(s)"
                )
            else:
                lines.append(
                    f"Rollback failed at '{self.rollback_result.failed_action}': "
                    f"{self.rollback_result.failure_reason}"
                )
        else:
            lines.append("Rollback not attempted")
        return "\n".join(lines)
