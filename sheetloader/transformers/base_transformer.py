"""
Base transformer interface
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sheetloader.common.models import Dataset, WorkingSet
from sheetloader.common.logging import get_logger


@dataclass
class TransformerStats:
    """Statistics for transformer execution"""
    rows_processed: int = 0
    cells_modified: int = 0
    columns_created: int = 0
    lookup_misses: int = 0


class Transformer(ABC):
    """Abstract base class for in-place dataset transformers"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize transformer

        Args:
            config: Transformer-specific configuration
        """
        self.config = config or {}
        self.stats = TransformerStats()
        self.logger = get_logger(self.__class__.__name__)

    @abstractmethod
    def transform(self, dataset: Dataset, working_set: WorkingSet) -> Dataset:
        """
        Transform a dataset in place

        Args:
            dataset: Dataset to mutate
            working_set: All datasets of the run, for cross-sheet lookups

        Returns:
            Dataset: The same dataset, for chaining

        Raises:
            TransformError: If transformation fails
        """
        pass

    def get_stats(self) -> Dict[str, Any]:
        """
        Get transformation statistics

        Returns:
            Dict: Statistics (rows processed, cells modified, misses, etc.)
        """
        return {
            'rows_processed': self.stats.rows_processed,
            'cells_modified': self.stats.cells_modified,
            'columns_created': self.stats.columns_created,
            'lookup_misses': self.stats.lookup_misses
        }

    def reset_stats(self) -> None:
        """Reset statistics, so they describe a single pass"""
        self.stats = TransformerStats()
