"""
Base adapter interfaces for sources and destinations
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List

from sheetloader.common.logging import get_logger
from sheetloader.common.models import Dataset, WorkingSet


class SourceAdapter(ABC):
    """Abstract base class for all source adapters"""

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize adapter with configuration

        Args:
            config: Adapter-specific configuration
        """
        self.config = config
        self._connected = False
        self.logger = get_logger(self.__class__.__name__)

    @abstractmethod
    def connect(self) -> None:
        """
        Validate that the source can be read

        Raises:
            ReadError: If the file is missing or not a file
        """
        pass

    @abstractmethod
    def read(self) -> List[Dataset]:
        """
        Read every dataset the source holds

        Returns:
            List[Dataset]: Datasets in source order

        Raises:
            ReadError: If reading fails
        """
        pass

    def read_working_set(self) -> WorkingSet:
        """Datasets keyed by name; a later dataset replaces an earlier namesake"""
        working_set: WorkingSet = {}
        for dataset in self.read():
            if dataset.name in working_set:
                self.logger.warning(f"Dataset '{dataset.name}' read twice, keeping the last one")
            working_set[dataset.name] = dataset
        return working_set

    @abstractmethod
    def close(self) -> None:
        """Close and cleanup resources"""
        pass

    def __enter__(self):
        """Context manager entry"""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit"""
        self.close()


class DestinationAdapter(ABC):
    """Abstract base class for all destination adapters"""

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize adapter with configuration

        Args:
            config: Adapter-specific configuration
        """
        self.config = config
        self._connected = False
        self.logger = get_logger(self.__class__.__name__)

    @abstractmethod
    def connect(self) -> None:
        """
        Prepare the destination (e.g. create the output directory)

        Raises:
            WriteError: If the destination cannot be prepared
        """
        pass

    @abstractmethod
    def write(self, datasets: Iterable[Dataset]) -> int:
        """
        Write datasets to destination

        Args:
            datasets: Datasets to write

        Returns:
            int: Number of datasets written

        Raises:
            WriteError: If writing fails
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Close and cleanup resources"""
        pass

    def __enter__(self):
        """Context manager entry"""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit"""
        self.close()
