"""
Base Data Ingester

Common extract / validate / transform workflow for loading boundary data
from disk before it is tiled.
"""

import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Union

import structlog


class BaseDataIngester(ABC):
    """
    Abstract base class for ingestion steps.

    Subclasses implement the three stages; ``ingest`` runs them in order,
    tracks timing statistics and lets errors propagate to the caller.
    """

    def __init__(self):
        self.logger = structlog.get_logger(ingester_type=self.__class__.__name__)

        self.stats = {
            'records_processed': 0,
            'records_dropped': 0,
            'start_time': None,
            'end_time': None,
        }

    @abstractmethod
    def extract(self, source: Union[str, Path]) -> Any:
        """
        Extract raw data from the specified source.

        Args:
            source: Path of the input file

        Returns:
            Extracted data in appropriate format
        """
        pass

    @abstractmethod
    def validate(self, data: Any) -> bool:
        """
        Validate the structure of the extracted data.

        Args:
            data: Data to validate

        Returns:
            True if data is usable, False otherwise
        """
        pass

    @abstractmethod
    def transform(self, data: Any) -> Any:
        """
        Clean and prepare validated data for tiling.

        Args:
            data: Raw extracted data

        Returns:
            Transformed data
        """
        pass

    def ingest(self, source: Union[str, Path]) -> Any:
        """
        Run extract, validate and transform on a source.

        Raises:
            ValueError: If validation fails
        """
        self.stats['start_time'] = time.time()
        self.logger.info("Starting data ingestion", source=str(source))

        data = self.extract(source)
        if not self.validate(data):
            raise ValueError(f"Data validation failed for {source}")

        transformed = self.transform(data)

        self.stats['end_time'] = time.time()
        self.logger.info(
            "Data ingestion completed",
            source=str(source),
            records_processed=self.stats['records_processed'],
            records_dropped=self.stats['records_dropped'],
            duration_seconds=round(self.stats['end_time'] - self.stats['start_time'], 3)
        )
        return transformed

    def get_stats(self) -> Dict[str, Any]:
        return dict(self.stats)
