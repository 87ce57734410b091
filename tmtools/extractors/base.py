"""Base extractor interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List
from pathlib import Path
import logging

logger = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    """Result of an extraction operation."""
    files: List[Path] = field(default_factory=list)
    row_counts: Dict[str, int] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        """Check whether nothing was skipped."""
        return len(self.skipped) == 0


class BaseExtractor(ABC):
    """
    Base class for extractors.

    Extractors pull data or metadata out of the source org and write it to
    the extraction directory.
    """

    def __init__(self, target_dir: Path):
        """
        Initialize the extractor.

        Args:
            target_dir: Directory the extracted files are written to
        """
        self.target_dir = Path(target_dir)
        self._warnings: List[str] = []

    @abstractmethod
    def extract(self) -> ExtractionResult:
        """
        Extract everything this extractor is responsible for.

        Returns:
            ExtractionResult listing the written files
        """
        pass

    def add_warning(self, message: str) -> None:
        """Add a warning to the extraction."""
        self._warnings.append(message)
        logger.warning(f"Extraction warning: {message}")

    def reset(self) -> None:
        """Reset the extractor state."""
        self._warnings = []
