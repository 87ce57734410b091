"""Extractors for TM1 data and metadata."""

from .base import BaseExtractor, ExtractionResult
from .org_extractor import TM1DataExtractor, SharingRulesExtractor
from .csv_reader import read_tm1_dataset

__all__ = [
    "BaseExtractor",
    "ExtractionResult",
    "TM1DataExtractor",
    "SharingRulesExtractor",
    "read_tm1_dataset",
]
