"""VolIndex - A background indexer for removable volumes and watched folders."""

__version__ = "0.1.0"

from volindex.database import Database
from volindex.scanner import ScanPipeline

__all__ = ["Database", "ScanPipeline"]
