"""Local-first storage: the dataset, its persistence and pending deletions."""

from .data_store import DataStore, parse_dataset
from .local_db import LocalDatabase
from .merge import merge_datasets
from .tombstones import TombstoneLedger

__all__ = [
    "DataStore",
    "LocalDatabase",
    "TombstoneLedger",
    "merge_datasets",
    "parse_dataset",
]
