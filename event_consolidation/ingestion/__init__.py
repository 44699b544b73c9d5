"""
Data Ingestion Module
"""
from .batch_loader import BatchLoader, FileFormat, create_batch_loader

__all__ = [
    "BatchLoader",
    "FileFormat",
    "create_batch_loader",
]
