"""
Dataset Construction Component for the image folder classifier.

This module provides functionality for:
- Pairing every file in a label subdirectory with that label
- Shuffling the records and mapping labels to dense integer keys
- Reading raw image bytes and splitting into train and test sets
- Saving the split manifest and label mapping to disk
"""

from .builder import DatasetBuilder, load_labeled_images_from_path
from .config import DatasetConfig
from .keys import LabelKeyMap

__all__ = [
    "DatasetBuilder",
    "DatasetConfig",
    "LabelKeyMap",
    "load_labeled_images_from_path",
]
