"""
Utility library for the image folder classifier.

This module provides common utilities used across the pipeline components.
"""

from .logger import setup_logger
from .config_file import load_config_file
from .tracking import start_aim_run
from .models import LabeledImage, EncodedImage, DatasetSplit, Dataset

__all__ = [
    "load_config_file",
    "setup_logger",
    "start_aim_run",
    "LabeledImage",
    "EncodedImage",
    "DatasetSplit",
    "Dataset",
]
