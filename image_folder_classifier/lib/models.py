from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from image_folder_classifier.lib import setup_logger

logger = setup_logger(__name__)


class LabeledImage(BaseModel):
    """A single image file paired with the name of the directory it was found in."""

    model_config = ConfigDict(frozen=True)

    image_path: str
    label: str


class EncodedImage(LabeledImage):
    """
    A labeled image with the fields derived downstream of the loader.

    ``label_key`` is the dense integer key of ``label``; ``image`` holds the raw
    file bytes once they have been read and is never serialized.
    """

    label_key: int
    image: Optional[bytes] = Field(None, exclude=True, repr=False)

    @property
    def is_loaded(self) -> bool:
        return self.image is not None


class DatasetSplit(BaseModel):
    """Represents a dataset split (train or test)."""

    items: List[EncodedImage]

    def __len__(self) -> int:
        return len(self.items)

    @property
    def label_keys(self) -> List[int]:
        return [item.label_key for item in self.items]

    def distribution(self) -> Dict[str, int]:
        """Number of items per label, in order of first occurrence."""
        counts: Dict[str, int] = {}
        for item in self.items:
            counts[item.label] = counts.get(item.label, 0) + 1
        return counts


class Dataset(BaseModel):
    """The shuffled, key-encoded and split dataset of a training run."""

    train: DatasetSplit
    test: DatasetSplit

    # {label: key}, keys are 0..k-1
    label_mapping: Dict[str, int]

    def summary(self) -> Dict[str, object]:
        summary = {
            "train_size": len(self.train),
            "test_size": len(self.test),
            "classes": list(self.label_mapping.keys()),
        }
        logger.debug(f"Dataset summary: {summary}")
        return summary
