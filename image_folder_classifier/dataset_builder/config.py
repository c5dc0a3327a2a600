from pydantic import BaseModel, Field

DEFAULT_IMAGE_ROOT = "Data"
DEFAULT_TEST_FRACTION = 0.2
DEFAULT_SHUFFLE_SEED = 0
DEFAULT_SPLIT_SEED = 1


class DatasetConfig(BaseModel):
    """Configuration for building the labeled dataset from an image folder."""

    image_root: str = Field(
        DEFAULT_IMAGE_ROOT,
        description="Root directory whose immediate subdirectories are class labels",
    )
    test_fraction: float = Field(
        DEFAULT_TEST_FRACTION,
        description="Fraction of the records held out for testing",
        gt=0,
        lt=1,
    )
    shuffle_seed: int = Field(
        DEFAULT_SHUFFLE_SEED, description="Random seed used to shuffle the records"
    )
    split_seed: int = Field(
        DEFAULT_SPLIT_SEED, description="Random seed used for the train/test split"
    )
    stratify: bool = Field(
        False, description="Preserve the label proportions in both splits"
    )
