from enum import Enum
import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from image_folder_classifier.dataset_builder.config import DatasetConfig
from image_folder_classifier.feature_extractor.extractor import Architecture


class HeadType(str, Enum):
    """Classifier head trained on top of the backbone features."""

    SIMPLE = "simple"  # A single linear layer
    COMPLEX = "complex"  # Hidden layer with dropout


class EarlyStoppingMetric(str, Enum):
    ACCURACY = "accuracy"
    LOSS = "loss"


DEFAULT_LEARNING_RATE = 0.01
DEFAULT_BATCH_SIZE = 10
DEFAULT_NUM_EPOCHS = 200
DEFAULT_PATIENCE = 20
DEFAULT_MIN_DELTA = 0.01
DEFAULT_MODEL_PATH = "MLModel.zip"


class ModelInformation(BaseModel):
    """Information about the model to train."""

    name: str = Field("MLModel", description="Name of the model")
    description: str = Field(
        "Image classifier trained on a labeled image folder",
        description="Description of the model",
    )
    version: str = Field("1.0.0", description="Version of the model")

    @field_validator("version")
    def validate_version(cls, v: str) -> str:
        """Validate the version of the model."""
        if not re.match(r"^\d+\.\d+\.\d+$", v):
            raise ValueError("Version must be in the semver format x.x.x")
        return v


class Hyperparameters(BaseModel):
    """Hyperparameters for the training process."""

    learning_rate: float = Field(
        DEFAULT_LEARNING_RATE,
        description="Learning rate for the classifier head",
        gt=0,
    )
    batch_size: int = Field(
        DEFAULT_BATCH_SIZE, description="Batch size for training", ge=1
    )
    num_epochs: int = Field(
        DEFAULT_NUM_EPOCHS, description="Maximum number of epochs to train", ge=1
    )


class EarlyStopping(BaseModel):
    """Stop training once the validation metric stops improving."""

    enabled: bool = Field(True, description="Whether to stop early")
    metric: EarlyStoppingMetric = Field(
        EarlyStoppingMetric.ACCURACY, description="Validation metric to monitor"
    )
    min_delta: float = Field(
        DEFAULT_MIN_DELTA, description="Minimum change counted as improvement", ge=0
    )
    patience: int = Field(
        DEFAULT_PATIENCE,
        description="Epochs without improvement before stopping",
        ge=1,
    )


class TrainingConfig(BaseModel):
    """Configuration for training a classifier."""

    model_config = ConfigDict(protected_namespaces=())

    model_information: ModelInformation = Field(
        default_factory=ModelInformation,
        description="Information about the model to train",
    )
    architecture: Architecture = Field(
        Architecture.RESNET_50, description="Pretrained backbone used for features"
    )
    head: HeadType = Field(HeadType.SIMPLE, description="Classifier head to train")
    hyperparameters: Hyperparameters = Field(
        default_factory=Hyperparameters,
        description="Hyperparameters for the training process",
    )
    early_stopping: EarlyStopping = Field(
        default_factory=EarlyStopping, description="Early stopping settings"
    )
    seed: int = Field(0, description="Random seed for reproducibility")


class OutputConfig(BaseModel):
    """Where the training run writes its artifacts."""

    model_config = ConfigDict(protected_namespaces=())

    model_path: str = Field(
        DEFAULT_MODEL_PATH, description="Model archive, overwritten on every run"
    )
    confusion_matrix_plot: Optional[str] = Field(
        None, description="Optional PNG path for a confusion matrix heatmap"
    )


class TrackingConfig(BaseModel):
    """Experiment tracking with Aim."""

    enabled: bool = Field(False, description="Track the run with Aim")
    experiment: str = Field(
        "image_folder_classifier", description="Aim experiment name"
    )
    repo: Optional[str] = Field(None, description="Aim repository path")


class PipelineConfig(BaseModel):
    """Configuration for a complete training run."""

    dataset: DatasetConfig = Field(default_factory=DatasetConfig)
    training: TrainingConfig = Field(default_factory=TrainingConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    tracking: TrackingConfig = Field(default_factory=TrackingConfig)
