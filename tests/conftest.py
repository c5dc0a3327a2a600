import os
from pathlib import Path
from typing import Callable, Dict

# Render plots without a display
os.environ.setdefault("MPLBACKEND", "Agg")

import pytest
import torch
from PIL import Image

from image_folder_classifier.classifier_trainer.config import HeadType
from image_folder_classifier.classifier_trainer.model import SimpleClassifierHead
from image_folder_classifier.classifier_trainer.serialization import (
    ModelSchema,
    TrainedModel,
)
from image_folder_classifier.dataset_builder import LabelKeyMap
from image_folder_classifier.feature_extractor.extractor import Architecture

COLORS = {
    "cat": (220, 40, 40),
    "dog": (40, 40, 220),
    "bird": (40, 220, 40),
}


def write_image(path: Path, color=(128, 128, 128), size=(8, 8)) -> Path:
    Image.new("RGB", size, color).save(path)
    return path


class MeanColorExtractor:
    """Cheap stand-in for a pretrained backbone: the mean RGB value of the image."""

    def __init__(self, architecture=None, device=None):
        self.architecture = architecture
        self.calls = 0

    def extract_features(self, image: Image.Image) -> torch.Tensor:
        self.calls += 1
        pixels = torch.tensor(list(image.getdata()), dtype=torch.float32)
        return (pixels.mean(dim=0) / 255.0).reshape(1, -1)


@pytest.fixture
def make_image_tree(tmp_path: Path) -> Callable[..., Path]:
    """Build ``<tmp>/<root_name>/<label>/<label>_<i>.png`` for the given counts."""

    def _make(counts: Dict[str, int], root_name: str = "Data") -> Path:
        root = tmp_path / root_name
        root.mkdir(parents=True, exist_ok=True)
        for label, count in counts.items():
            label_dir = root / label
            label_dir.mkdir(exist_ok=True)
            for i in range(count):
                write_image(label_dir / f"{label}_{i}.png", COLORS.get(label, (128, 128, 128)))
        return root

    return _make


@pytest.fixture
def extractor() -> MeanColorExtractor:
    return MeanColorExtractor()


@pytest.fixture
def identity_model() -> TrainedModel:
    """A two-class model that predicts the index of the largest feature."""
    head = SimpleClassifierHead(input_dim=2, num_classes=2)
    with torch.no_grad():
        head.fc.weight.copy_(torch.eye(2))
        head.fc.bias.zero_()
    schema = ModelSchema(
        name="identity",
        version="1.0.0",
        architecture=Architecture.RESNET_50,
        head=HeadType.SIMPLE,
        feature_dim=2,
        labels=["cat", "dog"],
    )
    return TrainedModel(head, LabelKeyMap(["cat", "dog"]), schema)
