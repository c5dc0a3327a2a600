import io
from enum import Enum
from pathlib import Path
from typing import Optional, Protocol, Sequence, Union

import torch
from PIL import Image
from tqdm import tqdm
from transformers import AutoImageProcessor, AutoModel

from image_folder_classifier.lib import EncodedImage, setup_logger

logger = setup_logger(__name__)


class Architecture(str, Enum):
    """Pretrained backbones available for feature extraction."""

    RESNET_50 = "resnet_50"
    RESNET_101 = "resnet_101"
    MOBILENET_V2 = "mobilenet_v2"
    DINOV2_BASE = "dinov2_base"

    @property
    def model_name(self) -> str:
        return _MODEL_NAMES[self]


_MODEL_NAMES = {
    Architecture.RESNET_50: "microsoft/resnet-50",
    Architecture.RESNET_101: "microsoft/resnet-101",
    Architecture.MOBILENET_V2: "google/mobilenet_v2_1.0_224",
    Architecture.DINOV2_BASE: "facebook/dinov2-base",
}


class ImageDecodingError(ValueError):
    """Raised when a file in the dataset cannot be decoded as an image."""


class FeatureExtractor(Protocol):
    def extract_features(self, image: Image.Image) -> torch.Tensor: ...


def decode_image(data: bytes, source: str = "<bytes>") -> Image.Image:
    """Decode raw bytes into an RGB image."""
    try:
        image = Image.open(io.BytesIO(data))
        # Image.open is lazy; force a full decode so truncated files fail here
        image.load()
    except OSError as e:
        raise ImageDecodingError(f"Could not decode {source} as an image: {e}") from e
    return image.convert("RGB")


class PretrainedFeatureExtractor:
    """Extracts bottleneck features from images with a pretrained backbone."""

    def __init__(
        self,
        architecture: Architecture = Architecture.RESNET_50,
        device: Optional[torch.device] = None,
    ):
        self.architecture = architecture
        self.device = device or torch.device(
            "cuda" if torch.cuda.is_available() else "cpu"
        )
        logger.info(f"Loading {architecture.model_name} on {self.device}")
        self.processor = AutoImageProcessor.from_pretrained(architecture.model_name)
        self.model = AutoModel.from_pretrained(architecture.model_name)
        self.model.to(self.device)
        self.model.eval()

    def extract_features(self, image: Image.Image) -> torch.Tensor:
        """
        Takes an image and returns a ``(1, feature_dim)`` tensor of backbone features.

        Remarks:
        AutoImageProcessor handles resizing and normalisation.
        """
        inputs = self.processor(images=image, return_tensors="pt").to(self.device)
        with torch.no_grad():
            outputs = self.model(**inputs)

        pooled = getattr(outputs, "pooler_output", None)
        if pooled is not None:
            features = pooled.flatten(start_dim=1)
        else:
            features = outputs.last_hidden_state.mean(dim=1)
        logger.debug(f"Features shape: {features.shape}")

        return features.cpu()


def extract_dataset_features(
    extractor: FeatureExtractor, items: Sequence[EncodedImage], desc: str = "Featurizing"
) -> torch.Tensor:
    """
    Decode every item's image bytes and stack their features into ``(N, feature_dim)``.

    Raises:
        ImageDecodingError: an item's bytes are not a decodable image.
        ValueError: an item's bytes have not been loaded.
    """
    rows = []
    for item in tqdm(items, desc=desc):
        if item.image is None:
            raise ValueError(f"Image bytes of {item.image_path} have not been loaded")
        image = decode_image(item.image, source=item.image_path)
        rows.append(extractor.extract_features(image).reshape(1, -1).float())

    if not rows:
        raise ValueError("Cannot extract features from an empty set of images")

    features = torch.cat(rows, dim=0)
    logger.info(f"Extracted features of shape {tuple(features.shape)}")
    return features


def extract_file_features(
    extractor: FeatureExtractor, paths: Sequence[Union[str, Path]]
) -> torch.Tensor:
    """Read, decode and featurize image files into ``(N, feature_dim)``."""
    if not paths:
        raise ValueError("No image files given")

    rows = []
    for path in tqdm(paths, desc="Featurizing"):
        image = decode_image(Path(path).read_bytes(), source=str(path))
        rows.append(extractor.extract_features(image).reshape(1, -1).float())
    return torch.cat(rows, dim=0)
