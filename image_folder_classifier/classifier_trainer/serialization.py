import io
import zipfile
from pathlib import Path
from typing import Dict, List, Union

import torch
from pydantic import BaseModel, Field

from image_folder_classifier.classifier_trainer.config import HeadType
from image_folder_classifier.classifier_trainer.model import build_head
from image_folder_classifier.dataset_builder.keys import LabelKeyMap
from image_folder_classifier.feature_extractor.extractor import Architecture
from image_folder_classifier.lib.logger import setup_logger

logger = setup_logger(__name__)

WEIGHTS_ENTRY = "model.pt"
SCHEMA_ENTRY = "schema.json"
ARCHIVE_FORMAT_VERSION = 1


class ModelSchema(BaseModel):
    """Everything besides the weights needed to rebuild and use a trained model."""

    format_version: int = ARCHIVE_FORMAT_VERSION
    name: str
    version: str
    description: str = ""
    architecture: Architecture
    head: HeadType
    feature_dim: int = Field(..., ge=1)
    # Ordered by key: labels[key] is the label of that key
    labels: List[str]
    columns: Dict[str, str] = Field(
        default_factory=lambda: {
            "image_path": "image_path",
            "label": "label",
            "label_key": "label_key",
            "predicted_label": "predicted_label",
        }
    )


class TrainedModel:
    """A fitted classifier head together with its label key map and schema."""

    def __init__(self, head: torch.nn.Module, key_map: LabelKeyMap, schema: ModelSchema):
        if len(key_map) != len(schema.labels):
            raise ValueError(
                f"Key map has {len(key_map)} labels but the schema lists {len(schema.labels)}"
            )
        self.head = head
        self.key_map = key_map
        self.schema = schema
        self.head.eval()

    def predict_proba(self, features: torch.Tensor) -> torch.Tensor:
        """Class probabilities of shape ``(items, num_classes)``, columns ordered by key."""
        device = next(self.head.parameters()).device
        with torch.no_grad():
            logits = self.head(features.float().to(device))
        return torch.softmax(logits, dim=1).cpu()

    def predict_keys(self, features: torch.Tensor) -> List[int]:
        return torch.argmax(self.predict_proba(features), dim=1).tolist()

    def predict_labels(self, features: torch.Tensor) -> List[str]:
        """Predicted keys mapped back to their label strings."""
        return self.key_map.to_labels(self.predict_keys(features))


def save_model(model: TrainedModel, path: Union[str, Path]) -> Path:
    """Write the model archive, replacing any existing file at ``path``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    buffer = io.BytesIO()
    state_dict = {name: tensor.cpu() for name, tensor in model.head.state_dict().items()}
    torch.save(state_dict, buffer)

    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr(SCHEMA_ENTRY, model.schema.model_dump_json(indent=2))
        archive.writestr(WEIGHTS_ENTRY, buffer.getvalue())

    logger.info(f"Model saved to {path}")
    return path


def load_trained_model(path: Union[str, Path]) -> TrainedModel:
    """Rebuild a ``TrainedModel`` from an archive written by ``save_model``."""
    path = Path(path)
    with zipfile.ZipFile(path, "r") as archive:
        schema = ModelSchema.model_validate_json(archive.read(SCHEMA_ENTRY))
        weights = archive.read(WEIGHTS_ENTRY)

    if schema.format_version != ARCHIVE_FORMAT_VERSION:
        raise ValueError(
            f"Unsupported model archive version {schema.format_version} in {path}"
        )

    head = build_head(schema.head, schema.feature_dim, len(schema.labels))
    head.load_state_dict(
        torch.load(io.BytesIO(weights), map_location="cpu", weights_only=True)
    )
    logger.info(f"Model loaded from {path}")
    return TrainedModel(head, LabelKeyMap(schema.labels), schema)
