from pathlib import Path
from typing import List, Sequence, Union

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
import torch
from pydantic import BaseModel
from sklearn.metrics import accuracy_score, confusion_matrix, log_loss

from image_folder_classifier.classifier_trainer.serialization import TrainedModel
from image_folder_classifier.lib.logger import setup_logger

logger = setup_logger(__name__)


def _safe_ratio(numerator: np.ndarray, denominator: np.ndarray) -> np.ndarray:
    return np.divide(
        numerator,
        denominator,
        out=np.zeros(numerator.shape, dtype=float),
        where=denominator > 0,
    )


def _macro_accuracy(cm: np.ndarray) -> float:
    """Mean recall over the confusion matrix rows that have any support."""
    support = cm.sum(axis=1)
    present = support > 0
    return float(np.mean(np.diag(cm)[present] / support[present]))


class MulticlassMetrics(BaseModel):
    """
    Test-set metrics of a multiclass classifier.

    ``macro_accuracy`` is the mean of the per-class recalls over the classes
    present in the test set; ``micro_accuracy`` is the fraction of all test
    items classified correctly. Confusion matrix rows are the true labels and
    columns the predicted labels, both ordered by key.
    """

    macro_accuracy: float
    micro_accuracy: float
    log_loss: float
    labels: List[str]
    confusion_matrix: List[List[int]]

    def confusion_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            self.confusion_matrix, index=self.labels, columns=self.labels
        )

    @property
    def per_class_recall(self) -> List[float]:
        cm = np.array(self.confusion_matrix)
        return _safe_ratio(np.diag(cm), cm.sum(axis=1)).tolist()

    @property
    def per_class_precision(self) -> List[float]:
        cm = np.array(self.confusion_matrix)
        return _safe_ratio(np.diag(cm), cm.sum(axis=0)).tolist()

    def format_confusion_table(self) -> str:
        """Counts per (truth, prediction) with a recall column and a precision row."""
        table = self.confusion_frame().astype(str)
        table["Recall"] = [f"{value:.4f}" for value in self.per_class_recall]
        table.loc["Precision"] = [
            f"{value:.4f}" for value in self.per_class_precision
        ] + [""]
        table.index.name = "TRUTH \\ PREDICTED"
        return "Confusion table\n" + table.to_string()

    def summary(self) -> str:
        return "\n".join(
            [
                f"Macro accuracy = {self.macro_accuracy:.2%}",
                f"Micro accuracy = {self.micro_accuracy:.2%}",
                self.format_confusion_table(),
            ]
        )


def evaluate(
    model: TrainedModel, features: torch.Tensor, label_keys: Sequence[int]
) -> MulticlassMetrics:
    """Score ``model`` against the true label keys of ``features``."""
    if features.shape[0] != len(label_keys):
        raise ValueError(
            f"Got {features.shape[0]} feature rows for {len(label_keys)} labels"
        )
    if len(label_keys) == 0:
        raise ValueError("Cannot evaluate on an empty test set")

    logger.info("Evaluating on the test set...")
    y_true = np.array(label_keys)
    probabilities = model.predict_proba(features).numpy().astype(np.float64)
    probabilities /= probabilities.sum(axis=1, keepdims=True)
    y_pred = probabilities.argmax(axis=1)
    all_keys = list(range(len(model.key_map)))
    cm = confusion_matrix(y_true, y_pred, labels=all_keys)

    metrics = MulticlassMetrics(
        macro_accuracy=_macro_accuracy(cm),
        micro_accuracy=float(accuracy_score(y_true, y_pred)),
        log_loss=float(log_loss(y_true, probabilities, labels=all_keys)),
        labels=model.key_map.labels,
        confusion_matrix=cm.tolist(),
    )

    logger.info(f"Test Macro Accuracy: {metrics.macro_accuracy:.4f}")
    logger.info(f"Test Micro Accuracy: {metrics.micro_accuracy:.4f}")
    logger.info(f"Test Log Loss: {metrics.log_loss:.4f}")
    return metrics


def save_confusion_matrix_plot(
    metrics: MulticlassMetrics, path: Union[str, Path]
) -> Path:
    """Render the confusion matrix as a heatmap PNG."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    plt.figure(figsize=(10, 7))
    sns.heatmap(metrics.confusion_frame(), annot=True, fmt="d", cmap="Blues")
    plt.title("Confusion Matrix")
    plt.ylabel("Actual")
    plt.xlabel("Predicted")
    plt.savefig(path)
    plt.close()

    logger.info(f"Confusion matrix saved to {path}")
    return path
