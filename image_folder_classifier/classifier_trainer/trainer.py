from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np
import torch
from pydantic import BaseModel
from torch.utils.data import DataLoader
from tqdm import tqdm

from image_folder_classifier.classifier_trainer.config import (
    EarlyStoppingMetric,
    TrainingConfig,
)
from image_folder_classifier.classifier_trainer.dataset import FeatureDataset
from image_folder_classifier.classifier_trainer.model import build_head
from image_folder_classifier.lib.logger import setup_logger

logger = setup_logger(__name__)


class EpochMetrics(BaseModel):
    """Metrics reported at the end of every epoch for one dataset."""

    phase: str = "Training"
    dataset_used: str
    epoch: int
    accuracy: float
    cross_entropy: float

    def __str__(self) -> str:
        return (
            f"Phase: {self.phase}, Dataset used: {self.dataset_used:>10}, "
            f"Epoch: {self.epoch:3d}, Accuracy: {self.accuracy:.4f}, "
            f"Cross-Entropy: {self.cross_entropy:.4f}"
        )


MetricsCallback = Callable[[EpochMetrics], None]


def check_class_balance(distribution: Dict[str, int]) -> List[str]:
    """
    Warn about labels deviating more than 5 percentage points from an even split.

    Returns:
        The imbalanced labels
    """
    total_count = sum(distribution.values())
    num_classes = len(distribution)
    if total_count == 0:
        return []

    ideal_percentage = 100 / num_classes
    imbalanced_classes = []
    for label, count in distribution.items():
        percentage = count / total_count * 100
        if abs(percentage - ideal_percentage) > 5:
            imbalanced_classes.append(label)

    if imbalanced_classes:
        logger.warning(
            f"Class imbalance detected: {len(imbalanced_classes)} out of {num_classes} classes deviate from ideal representation by >5%."
        )
        logger.warning(
            f"Ideal class distribution would be {ideal_percentage:.1f}% per class."
        )
        for label in imbalanced_classes:
            current_pct = distribution[label] / total_count * 100
            logger.warning(
                f"Class '{label}' has {distribution[label]} samples ({current_pct:.1f}%), "
                f"deviating by {abs(current_pct - ideal_percentage):.1f}% from ideal."
            )

    return imbalanced_classes


class Trainer:
    """
    Trains a classifier head on bottleneck features.

    The validation set is evaluated after every epoch; both sets' metrics are
    handed to ``metrics_callback``. With early stopping enabled, training ends
    once the monitored validation metric has not improved by ``min_delta``
    for ``patience`` epochs, and the best weights seen are restored.
    """

    def __init__(
        self,
        config: TrainingConfig,
        train_dataset: FeatureDataset,
        val_dataset: FeatureDataset,
        num_classes: int,
        metrics_callback: Optional[MetricsCallback] = None,
        aim_run: Optional[Any] = None,
    ):
        self.config = config
        self.metrics_callback = metrics_callback
        self.aim_run = aim_run
        self.num_classes = num_classes

        if len(train_dataset) == 0:
            raise ValueError("Training set is empty")
        if len(val_dataset) == 0:
            raise ValueError("Validation set is empty")

        self.feature_dim = train_dataset.feature_dim
        assert (
            val_dataset.feature_dim == self.feature_dim
        ), "Validation feature dimension mismatch."
        logger.info(f"Detected Feature Dimension: {self.feature_dim}")
        logger.info(f"Number of Classes: {self.num_classes}")

        self.device = torch.device("cuda" if torch.cuda.is_available() else "cpu")
        logger.info(f"Using device: {self.device}")

        # Set seeds for reproducibility
        torch.manual_seed(config.seed)
        np.random.seed(config.seed)
        if torch.cuda.is_available():
            torch.cuda.manual_seed_all(config.seed)

        generator = torch.Generator()
        generator.manual_seed(config.seed)
        self.train_loader = DataLoader(
            train_dataset,
            batch_size=config.hyperparameters.batch_size,
            shuffle=True,
            generator=generator,
        )
        self.val_loader = DataLoader(
            val_dataset,
            batch_size=config.hyperparameters.batch_size,
            shuffle=False,
        )

        self.model = build_head(config.head, self.feature_dim, self.num_classes)
        self.model.to(self.device)

        self.criterion = torch.nn.CrossEntropyLoss()
        self.optimizer = torch.optim.AdamW(
            self.model.parameters(), lr=config.hyperparameters.learning_rate
        )

        self.best_epoch = -1
        self.best_val_metric: Optional[float] = None
        self._best_state: Optional[Dict[str, torch.Tensor]] = None

    def _run_epoch(
        self,
        loader: DataLoader[Tuple[torch.Tensor, torch.Tensor]],
        is_training: bool = True,
    ) -> Dict[str, float]:
        """Runs a single epoch of training or validation."""
        if is_training:
            self.model.train()
            context = torch.enable_grad()
        else:
            self.model.eval()
            context = torch.no_grad()

        total_loss = 0.0
        total_correct = 0
        total_count = 0

        pbar = tqdm(loader, desc=f"{'Train' if is_training else 'Eval'}", leave=False)
        with context:
            for features, labels in pbar:
                features, labels = features.to(self.device), labels.to(self.device)

                if is_training:
                    self.optimizer.zero_grad()

                logits = self.model(features)
                loss = self.criterion(logits, labels)

                if is_training:
                    loss.backward()
                    self.optimizer.step()

                batch_size = labels.shape[0]
                total_loss += loss.item() * batch_size
                total_correct += (torch.argmax(logits, dim=1) == labels).sum().item()
                total_count += batch_size

                pbar.set_postfix({"loss": f"{loss.item():.4f}"})

        return {
            "loss": total_loss / total_count,
            "accuracy": total_correct / total_count,
        }

    def _report(self, metrics: Dict[str, float], subset: str, epoch: int) -> None:
        epoch_metrics = EpochMetrics(
            dataset_used=subset,
            epoch=epoch,
            accuracy=metrics["accuracy"],
            cross_entropy=metrics["loss"],
        )
        if self.metrics_callback is not None:
            self.metrics_callback(epoch_metrics)
        logger.debug(str(epoch_metrics))

        if self.aim_run is not None:
            context = {"subset": subset.lower()}
            self.aim_run.track(
                metrics["loss"], name="epoch_loss", epoch=epoch, context=context
            )
            self.aim_run.track(
                metrics["accuracy"], name="epoch_accuracy", epoch=epoch, context=context
            )

    def _is_improvement(self, val_metrics: Dict[str, float]) -> bool:
        stopping = self.config.early_stopping
        if self.best_val_metric is None:
            return True
        if stopping.metric == EarlyStoppingMetric.ACCURACY:
            return val_metrics["accuracy"] > self.best_val_metric + stopping.min_delta
        return val_metrics["loss"] < self.best_val_metric - stopping.min_delta

    def train(self) -> torch.nn.Module:
        """Runs the main training loop and returns the trained head."""
        logger.info("Starting training...")
        total_epochs = self.config.hyperparameters.num_epochs
        stopping = self.config.early_stopping
        monitored = (
            "accuracy" if stopping.metric == EarlyStoppingMetric.ACCURACY else "loss"
        )

        for epoch in range(total_epochs):
            train_metrics = self._run_epoch(self.train_loader, is_training=True)
            self._report(train_metrics, "Train", epoch)

            val_metrics = self._run_epoch(self.val_loader, is_training=False)
            self._report(val_metrics, "Validation", epoch)

            if self._is_improvement(val_metrics):
                self.best_val_metric = val_metrics[monitored]
                self.best_epoch = epoch
                self._best_state = {
                    name: tensor.detach().clone()
                    for name, tensor in self.model.state_dict().items()
                }
                logger.debug(
                    f"New best validation {monitored} ({self.best_val_metric:.4f}) at epoch {epoch}"
                )
            elif stopping.enabled and epoch - self.best_epoch >= stopping.patience:
                logger.info(
                    f"Validation {monitored} has not improved for {stopping.patience} epochs, stopping at epoch {epoch}"
                )
                break

        if stopping.enabled and self._best_state is not None:
            self.model.load_state_dict(self._best_state)
            logger.info(
                f"Restored weights from epoch {self.best_epoch} with validation {monitored} {self.best_val_metric:.4f}"
            )

        logger.info("Training finished.")
        self.model.eval()
        return self.model
