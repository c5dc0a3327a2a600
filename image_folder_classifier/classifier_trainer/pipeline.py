import json
from pathlib import Path
from typing import Any, Callable, List, Optional

import torch
from pydantic import BaseModel, ConfigDict

from image_folder_classifier.classifier_trainer.config import PipelineConfig
from image_folder_classifier.classifier_trainer.dataset import FeatureDataset
from image_folder_classifier.classifier_trainer.evaluation import (
    MulticlassMetrics,
    evaluate,
    save_confusion_matrix_plot,
)
from image_folder_classifier.classifier_trainer.serialization import (
    ModelSchema,
    TrainedModel,
    save_model,
)
from image_folder_classifier.classifier_trainer.trainer import (
    MetricsCallback,
    Trainer,
    check_class_balance,
)
from image_folder_classifier.dataset_builder import DatasetBuilder, LabelKeyMap
from image_folder_classifier.feature_extractor.extractor import (
    FeatureExtractor,
    PretrainedFeatureExtractor,
    extract_dataset_features,
)
from image_folder_classifier.lib import Dataset, setup_logger, start_aim_run

logger = setup_logger(__name__)


class TrainingRun(BaseModel):
    """The outcome of one training run."""

    model_config = ConfigDict(arbitrary_types_allowed=True, protected_namespaces=())

    model: TrainedModel
    metrics: MulticlassMetrics
    test_predictions: List[str]
    model_path: Optional[Path] = None


class ImageClassificationPipeline:
    """
    Runs the fixed sequence of stages that turns an image folder into a saved model:

    1. load the labeled images and shuffle them
    2. map labels to keys and read the image bytes
    3. split into train and test sets
    4. extract backbone features and train the head, validating on the test set
    5. evaluate on the test set
    6. save the model archive

    Any failure propagates and aborts the run; nothing is written before the
    final stage.
    """

    def __init__(
        self,
        config: PipelineConfig,
        feature_extractor: Optional[FeatureExtractor] = None,
        metrics_callback: Optional[MetricsCallback] = None,
    ):
        self.config = config
        self.metrics_callback = metrics_callback
        self._feature_extractor = feature_extractor

        self.dataset: Optional[Dataset] = None
        self.key_map: Optional[LabelKeyMap] = None
        self.model: Optional[TrainedModel] = None
        self.metrics: Optional[MulticlassMetrics] = None
        self.test_predictions: List[str] = []
        self._test_features: Optional[torch.Tensor] = None
        self._aim_run: Optional[Any] = None

    @property
    def feature_extractor(self) -> FeatureExtractor:
        if self._feature_extractor is None:
            self._feature_extractor = PretrainedFeatureExtractor(
                self.config.training.architecture
            )
        return self._feature_extractor

    def build_dataset(self) -> Dataset:
        builder = DatasetBuilder(self.config.dataset)
        self.dataset, self.key_map = builder.build()
        check_class_balance(self.dataset.train.distribution())
        return self.dataset

    def _start_tracking(self) -> None:
        tracking = self.config.tracking
        if tracking.enabled and self._aim_run is None:
            self._aim_run = start_aim_run(
                experiment=tracking.experiment,
                hparams=json.loads(self.config.model_dump_json()),
                repo=tracking.repo,
            )

    def fit(self) -> TrainedModel:
        """Featurize both splits and train the classifier head."""
        if self.dataset is None or self.key_map is None:
            self.build_dataset()
        assert self.dataset is not None and self.key_map is not None
        self._start_tracking()

        train_features = extract_dataset_features(
            self.feature_extractor, self.dataset.train.items, desc="Featurizing train"
        )
        self._test_features = extract_dataset_features(
            self.feature_extractor, self.dataset.test.items, desc="Featurizing test"
        )

        training = self.config.training
        trainer = Trainer(
            training,
            FeatureDataset(train_features, self.dataset.train.label_keys),
            FeatureDataset(self._test_features, self.dataset.test.label_keys),
            num_classes=len(self.key_map),
            metrics_callback=self.metrics_callback,
            aim_run=self._aim_run,
        )
        head = trainer.train()

        schema = ModelSchema(
            name=training.model_information.name,
            version=training.model_information.version,
            description=training.model_information.description,
            architecture=training.architecture,
            head=training.head,
            feature_dim=trainer.feature_dim,
            labels=self.key_map.labels,
        )
        self.model = TrainedModel(head, self.key_map, schema)
        return self.model

    def evaluate(self) -> MulticlassMetrics:
        """Score the fitted model on the test split."""
        if self.model is None:
            self.fit()
        assert self.model is not None and self.dataset is not None
        assert self._test_features is not None

        self.test_predictions = self.model.predict_labels(self._test_features)
        logger.debug(f"Test predictions: {self.test_predictions}")
        self.metrics = evaluate(
            self.model, self._test_features, self.dataset.test.label_keys
        )

        plot_path = self.config.output.confusion_matrix_plot
        if plot_path:
            save_confusion_matrix_plot(self.metrics, plot_path)

        if self._aim_run is not None:
            self._aim_run.track(self.metrics.macro_accuracy, name="test_macro_accuracy")
            self._aim_run.track(self.metrics.micro_accuracy, name="test_micro_accuracy")
            self._aim_run.track(self.metrics.log_loss, name="test_log_loss")

        return self.metrics

    def save(self) -> Path:
        """Write the model archive to the configured path, overwriting it."""
        if self.model is None:
            raise RuntimeError("The model must be fitted before it can be saved")
        return save_model(self.model, self.config.output.model_path)

    def close(self) -> None:
        if self._aim_run is not None:
            self._aim_run.close()
            self._aim_run = None

    def run(self, echo: Optional[Callable[[str], None]] = None) -> TrainingRun:
        """
        Run every stage in order and return the trained model with its metrics.

        Args:
            echo: Receives the progress messages and the metrics summary;
                they are logged when omitted
        """
        report = echo or logger.info
        try:
            self.build_dataset()

            report("Training the model...")
            self.fit()

            metrics = self.evaluate()
            report(f"\n{metrics.summary()}\n")

            report("Saving the model...")
            model_path = self.save()
        finally:
            self.close()

        assert self.model is not None
        return TrainingRun(
            model=self.model,
            metrics=metrics,
            test_predictions=self.test_predictions,
            model_path=model_path,
        )
