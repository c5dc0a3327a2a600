import pytest
import torch

from image_folder_classifier.classifier_trainer.config import (
    EarlyStopping,
    EarlyStoppingMetric,
    HeadType,
    Hyperparameters,
    TrainingConfig,
)
from image_folder_classifier.classifier_trainer.dataset import FeatureDataset
from image_folder_classifier.classifier_trainer.trainer import (
    EpochMetrics,
    Trainer,
    check_class_balance,
)


def _separable_datasets():
    train = FeatureDataset(
        torch.tensor([[1.0, 0.0], [0.9, 0.1], [0.8, 0.0], [0.0, 1.0], [0.1, 0.9], [0.0, 0.8]]),
        [0, 0, 0, 1, 1, 1],
    )
    val = FeatureDataset(torch.tensor([[0.95, 0.05], [0.05, 0.95]]), [0, 1])
    return train, val


def _config(**overrides) -> TrainingConfig:
    values = dict(
        hyperparameters=Hyperparameters(learning_rate=0.1, batch_size=4, num_epochs=60),
        early_stopping=EarlyStopping(enabled=False),
    )
    values.update(overrides)
    return TrainingConfig(**values)


def test_trainer_fits_separable_features():
    train, val = _separable_datasets()
    reported = []

    head = Trainer(_config(), train, val, num_classes=2, metrics_callback=reported.append).train()

    with torch.no_grad():
        predictions = torch.argmax(head(val.features), dim=1).tolist()
    assert predictions == [0, 1]
    assert len(reported) == 120
    assert [m.dataset_used for m in reported[:2]] == ["Train", "Validation"]
    assert [m.epoch for m in reported[:4]] == [0, 0, 1, 1]


@pytest.mark.parametrize("head", [HeadType.SIMPLE, HeadType.COMPLEX])
def test_trainer_builds_configured_head(head):
    train, val = _separable_datasets()
    trainer = Trainer(_config(head=head), train, val, num_classes=2)

    assert trainer.model(torch.zeros(3, 2)).shape == (3, 2)


def test_early_stopping_stops_after_patience():
    train, val = _separable_datasets()
    reported = []
    config = _config(
        early_stopping=EarlyStopping(
            enabled=True, metric=EarlyStoppingMetric.LOSS, min_delta=100.0, patience=2
        )
    )

    trainer = Trainer(config, train, val, num_classes=2, metrics_callback=reported.append)
    trainer.train()

    # Nothing beats the first epoch by 100, so epochs 0, 1 and 2 run
    assert len(reported) == 6
    assert trainer.best_epoch == 0


def test_training_is_reproducible():
    train, val = _separable_datasets()

    first = Trainer(_config(), train, val, num_classes=2).train()
    second = Trainer(_config(), train, val, num_classes=2).train()

    for a, b in zip(first.state_dict().values(), second.state_dict().values()):
        assert torch.equal(a, b)


def test_trainer_rejects_empty_training_set():
    _, val = _separable_datasets()
    empty = FeatureDataset(torch.zeros(0, 2), [])

    with pytest.raises(ValueError, match="Training set is empty"):
        Trainer(_config(), empty, val, num_classes=2)


def test_feature_dataset_validates_shapes():
    with pytest.raises(ValueError):
        FeatureDataset(torch.zeros(3, 2), [0, 1])
    with pytest.raises(ValueError):
        FeatureDataset(torch.zeros(3), [0, 1, 2])


def test_epoch_metrics_line():
    line = str(
        EpochMetrics(dataset_used="Validation", epoch=3, accuracy=0.5, cross_entropy=0.25)
    )

    assert line.startswith("Phase: Training, Dataset used: Validation")
    assert "Epoch:   3" in line
    assert "Accuracy: 0.5000" in line
    assert "Cross-Entropy: 0.2500" in line


def test_check_class_balance():
    assert check_class_balance({"cat": 5, "dog": 5}) == []
    assert check_class_balance({"cat": 8, "dog": 2}) == ["cat", "dog"]
    assert check_class_balance({}) == []
