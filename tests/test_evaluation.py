import warnings

import pytest
import torch

from image_folder_classifier.classifier_trainer.evaluation import (
    MulticlassMetrics,
    evaluate,
    save_confusion_matrix_plot,
)


FEATURES = torch.tensor([[1.0, 0.0], [0.0, 1.0], [1.0, 0.0], [0.0, 1.0]])
# cat, dog, dog, dog -> predicted cat, dog, cat, dog
KEYS = [0, 1, 1, 1]


def test_evaluate_accuracies_and_confusion_matrix(identity_model):
    metrics = evaluate(identity_model, FEATURES, KEYS)

    assert metrics.labels == ["cat", "dog"]
    assert metrics.confusion_matrix == [[1, 0], [1, 2]]
    assert metrics.micro_accuracy == pytest.approx(0.75)
    assert metrics.macro_accuracy == pytest.approx((1.0 + 2 / 3) / 2)
    assert metrics.log_loss > 0
    assert metrics.per_class_recall == pytest.approx([1.0, 2 / 3])
    assert metrics.per_class_precision == pytest.approx([0.5, 1.0])


def test_summary_prints_percentages_and_table(identity_model):
    summary = evaluate(identity_model, FEATURES, KEYS).summary()

    assert "Macro accuracy = 83.33%" in summary
    assert "Micro accuracy = 75.00%" in summary
    assert "Confusion table" in summary
    assert "Recall" in summary
    assert "Precision" in summary


def test_confusion_table_covers_labels_missing_from_test_set():
    metrics = MulticlassMetrics(
        macro_accuracy=1.0,
        micro_accuracy=1.0,
        log_loss=0.1,
        labels=["cat", "dog", "bird"],
        confusion_matrix=[[2, 0, 0], [0, 0, 0], [0, 0, 0]],
    )

    frame = metrics.confusion_frame()

    assert list(frame.index) == ["cat", "dog", "bird"]
    assert metrics.per_class_recall == [1.0, 0.0, 0.0]
    assert "bird" in metrics.format_confusion_table()


def test_evaluate_rejects_mismatched_inputs(identity_model):
    with pytest.raises(ValueError):
        evaluate(identity_model, FEATURES, [0, 1])


def test_save_confusion_matrix_plot(identity_model, tmp_path):
    metrics = evaluate(identity_model, FEATURES, KEYS)

    path = save_confusion_matrix_plot(metrics, tmp_path / "plots" / "cm.png")

    assert path.exists()
    assert path.read_bytes().startswith(b"\x89PNG")


@pytest.mark.parametrize(
    "rows, keys, expected",
    [
        # single correct item, dog absent from the test set
        (slice(0, 1), [0], 1.0),
        # single dog predicted as cat, cat absent from the test set
        (slice(2, 3), [1], 0.0),
    ],
)
def test_macro_accuracy_on_single_item_test_set(identity_model, rows, keys, expected):
    with warnings.catch_warnings():
        warnings.simplefilter("error", UserWarning)
        metrics = evaluate(identity_model, FEATURES[rows], keys)

    assert metrics.macro_accuracy == pytest.approx(expected)
    assert metrics.micro_accuracy == pytest.approx(expected)
