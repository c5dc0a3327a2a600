import json
import zipfile

import pytest
import torch

from image_folder_classifier.classifier_trainer.serialization import (
    SCHEMA_ENTRY,
    WEIGHTS_ENTRY,
    load_trained_model,
    save_model,
)


def test_save_writes_weights_and_schema(identity_model, tmp_path):
    path = save_model(identity_model, tmp_path / "MLModel.zip")

    with zipfile.ZipFile(path) as archive:
        assert set(archive.namelist()) == {SCHEMA_ENTRY, WEIGHTS_ENTRY}
        schema = json.loads(archive.read(SCHEMA_ENTRY))
    assert schema["labels"] == ["cat", "dog"]
    assert schema["architecture"] == "resnet_50"
    assert schema["feature_dim"] == 2


def test_load_restores_predictions(identity_model, tmp_path):
    path = save_model(identity_model, tmp_path / "MLModel.zip")
    features = torch.tensor([[0.2, 0.8], [0.7, 0.3]])

    loaded = load_trained_model(path)

    assert loaded.schema == identity_model.schema
    assert loaded.predict_labels(features) == ["dog", "cat"]
    assert torch.allclose(
        loaded.predict_proba(features), identity_model.predict_proba(features)
    )


def test_save_overwrites_existing_archive(identity_model, tmp_path):
    path = tmp_path / "MLModel.zip"
    path.write_bytes(b"stale")

    save_model(identity_model, path)
    save_model(identity_model, path)

    assert load_trained_model(path).key_map.labels == ["cat", "dog"]


def test_load_rejects_unknown_archive_version(identity_model, tmp_path):
    path = save_model(identity_model, tmp_path / "MLModel.zip")
    with zipfile.ZipFile(path) as archive:
        schema = json.loads(archive.read(SCHEMA_ENTRY))
        weights = archive.read(WEIGHTS_ENTRY)
    schema["format_version"] = 99
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr(SCHEMA_ENTRY, json.dumps(schema))
        archive.writestr(WEIGHTS_ENTRY, weights)

    with pytest.raises(ValueError, match="version 99"):
        load_trained_model(path)


def test_predict_proba_rows_sum_to_one(identity_model):
    probabilities = identity_model.predict_proba(torch.rand(5, 2))

    assert probabilities.shape == (5, 2)
    assert torch.allclose(probabilities.sum(dim=1), torch.ones(5))
