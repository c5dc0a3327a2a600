from typing import List, Optional

import typer
from pydantic import ValidationError

from image_folder_classifier.feature_extractor.extractor import (
    PretrainedFeatureExtractor,
    extract_file_features,
)
from image_folder_classifier.lib import load_config_file, setup_logger

from .config import PipelineConfig
from .pipeline import ImageClassificationPipeline
from .serialization import load_trained_model

app = typer.Typer(help="Image Classifier Training Component")

logger = setup_logger(__name__)


@app.command()
def train(
    image_dir: Optional[str] = typer.Option(
        None, help="Root directory with one subdirectory per label [default: Data]"
    ),
    model_path: Optional[str] = typer.Option(
        None, help="Where to write the model archive [default: MLModel.zip]"
    ),
    config_file: Optional[str] = typer.Option(
        None, "--config", help="Path to the pipeline configuration file (YAML/JSON)"
    ),
    confusion_matrix_plot: Optional[str] = typer.Option(
        None, help="Also save the confusion matrix as a PNG heatmap"
    ),
):
    """
    Train an image classifier on a labeled image folder, evaluate it and save it.
    """
    try:
        config_data = load_config_file(config_file) if config_file else {}
        try:
            config = PipelineConfig.model_validate(config_data)
        except ValidationError as e:
            logger.critical(e, exc_info=True)
            raise typer.Exit(code=1)

        if image_dir is not None:
            config.dataset.image_root = image_dir
        if model_path is not None:
            config.output.model_path = model_path
        if confusion_matrix_plot is not None:
            config.output.confusion_matrix_plot = confusion_matrix_plot

        pipeline = ImageClassificationPipeline(
            config, metrics_callback=lambda metrics: typer.echo(str(metrics))
        )
        training_run = pipeline.run(echo=typer.echo)

        logger.info(
            f"Training completed successfully, model written to {training_run.model_path}"
        )
    except typer.Exit:
        raise
    except Exception as e:
        logger.critical(e, exc_info=True)
        raise typer.Exit(code=1)


@app.command()
def predict(
    model_path: str = typer.Argument(..., help="Path to a saved model archive"),
    images: List[str] = typer.Argument(..., help="Image files to classify"),
):
    """
    Classify image files with a saved model.
    """
    try:
        model = load_trained_model(model_path)
        extractor = PretrainedFeatureExtractor(model.schema.architecture)
        features = extract_file_features(extractor, images)

        probabilities = model.predict_proba(features)
        scores, keys = probabilities.max(dim=1)
        labels = model.key_map.to_labels(keys.tolist())

        for path, label, score in zip(images, labels, scores.tolist()):
            typer.echo(f"{path}\t{label}\t{score:.4f}")
    except Exception as e:
        logger.critical(e, exc_info=True)
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
