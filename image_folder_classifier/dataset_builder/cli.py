from typing import Optional

import typer
from pydantic import ValidationError

from image_folder_classifier.lib import load_config_file, setup_logger

from .builder import DatasetBuilder
from .config import DatasetConfig

app = typer.Typer(help="Dataset Construction Component")

logger = setup_logger(__name__)


@app.command()
def build(
    image_dir: str = typer.Argument(..., help="Path to the root image directory"),
    output_dir: str = typer.Argument(..., help="Path to save the dataset manifest"),
    config_file: Optional[str] = typer.Option(
        None, "--config", help="Path to a dataset configuration file (YAML/JSON)"
    ),
    test_fraction: Optional[float] = typer.Option(
        None, help="Fraction of the images held out for testing"
    ),
):
    """
    Shuffle, key-encode and split an image folder and write the resulting manifest.
    """
    try:
        config_data = load_config_file(config_file) if config_file else {}
        # Accept either a bare dataset config or a full pipeline config
        config_data = config_data.get("dataset", config_data)
        config_data["image_root"] = image_dir
        if test_fraction is not None:
            config_data["test_fraction"] = test_fraction

        try:
            config = DatasetConfig.model_validate(config_data)
        except ValidationError as e:
            typer.echo(f"Configuration validation error: {e}")
            raise typer.Exit(code=1)

        builder = DatasetBuilder(config)
        dataset, _ = builder.build(load_images=False)
        builder.save(dataset, output_dir)

        typer.echo(f"Dataset manifest successfully saved to {output_dir}")
        typer.echo(f"  - Labels: {', '.join(dataset.label_mapping)}")
        typer.echo(f"  - Train set: {len(dataset.train)} images")
        typer.echo(f"  - Test set: {len(dataset.test)} images")

    except typer.Exit:
        raise
    except Exception as e:
        logger.critical(e, exc_info=True)
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
