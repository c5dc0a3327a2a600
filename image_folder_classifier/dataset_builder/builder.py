import json
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, TypeVar, Union

from sklearn.model_selection import train_test_split
from sklearn.utils import shuffle as sklearn_shuffle
from tqdm import tqdm

from image_folder_classifier.lib import (
    setup_logger,
    LabeledImage,
    EncodedImage,
    DatasetSplit,
    Dataset,
)

from .config import DatasetConfig
from .keys import LabelKeyMap

logger = setup_logger(__name__)

T = TypeVar("T")


def load_labeled_images_from_path(image_root: Union[str, Path]) -> List[LabeledImage]:
    """
    Pair every file inside an immediate subdirectory of ``image_root`` with the
    name of that subdirectory.

    Files directly under the root and anything nested deeper than one level
    are ignored. No extension filtering is done: whether a file is an image is
    decided when it is decoded.

    Raises:
        FileNotFoundError: ``image_root`` does not exist.
        NotADirectoryError: ``image_root`` is not a directory.
        ValueError: no subdirectory contains any file.
    """
    image_root = Path(image_root)
    if not image_root.exists():
        raise FileNotFoundError(f"Image directory {image_root} does not exist")
    if not image_root.is_dir():
        raise NotADirectoryError(f"{image_root} is not a directory")

    items: List[LabeledImage] = []
    label_dirs = sorted(path for path in image_root.iterdir() if path.is_dir())
    for label_dir in label_dirs:
        files = sorted(path for path in label_dir.iterdir() if path.is_file())
        logger.debug(f"Found {len(files)} files for label '{label_dir.name}'")
        items.extend(
            LabeledImage(image_path=str(path.resolve()), label=label_dir.name)
            for path in files
        )

    if not items:
        raise ValueError(
            f"No labeled images found in {image_root}: expected one subdirectory per label"
        )

    num_labels = len({item.label for item in items})
    logger.info(f"Loaded {len(items)} images for {num_labels} labels from {image_root}")
    return items


class DatasetBuilder:
    """Turns an image folder into a shuffled, key-encoded train/test dataset."""

    def __init__(self, config: DatasetConfig):
        self.config = config

    def load(self, image_root: Optional[Union[str, Path]] = None) -> List[LabeledImage]:
        return load_labeled_images_from_path(image_root or self.config.image_root)

    def shuffle(self, items: Sequence[T]) -> List[T]:
        """Shuffle deterministically with the configured seed."""
        if not items:
            return []
        return list(sklearn_shuffle(list(items), random_state=self.config.shuffle_seed))

    def encode_labels(
        self, items: Sequence[LabeledImage]
    ) -> Tuple[List[EncodedImage], LabelKeyMap]:
        """Fit a key map on the labels and attach each record's key."""
        key_map = LabelKeyMap.fit(item.label for item in items)
        encoded = [
            EncodedImage(
                image_path=item.image_path,
                label=item.label,
                label_key=key_map.to_key(item.label),
            )
            for item in items
        ]
        return encoded, key_map

    def load_image_bytes(self, items: Sequence[EncodedImage]) -> List[EncodedImage]:
        """Read the raw bytes of every image file."""
        loaded: List[EncodedImage] = []
        for item in tqdm(items, desc="Loading images"):
            data = Path(item.image_path).read_bytes()
            loaded.append(item.model_copy(update={"image": data}))
        logger.info(f"Read {len(loaded)} image files")
        return loaded

    def split(
        self, items: Sequence[EncodedImage]
    ) -> Tuple[List[EncodedImage], List[EncodedImage]]:
        """
        Split the records into train and test sets.

        The test set holds ``ceil(len(items) * test_fraction)`` records; the two
        sets are disjoint and together contain every record. Rounding up can
        differ from rounding to nearest: 12 records at 0.2 give a test set of
        3, not 2.

        Returns:
            Tuple of (train_items, test_items)
        """
        stratify_labels = (
            [item.label for item in items] if self.config.stratify else None
        )
        idx_train, idx_test = train_test_split(
            range(len(items)),
            test_size=self.config.test_fraction,
            random_state=self.config.split_seed,
            stratify=stratify_labels,
        )

        train_items = [items[i] for i in idx_train]
        test_items = [items[i] for i in idx_test]
        logger.info(
            f"Split {len(items)} images into {len(train_items)} train and {len(test_items)} test"
        )
        return train_items, test_items

    def build(
        self,
        image_root: Optional[Union[str, Path]] = None,
        load_images: bool = True,
    ) -> Tuple[Dataset, LabelKeyMap]:
        """
        Load, shuffle, key-encode, read and split the image folder.

        Args:
            image_root: Overrides ``config.image_root``
            load_images: Read the image bytes; disable to only build the manifest

        Returns:
            The dataset and the label key map fitted on it
        """
        logger.info("Starting to build the dataset.")

        items = self.shuffle(self.load(image_root))
        encoded, key_map = self.encode_labels(items)
        if load_images:
            encoded = self.load_image_bytes(encoded)

        train_items, test_items = self.split(encoded)
        dataset = Dataset(
            train=DatasetSplit(items=train_items),
            test=DatasetSplit(items=test_items),
            label_mapping=key_map.mapping,
        )

        logger.info("Dataset built successfully.")
        return dataset, key_map

    def save(self, dataset: Dataset, output_dir: Union[str, Path]) -> None:
        """
        Save the dataset manifest to disk in JSONL format.

        Writes ``train.jsonl``, ``test.jsonl``, ``label_mapping.json`` and
        ``summary.json``. Image bytes are not written.
        """
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        with open(output_dir / "summary.json", "w") as f:
            json.dump(dataset.summary(), f, indent=2)

        for split_name in ["train", "test"]:
            split_data: DatasetSplit = getattr(dataset, split_name)
            split_path = output_dir / f"{split_name}.jsonl"
            with open(split_path, "w") as f:
                for item in split_data.items:
                    f.write(json.dumps(item.model_dump()) + "\n")

        with open(output_dir / "label_mapping.json", "w") as f:
            json.dump(dataset.label_mapping, f, indent=2)

        logger.info(f"Dataset manifest saved to {output_dir}")
