from typing import Dict, Iterable, List, Sequence

from image_folder_classifier.lib import setup_logger

logger = setup_logger(__name__)


class LabelKeyMap:
    """
    Bijection between label strings and the dense integer keys ``0..k-1``.

    Keys are handed out in order of first occurrence, so fitting on a shuffled
    sequence of records gives a key order that depends on the shuffle seed.
    """

    def __init__(self, labels: Sequence[str] = ()):
        self._label_to_key: Dict[str, int] = {}
        self._key_to_label: List[str] = []
        for label in labels:
            self._add(label)

    @classmethod
    def fit(cls, labels: Iterable[str]) -> "LabelKeyMap":
        key_map = cls()
        for label in labels:
            key_map._add(label)
        logger.info(f"Mapped {len(key_map)} labels to keys: {key_map.mapping}")
        return key_map

    def _add(self, label: str) -> None:
        if label not in self._label_to_key:
            self._label_to_key[label] = len(self._key_to_label)
            self._key_to_label.append(label)

    def __len__(self) -> int:
        return len(self._key_to_label)

    def __contains__(self, label: object) -> bool:
        return label in self._label_to_key

    @property
    def labels(self) -> List[str]:
        """Labels ordered by key."""
        return list(self._key_to_label)

    @property
    def mapping(self) -> Dict[str, int]:
        return dict(self._label_to_key)

    def to_key(self, label: str) -> int:
        try:
            return self._label_to_key[label]
        except KeyError:
            raise KeyError(f"Label '{label}' was not seen when the key map was fit")

    def to_label(self, key: int) -> str:
        if not 0 <= key < len(self._key_to_label):
            raise KeyError(f"Key {key} is outside the key range 0..{len(self) - 1}")
        return self._key_to_label[key]

    def to_labels(self, keys: Iterable[int]) -> List[str]:
        return [self.to_label(int(key)) for key in keys]
