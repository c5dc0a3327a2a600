from typing import Sequence, Tuple

import torch
from torch.utils.data import Dataset as TorchDataset


class FeatureDataset(TorchDataset[Tuple[torch.Tensor, torch.Tensor]]):
    """PyTorch Dataset over pre-extracted bottleneck features and label keys."""

    def __init__(self, features: torch.Tensor, label_keys: Sequence[int]):
        if features.dim() != 2:
            raise ValueError(
                f"Features must be a 2-D (items, feature_dim) tensor, got shape {tuple(features.shape)}"
            )
        if features.shape[0] != len(label_keys):
            raise ValueError(
                f"Got {features.shape[0]} feature rows for {len(label_keys)} labels"
            )
        self.features = features.float()
        # CrossEntropyLoss expects long
        self.labels = torch.tensor(list(label_keys), dtype=torch.long)

    def __len__(self) -> int:
        return self.features.shape[0]

    def __getitem__(self, idx: int) -> Tuple[torch.Tensor, torch.Tensor]:
        return self.features[idx], self.labels[idx]

    @property
    def feature_dim(self) -> int:
        return self.features.shape[1]
