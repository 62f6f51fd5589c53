import numpy as np
from typing import List, NamedTuple, Sequence
from sklearn.model_selection import RepeatedStratifiedKFold


class Split(NamedTuple):
    """One train/test partition of the cohort."""
    split_id: int          # 1..k*repeats, repeat-major order
    name: str              # caret-style 'Fold1.Rep1'
    repeat: int
    fold: int
    train_idx: np.ndarray
    test_idx: np.ndarray


def create_multi_folds(
    labels: Sequence,
    k: int = 5,
    repeats: int = 5,
    seed: int = 123
) -> List[Split]:
    """
    Repeated stratified k-fold partitions of the row indices.

    Stratification is on ``labels`` (the status codes). Only the training
    indices come from the splitter; test indices are always the complement,
    so every split covers all rows exactly once. A status group with fewer
    than k subjects is allowed: scikit-learn warns and some test folds get
    none of it.

    Args:
        labels: Per-row stratification labels
        k: Folds per repeat
        repeats: Number of repeats
        seed: Random seed; identical inputs give identical splits

    Returns:
        List of k * repeats Split tuples
    """
    labels = np.asarray(labels)
    if k < 2:
        raise ValueError(f"k must be at least 2, got {k}")
    if repeats < 1:
        raise ValueError(f"repeats must be at least 1, got {repeats}")

    all_indices = np.arange(len(labels))
    cv = RepeatedStratifiedKFold(n_splits=k, n_repeats=repeats, random_state=seed)

    splits = []
    for i, (train_idx, _) in enumerate(cv.split(np.zeros((len(labels), 1)), labels)):
        repeat, fold = divmod(i, k)
        train_idx = np.sort(train_idx)
        test_idx = np.setdiff1d(all_indices, train_idx)
        splits.append(Split(
            split_id=i + 1,
            name=f"Fold{fold + 1}.Rep{repeat + 1}",
            repeat=repeat + 1,
            fold=fold + 1,
            train_idx=train_idx,
            test_idx=test_idx,
        ))
    return splits


def check_partition(split: Split, n: int) -> None:
    """Raise ValueError unless train and test are disjoint and cover 0..n-1."""
    train = set(split.train_idx.tolist())
    test = set(split.test_idx.tolist())
    if train & test:
        raise ValueError(f"{split.name}: train and test overlap")
    if train | test != set(range(n)):
        raise ValueError(f"{split.name}: rows missing from the partition")


def global_max_time(time: Sequence[float], splits: List[Split]) -> float:
    """Largest observed time over all test partitions."""
    time = np.asarray(time, dtype=float)
    return float(max(time[s.test_idx].max() for s in splits))
