"""Seed management for reproducible calibration splits and training."""

import random
from typing import Optional

import numpy as np
import torch


_GLOBAL_SEED: Optional[int] = None


def set_seed(seed: int) -> None:
    """Seed python, numpy and torch in one call.

    Args:
        seed: Integer seed value.
    """
    global _GLOBAL_SEED
    _GLOBAL_SEED = seed

    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)

    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(seed)


def get_rng(seed: Optional[int] = None) -> np.random.Generator:
    """Numpy generator used for calibration splits.

    Falls back to the global seed set by ``set_seed`` when ``seed`` is None.
    """
    if seed is None:
        seed = _GLOBAL_SEED
    return np.random.default_rng(seed)


def get_torch_generator(seed: Optional[int] = None) -> torch.Generator:
    """Torch generator for weight init and batch shuffling.

    Args:
        seed: Optional seed. If None, uses global seed or torch's default seed.

    Returns:
        CPU ``torch.Generator``.
    """
    generator = torch.Generator()
    if seed is None:
        seed = _GLOBAL_SEED
    if seed is None:
        generator.seed()
    else:
        generator.manual_seed(int(seed))
    return generator
