"""Utility modules for confpred."""

from confpred.utils.io import (
    load_config,
    save_config,
    merge_config,
    load_pickle,
    save_pickle,
    ensure_dir,
    load_csv_dataset,
)
from confpred.utils.seed import set_seed, get_rng, get_torch_generator
from confpred.utils.logging import get_logger, setup_logging, setup_logging_from_config

__all__ = [
    "load_config",
    "save_config",
    "merge_config",
    "load_pickle",
    "save_pickle",
    "ensure_dir",
    "load_csv_dataset",
    "set_seed",
    "get_rng",
    "get_torch_generator",
    "get_logger",
    "setup_logging",
    "setup_logging_from_config",
]
