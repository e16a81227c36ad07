"""I/O helpers for run configs, CSV datasets and fitted conformal models."""

import pickle
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd
import yaml


def load_config(config_path: str | Path) -> dict[str, Any]:
    """Load a YAML run configuration.

    Args:
        config_path: Path to YAML configuration file.

    Returns:
        Configuration dictionary (empty dict for an empty file).
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f)

    return config or {}


def save_config(config: dict[str, Any], config_path: str | Path) -> None:
    """Write a configuration dict back to YAML, keeping key order."""
    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, "w", encoding="utf-8") as f:
        yaml.dump(config, f, default_flow_style=False, sort_keys=False)


def merge_config(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``overrides`` into a copy of ``base``.

    Nested sections are merged key by key; ``None`` overrides are ignored so
    unset CLI flags never clobber file values.
    """
    merged = dict(base)
    for key, value in overrides.items():
        if value is None:
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_pickle(path: str | Path) -> Any:
    """Load a pickled object, raising FileNotFoundError if it is missing."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    with open(path, "rb") as f:
        return pickle.load(f)


def save_pickle(obj: Any, path: str | Path) -> None:
    """Pickle ``obj`` to ``path``, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "wb") as f:
        pickle.dump(obj, f)


def ensure_dir(path: str | Path) -> Path:
    """Ensure directory exists, creating if necessary.

    Args:
        path: Directory path.

    Returns:
        Path object for directory.
    """
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def load_csv_dataset(path: str | Path, target: str) -> tuple[np.ndarray, np.ndarray]:
    """Load numeric feature columns and a label column from a CSV file.

    Args:
        path: CSV file with a header row.
        target: Name of the label column; every other column is a feature.

    Returns:
        X: float32 features, shape (n_rows, n_features).
        y: Labels, shape (n_rows,).
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Data file not found: {path}")

    df = pd.read_csv(path)
    if target not in df.columns:
        raise ValueError(f"Target column '{target}' not found in {path}")

    X = df.drop(columns=[target]).to_numpy(np.float32)
    y = df[target].to_numpy()
    return X, y
