#!/usr/bin/env python3
"""Train a conformal neural classifier and report coverage on held-out data.

Usage:
    # Synthetic data with the default config:
    python scripts/train.py

    # CSV data (numeric feature columns plus a label column):
    python scripts/train.py --data data/iris.csv --target species --coverage 0.9

    # Plain cross-entropy training, adaptive prediction sets:
    python scripts/train.py --no-conformal-training --method adaptive_inductive
"""

import argparse
from datetime import datetime
from pathlib import Path

import numpy as np
from sklearn.datasets import make_classification
from sklearn.model_selection import train_test_split

from confpred.conformal import available_methods, conformal_model
from confpred.eval import evaluate_conformal
from confpred.model import ConformalNNClassifier
from confpred.utils.io import ensure_dir, load_config, load_csv_dataset, merge_config, save_config
from confpred.utils.logging import get_logger, setup_logging_from_config
from confpred.utils.seed import set_seed


logger = get_logger(__name__)

DEFAULT_CONFIG = Path(__file__).resolve().parent.parent / "configs" / "default.yaml"


def load_data(data_cfg: dict, seed: int) -> tuple[np.ndarray, np.ndarray]:
    if data_cfg.get("path"):
        path = Path(data_cfg["path"])
        X, y = load_csv_dataset(path, data_cfg.get("target", "label"))
        logger.info(f"Loaded {len(y)} rows, {X.shape[1]} features from {path}")
        return X, y

    synth = data_cfg.get("synthetic", {})
    X, y = make_classification(
        n_samples=int(synth.get("n_samples", 2000)),
        n_features=int(synth.get("n_features", 10)),
        n_informative=int(synth.get("n_informative", 6)),
        n_classes=int(synth.get("n_classes", 4)),
        random_state=seed,
    )
    logger.info(f"Generated synthetic dataset: {X.shape[0]} samples, {X.shape[1]} features")
    return X.astype(np.float32), y


def main():
    parser = argparse.ArgumentParser(description="Train a conformal neural classifier")
    parser.add_argument("--config", "-c", type=str, default=str(DEFAULT_CONFIG),
                        help="Path to config file")
    parser.add_argument("--data", "-d", type=str, default=None,
                        help="CSV file with features and a label column")
    parser.add_argument("--target", type=str, default=None,
                        help="Name of the label column")
    parser.add_argument("--output", "-o", type=str, default=None,
                        help="Output directory (default: runs/TIMESTAMP)")
    parser.add_argument("--method", type=str, default=None, choices=available_methods(),
                        help="Conformal method used for the final calibration")
    parser.add_argument("--coverage", type=float, default=None,
                        help="Target coverage in (0, 1)")
    parser.add_argument("--epochs", type=int, default=None,
                        help="Override number of epochs")
    parser.add_argument("--batch-size", type=int, default=None,
                        help="Override batch size")
    parser.add_argument("--device", type=str, default=None,
                        help="Device: 'auto', 'cpu', 'cuda'")
    parser.add_argument("--seed", type=int, default=None,
                        help="Random seed")
    parser.add_argument("--no-conformal-training", action="store_true",
                        help="Train with cross-entropy only")

    args = parser.parse_args()

    config = merge_config(load_config(args.config), {
        "seed": args.seed,
        "data": {"path": args.data, "target": args.target},
        "training": {"epochs": args.epochs, "batch_size": args.batch_size, "device": args.device},
        "conformal": {
            "method": args.method,
            "coverage": args.coverage,
            "enabled": False if args.no_conformal_training else None,
        },
    })

    setup_logging_from_config(config)
    seed = int(config.get("seed", 42))
    set_seed(seed)

    output_dir = Path(args.output) if args.output else Path("runs") / datetime.now().strftime("%Y%m%d_%H%M%S")
    ensure_dir(output_dir)
    save_config(config, output_dir / "config.yaml")

    data_cfg = config.get("data", {})
    X, y = load_data(data_cfg, seed)
    X_train, X_test, y_train, y_test = train_test_split(
        X, y,
        test_size=float(data_cfg.get("test_fraction", 0.2)),
        random_state=seed,
        stratify=y,
    )

    conf_cfg = config.get("conformal", {})
    classifier = ConformalNNClassifier.from_config(config)
    conf_model = conformal_model(
        classifier,
        method=conf_cfg.get("method", "simple_inductive"),
        coverage=float(conf_cfg.get("coverage", 0.95)),
        train_ratio=float(conf_cfg.get("train_ratio", 0.5)),
        random_state=seed,
    )

    logger.info(f"Fitting {conf_model.method} conformal classifier on {len(y_train)} samples")
    conf_model.fit(X_train, y_train)

    metrics = evaluate_conformal(conf_model, X_test, y_test)
    accuracy = classifier.score(X_test, y_test)

    results = {"accuracy": float(accuracy), **metrics.to_dict(), "info": conf_model.get_info()}
    save_config(results, output_dir / "metrics.yaml")
    conf_model.save(output_dir / "conformal_model.pkl")

    logger.info(f"Test accuracy: {accuracy:.3f}")
    logger.info(
        f"Test coverage: {metrics.coverage:.3f} (target {metrics.target_coverage:.3f}), "
        f"average set size: {metrics.avg_set_size:.2f}"
    )
    logger.info(f"Results saved to {output_dir}")


if __name__ == "__main__":
    main()
