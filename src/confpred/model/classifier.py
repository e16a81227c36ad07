"""Neural-network classifier with conformal training.

``ConformalNNClassifier`` follows the scikit-learn estimator contract
(``fit``/``predict_proba``/``predict``/``classes_``), so it can be wrapped by
any conformal classifier in ``confpred.conformal``. Internally the network
is ``builder(n_features, n_classes)`` followed by a finaliser that turns
scores into probabilities; training is delegated to ``ConformalTrainer``.
"""

from pathlib import Path
from typing import Any, Callable, Optional

import numpy as np
import torch
import torch.nn as nn
from sklearn.base import BaseEstimator, ClassifierMixin
from sklearn.utils.validation import check_array, check_is_fitted, check_X_y

from confpred.model.builders import MLP, builder_from_config
from confpred.train.trainer import ConformalTrainer
from confpred.utils.logging import get_logger


logger = get_logger(__name__)


class ConformalNNClassifier(ClassifierMixin, BaseEstimator):
    """Probabilistic neural classifier trained with a set-size penalty.

    Args:
        builder: Callable ``(n_input, n_output) -> nn.Module``; defaults to
            ``MLP(hidden=(32, 32, 32))`` with ReLU.
        finaliser: Module mapping scores to probabilities; defaults to softmax.
        optimiser: 'adam', 'adamw' or 'sgd'.
        learning_rate: Optimiser step size.
        epochs: Number of passes over the training data.
        batch_size: Examples per batch.
        lambda_: Weight penalty strength.
        l1_ratio: Share of L1 in the penalty (0 = pure L2, 1 = pure L1).
        coverage: Coverage used for the per-batch calibration.
        train_ratio: Share of each batch used for calibration.
        temperature: Soft set-membership temperature.
        kappa: Set size that is not penalized.
        size_weight: Weight of the size loss.
        conformal_training: Disable to train with cross-entropy only.
        max_grad_norm: Gradient clipping norm (None disables clipping).
        random_state: Seed for weight init, shuffling and calibration splits.
        device: 'auto', 'cpu' or 'cuda'.
        verbose: Show a progress bar per epoch.

    Attributes:
        model_: Fitted network (builder output + finaliser).
        classes_: Class labels, in the column order of ``predict_proba``.
        history_: Per-epoch training history.
        scores_: Scores from the last on-the-fly calibration.
    """

    def __init__(
        self,
        builder: Optional[Callable[[int, int], nn.Module]] = None,
        finaliser: Optional[nn.Module] = None,
        optimiser: str = "adam",
        learning_rate: float = 0.001,
        epochs: int = 100,
        batch_size: int = 100,
        lambda_: float = 0.0,
        l1_ratio: float = 0.0,
        coverage: float = 0.95,
        train_ratio: float = 0.5,
        temperature: float = 0.1,
        kappa: float = 1.0,
        size_weight: float = 1.0,
        conformal_training: bool = True,
        max_grad_norm: Optional[float] = None,
        random_state: Optional[int] = None,
        device: str = "auto",
        verbose: bool = False,
    ):
        self.builder = builder
        self.finaliser = finaliser
        self.optimiser = optimiser
        self.learning_rate = learning_rate
        self.epochs = epochs
        self.batch_size = batch_size
        self.lambda_ = lambda_
        self.l1_ratio = l1_ratio
        self.coverage = coverage
        self.train_ratio = train_ratio
        self.temperature = temperature
        self.kappa = kappa
        self.size_weight = size_weight
        self.conformal_training = conformal_training
        self.max_grad_norm = max_grad_norm
        self.random_state = random_state
        self.device = device
        self.verbose = verbose

    @classmethod
    def from_config(cls, config: dict) -> "ConformalNNClassifier":
        """Create a classifier from a run config with model/training/conformal sections."""
        model_cfg = config.get("model", {})
        train_cfg = config.get("training", {})
        conf_cfg = config.get("conformal", {})

        return cls(
            builder=builder_from_config(model_cfg),
            optimiser=train_cfg.get("optimiser", "adam"),
            learning_rate=float(train_cfg.get("learning_rate", 0.001)),
            epochs=int(train_cfg.get("epochs", 100)),
            batch_size=int(train_cfg.get("batch_size", 100)),
            lambda_=float(train_cfg.get("lambda", 0.0)),
            l1_ratio=float(train_cfg.get("l1_ratio", 0.0)),
            coverage=float(conf_cfg.get("coverage", 0.95)),
            train_ratio=float(conf_cfg.get("train_ratio", 0.5)),
            temperature=float(conf_cfg.get("temperature", 0.1)),
            kappa=float(conf_cfg.get("kappa", 1.0)),
            size_weight=float(conf_cfg.get("size_weight", 1.0)),
            conformal_training=bool(conf_cfg.get("enabled", True)),
            max_grad_norm=train_cfg.get("max_grad_norm"),
            random_state=config.get("seed"),
            device=train_cfg.get("device", "auto"),
            verbose=bool(train_cfg.get("show_progress", False)),
        )

    def training_config(self) -> dict[str, Any]:
        """Trainer config derived from the estimator's hyperparameters."""
        return {
            "training": {
                "epochs": self.epochs,
                "batch_size": self.batch_size,
                "learning_rate": self.learning_rate,
                "optimiser": self.optimiser,
                "lambda": self.lambda_,
                "l1_ratio": self.l1_ratio,
                "max_grad_norm": self.max_grad_norm,
                "show_progress": self.verbose,
            },
            "conformal": {
                "enabled": self.conformal_training,
                "coverage": self.coverage,
                "train_ratio": self.train_ratio,
                "temperature": self.temperature,
                "kappa": self.kappa,
                "size_weight": self.size_weight,
            },
        }

    def shape(self, X: np.ndarray, y: np.ndarray) -> tuple[int, int]:
        """(n_input, n_output): number of features and number of classes."""
        return X.shape[1], len(np.unique(y))

    def build(self, shape: tuple[int, int]) -> nn.Module:
        """End-to-end network: builder body followed by the finaliser."""
        builder = self.builder if self.builder is not None else MLP()
        finaliser = self.finaliser if self.finaliser is not None else nn.Softmax(dim=-1)
        return nn.Sequential(builder(*shape), finaliser)

    def fit(
        self,
        X: Any,
        y: Any,
        X_val: Optional[Any] = None,
        y_val: Optional[Any] = None,
        output_dir: Optional[Path] = None,
    ) -> "ConformalNNClassifier":
        """Fit the network.

        Args:
            X: Features, shape (n_samples, n_features).
            y: Class labels of any hashable type.
            X_val: Optional validation features (enables early stopping).
            y_val: Optional validation labels.
            output_dir: Optional directory for training checkpoints.

        Returns:
            self
        """
        X, y = check_X_y(X, y, dtype=np.float32)
        self.classes_, y_idx = np.unique(y, return_inverse=True)
        if len(self.classes_) < 2:
            raise ValueError(f"Need at least 2 classes to fit a classifier, got {len(self.classes_)}")
        self.n_features_in_ = X.shape[1]

        val_idx = None
        if X_val is not None and y_val is not None:
            X_val = check_array(X_val, dtype=np.float32)
            val_idx = self._encode(y_val)

        with torch.random.fork_rng(devices=[]):
            if self.random_state is not None:
                torch.manual_seed(self.random_state)
            chain = self.build(self.shape(X, y))

        trainer = ConformalTrainer(
            chain,
            self.training_config(),
            output_dir=output_dir,
            device=self.device,
            seed=self.random_state,
        )
        self.history_ = trainer.train(X, y_idx, X_val=X_val, y_val=val_idx)

        self.model_ = trainer.model.eval()
        self.device_ = trainer.device
        self.scores_ = trainer.scores

        logger.info(
            f"Fitted ConformalNNClassifier on {len(y)} samples, "
            f"{self.n_features_in_} features, {len(self.classes_)} classes"
        )
        return self

    def _encode(self, y: Any) -> np.ndarray:
        y = np.asarray(y).ravel()
        idx = np.searchsorted(self.classes_, y)
        idx = np.clip(idx, 0, len(self.classes_) - 1)
        if not np.all(self.classes_[idx] == y):
            unknown = sorted(set(y.tolist()) - set(self.classes_.tolist()))
            raise ValueError(f"Unknown labels {unknown}; known classes: {self.classes_.tolist()}")
        return idx

    def predict_proba(self, X: Any) -> np.ndarray:
        """Class probabilities, shape (n_samples, n_classes), rows summing to 1."""
        check_is_fitted(self, "model_")
        X = check_array(X, dtype=np.float32)
        if X.shape[1] != self.n_features_in_:
            raise ValueError(
                f"X has {X.shape[1]} features, but ConformalNNClassifier was fitted with "
                f"{self.n_features_in_}"
            )

        self.model_.eval()
        with torch.no_grad():
            probs = self.model_(torch.as_tensor(X, device=self.device_)).cpu().numpy()

        probs = probs.astype(np.float64)
        return probs / probs.sum(axis=1, keepdims=True)

    def predict(self, X: Any) -> np.ndarray:
        """Most likely class label per row."""
        return self.classes_[np.argmax(self.predict_proba(X), axis=1)]
