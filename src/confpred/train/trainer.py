"""Conformal training loop for probabilistic neural classifiers.

Each batch is split in two. The calibration part is scored with the current
network (no gradients) to get a threshold q̂; the prediction part feeds a
smooth set-size loss at that q̂, which is added to the cross-entropy of the
full batch. Key features:
- On-the-fly calibration per batch
- Elastic-net weight penalty spread across batches
- Gradient clipping
- Optional validation with early stopping on validation loss
- Checkpoint saving with resume capability
"""

import time
from pathlib import Path
from typing import Any, Optional

import numpy as np
import torch
import torch.nn as nn
from sklearn.metrics import accuracy_score
from torch.optim import SGD, Adam, AdamW
from torch.utils.data import DataLoader, TensorDataset
from tqdm import tqdm

from confpred.conformal.conformal_predictor import conformal_quantile, min_calibration_size
from confpred.conformal.nonconformity import HingeScore
from confpred.train.losses import ConformalTrainingLoss
from confpred.utils.io import ensure_dir
from confpred.utils.logging import get_logger
from confpred.utils.seed import get_torch_generator


logger = get_logger(__name__)

# Minimum examples on each side of an on-the-fly calibration split
MIN_SPLIT_SIZE = 2


class EarlyStopping:
    """Early stopping handler."""

    def __init__(
        self,
        patience: int = 10,
        min_delta: float = 0.0,
        mode: str = "min",
    ):
        """Initialize early stopping.

        Args:
            patience: Number of epochs without improvement before stopping.
            min_delta: Minimum change to count as improvement.
            mode: 'max' for metrics where higher is better, 'min' otherwise.
        """
        self.patience = patience
        self.min_delta = min_delta
        self.mode = mode

        self.best_score = float("-inf") if mode == "max" else float("inf")
        self.counter = 0
        self.should_stop = False

    def __call__(self, score: float) -> bool:
        """Record ``score`` and return True once patience is exhausted."""
        if np.isnan(score):
            improved = False
        elif self.mode == "max":
            improved = score > self.best_score + self.min_delta
        else:
            improved = score < self.best_score - self.min_delta

        if improved:
            self.best_score = score
            self.counter = 0
        else:
            self.counter += 1
            if self.counter >= self.patience:
                self.should_stop = True

        return self.should_stop


def _create_optimizer(name: str, parameters, lr: float, weight_decay: float):
    name = name.lower()
    if name == "adam":
        return Adam(parameters, lr=lr, weight_decay=weight_decay)
    elif name == "adamw":
        return AdamW(parameters, lr=lr, weight_decay=weight_decay)
    elif name == "sgd":
        return SGD(parameters, lr=lr, momentum=0.9, weight_decay=weight_decay)
    raise ValueError(f"Unknown optimiser: {name}. Available: ['adam', 'adamw', 'sgd']")


class ConformalTrainer:
    """Trainer that jointly optimizes predictive loss and set size.

    The wrapped module must map features (batch, n_features) to class
    probabilities (batch, n_classes).
    """

    def __init__(
        self,
        model: nn.Module,
        config: dict,
        output_dir: Optional[Path] = None,
        device: str = "auto",
        seed: Optional[int] = None,
    ):
        """Initialize trainer.

        Args:
            model: Network ending in a probability finaliser (e.g. softmax).
            config: Dict with 'training' and 'conformal' sections.
            output_dir: Directory for checkpoints; None disables them.
            device: Device to use ('auto', 'cpu', 'cuda').
            seed: Seed for batch shuffling and calibration splits.
        """
        self.config = config
        self.output_dir = ensure_dir(output_dir) if output_dir is not None else None

        if device == "auto":
            self.device = torch.device("cuda" if torch.cuda.is_available() else "cpu")
        else:
            self.device = torch.device(device)

        self.model = model.to(self.device)

        # Training settings
        train_cfg = config.get("training", {})
        self.epochs = int(train_cfg.get("epochs", 100))
        self.batch_size = int(train_cfg.get("batch_size", 100))
        self.lr = float(train_cfg.get("learning_rate", 0.001))
        self.weight_decay = float(train_cfg.get("weight_decay", 0.0))
        self.max_grad_norm = train_cfg.get("max_grad_norm")
        self.show_progress = bool(train_cfg.get("show_progress", False))
        patience = int(train_cfg.get("early_stopping_patience", 10))

        if self.epochs < 1:
            raise ValueError(f"epochs must be >= 1, got {self.epochs}")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")

        # Conformal settings
        conf_cfg = config.get("conformal", {})
        self.conformal_training = bool(conf_cfg.get("enabled", True))
        self.coverage = float(conf_cfg.get("coverage", 0.95))
        self.train_ratio = float(conf_cfg.get("train_ratio", 0.5))
        if not 0 < self.coverage < 1:
            raise ValueError(f"coverage must be in (0,1), got {self.coverage}")
        if not 0 < self.train_ratio < 1:
            raise ValueError(f"train_ratio must be in (0,1), got {self.train_ratio}")

        self.score_fn = HingeScore()
        self.loss_fn = ConformalTrainingLoss(
            size_weight=float(conf_cfg.get("size_weight", 1.0)) if self.conformal_training else 0.0,
            temperature=float(conf_cfg.get("temperature", 0.1)),
            kappa=float(conf_cfg.get("kappa", 1.0)),
            lambda_=float(train_cfg.get("lambda", 0.0)),
            l1_ratio=float(train_cfg.get("l1_ratio", 0.0)),
        )

        self.optimizer = _create_optimizer(
            train_cfg.get("optimiser", "adam"),
            self.model.parameters(),
            lr=self.lr,
            weight_decay=self.weight_decay,
        )

        self.generator = get_torch_generator(seed)
        self.early_stopping = EarlyStopping(patience=patience, mode="min")

        # Latest on-the-fly calibration
        self.scores: Optional[dict[str, np.ndarray]] = None
        self.q_hat: Optional[float] = None

        self.history = {
            "train_loss": [],
            "ce_loss": [],
            "size_loss": [],
            "val_loss": [],
            "val_accuracy": [],
            "val_set_size": [],
            "epoch_time": [],
        }
        self.best_model_state = None
        self.best_epoch = 0

    def train(
        self,
        X: Any,
        y: Any,
        X_val: Optional[Any] = None,
        y_val: Optional[Any] = None,
        resume_from: Optional[Path] = None,
    ) -> dict:
        """Train the model.

        Args:
            X: Training features, shape (n_samples, n_features).
            y: Encoded training labels in [0, n_classes).
            X_val: Optional validation features.
            y_val: Optional encoded validation labels.
            resume_from: Optional checkpoint path to resume from.

        Returns:
            Training history dict.
        """
        X_t = torch.as_tensor(np.asarray(X, dtype=np.float32))
        y_t = torch.as_tensor(np.asarray(y), dtype=torch.long)
        if len(X_t) != len(y_t):
            raise ValueError(f"Length mismatch: X ({len(X_t)}) vs y ({len(y_t)})")

        loader = DataLoader(
            TensorDataset(X_t, y_t),
            batch_size=self.batch_size,
            shuffle=True,
            generator=self.generator,
        )

        has_val = X_val is not None and y_val is not None
        if has_val:
            X_val_t = torch.as_tensor(np.asarray(X_val, dtype=np.float32))
            y_val_t = torch.as_tensor(np.asarray(y_val), dtype=torch.long)

        start_epoch = 0
        if resume_from is not None and Path(resume_from).exists():
            start_epoch = self.load_checkpoint(Path(resume_from))
            logger.info(f"Resumed from epoch {start_epoch}")

        n_cal = int(round(self.train_ratio * min(self.batch_size, len(y_t))))
        if self.conformal_training and n_cal < min_calibration_size(self.coverage):
            logger.warning(
                f"Per-batch calibration split of {n_cal} examples is too small for "
                f"coverage {self.coverage:.3f}; q_hat will be the batch maximum score"
            )

        logger.info(
            f"Training on {len(y_t)} samples for {self.epochs} epochs "
            f"(batch size {self.batch_size}, conformal training: {self.conformal_training})"
        )
        logger.debug(f"Device: {self.device}")

        for epoch in range(start_epoch, self.epochs):
            epoch_start = time.time()

            train_stats = self._train_epoch(loader, epoch)

            self.history["train_loss"].append(train_stats["loss"])
            self.history["ce_loss"].append(train_stats["ce_loss"])
            self.history["size_loss"].append(train_stats["size_loss"])

            msg = (
                f"Epoch {epoch + 1}/{self.epochs} | "
                f"Loss: {train_stats['loss']:.4f} | "
                f"Size loss: {train_stats['size_loss']:.4f}"
            )

            if has_val:
                val_metrics = self._validate(X_val_t, y_val_t)
                self.history["val_loss"].append(val_metrics["loss"])
                self.history["val_accuracy"].append(val_metrics["accuracy"])
                self.history["val_set_size"].append(val_metrics["set_size"])
                msg += (
                    f" | Val loss: {val_metrics['loss']:.4f}"
                    f" | Val acc: {val_metrics['accuracy']:.3f}"
                )

            epoch_time = time.time() - epoch_start
            self.history["epoch_time"].append(epoch_time)
            logger.debug(f"{msg} | Time: {epoch_time:.2f}s")

            if has_val:
                if self.early_stopping(val_metrics["loss"]):
                    logger.info(f"Early stopping at epoch {epoch + 1}")
                    break

                if val_metrics["loss"] <= self.early_stopping.best_score:
                    self.best_model_state = {
                        k: v.detach().cpu().clone() for k, v in self.model.state_dict().items()
                    }
                    self.best_epoch = epoch + 1
                    self._save_checkpoint(epoch + 1, is_best=True)

        if self.best_model_state is not None:
            self.model.load_state_dict(self.best_model_state)
            logger.info(f"Loaded best model from epoch {self.best_epoch}")

        self._save_checkpoint(len(self.history["train_loss"]), is_best=False)

        total_time = sum(self.history["epoch_time"])
        final_loss = self.history["train_loss"][-1] if self.history["train_loss"] else float("nan")
        logger.info(f"Training complete in {total_time:.1f}s, final loss {final_loss:.4f}")

        return self.history

    def _calibrate_batch(self, x: torch.Tensor, y: torch.Tensor) -> Optional[tuple[torch.Tensor, float]]:
        """Split a batch and calibrate on its first part.

        Returns:
            (prediction indices, q_hat), or None if the batch is too small.
        """
        n = len(y)
        n_cal = int(round(self.train_ratio * n))
        if n_cal < MIN_SPLIT_SIZE or n - n_cal < MIN_SPLIT_SIZE:
            return None

        perm = torch.randperm(n, generator=self.generator).to(x.device)
        cal_idx, pred_idx = perm[:n_cal], perm[n_cal:]

        # Calibrate without dropout noise, then return to training mode
        was_training = self.model.training
        self.model.eval()
        with torch.no_grad():
            cal_probs = self.model(x[cal_idx]).float().cpu().numpy()
        self.model.train(was_training)
        y_cal = y[cal_idx].cpu().numpy()

        cal_scores = self.score_fn.compute(cal_probs, y_cal)
        self.scores = {
            "calibration": cal_scores,
            "all": self.score_fn.compute_all(cal_probs),
        }
        self.q_hat = conformal_quantile(cal_scores, self.coverage, warn=False)

        return pred_idx, self.q_hat

    def _train_epoch(self, loader: DataLoader, epoch: int) -> dict[str, float]:
        """Train for one epoch.

        Args:
            loader: Training data loader.
            epoch: Current epoch number.

        Returns:
            Average total, cross-entropy and size losses.
        """
        self.model.train()
        n_batches = len(loader)
        totals = {"loss": 0.0, "ce_loss": 0.0, "size_loss": 0.0}

        pbar = tqdm(
            loader,
            desc=f"Epoch {epoch + 1}",
            leave=False,
            ncols=100,
            disable=not self.show_progress,
        )

        for x, y in pbar:
            x = x.to(self.device, non_blocking=True)
            y = y.to(self.device, non_blocking=True)

            pred_probs, q_hat = None, None
            if self.conformal_training:
                split = self._calibrate_batch(x, y)
                if split is not None:
                    pred_idx, q_hat = split

            probs = self.model(x)
            if q_hat is not None:
                pred_probs = probs[pred_idx]

            loss, loss_dict = self.loss_fn(
                probs,
                y,
                parameters=self.model.parameters(),
                n_batches=n_batches,
                pred_probs=pred_probs,
                q_hat=q_hat,
            )

            self.optimizer.zero_grad()
            loss.backward()
            if self.max_grad_norm:
                torch.nn.utils.clip_grad_norm_(self.model.parameters(), float(self.max_grad_norm))
            self.optimizer.step()

            totals["loss"] += loss.item()
            totals["ce_loss"] += loss_dict["ce_loss"].item()
            totals["size_loss"] += loss_dict["size_loss"].item()

            pbar.set_postfix({"loss": f"{loss.item():.4f}"})

        return {k: v / max(n_batches, 1) for k, v in totals.items()}

    @torch.no_grad()
    def _validate(self, X_val: torch.Tensor, y_val: torch.Tensor) -> dict[str, float]:
        """Validation loss, accuracy and hard set size at the latest q_hat."""
        self.model.eval()

        probs = self.model(X_val.to(self.device)).float()
        targets = y_val.to(self.device)

        loss = torch.nn.functional.nll_loss(torch.log(probs.clamp_min(1e-7)), targets).item()
        probs_np = probs.cpu().numpy()
        accuracy = accuracy_score(y_val.numpy(), probs_np.argmax(axis=1))

        set_size = float("nan")
        if self.q_hat is not None:
            set_size = float(self.score_fn.region_mask(probs_np, self.q_hat).sum(axis=1).mean())

        return {"loss": loss, "accuracy": accuracy, "set_size": set_size}

    def _save_checkpoint(self, epoch: int, is_best: bool = False) -> None:
        """Save model checkpoint (no-op without an output directory).

        Args:
            epoch: Current epoch.
            is_best: Whether this is the best model so far.
        """
        if self.output_dir is None:
            return

        checkpoint = {
            "epoch": epoch,
            "model_state_dict": self.model.state_dict(),
            "optimizer_state_dict": self.optimizer.state_dict(),
            "history": self.history,
            "config": self.config,
            "best_score": self.early_stopping.best_score,
            "q_hat": self.q_hat,
        }

        torch.save(checkpoint, self.output_dir / "checkpoint.pt")
        if is_best:
            torch.save(checkpoint, self.output_dir / "best_model.pt")

    def load_checkpoint(self, path: Path) -> int:
        """Load model from checkpoint.

        Args:
            path: Path to checkpoint file.

        Returns:
            Epoch number to resume from.
        """
        if not Path(path).exists():
            raise FileNotFoundError(f"Checkpoint not found: {path}")

        checkpoint = torch.load(path, map_location=self.device, weights_only=False)

        self.model.load_state_dict(checkpoint["model_state_dict"])
        self.optimizer.load_state_dict(checkpoint["optimizer_state_dict"])
        self.history = checkpoint.get("history", self.history)
        self.early_stopping.best_score = checkpoint.get("best_score", self.early_stopping.best_score)
        self.q_hat = checkpoint.get("q_hat")

        logger.info(f"Loaded checkpoint from epoch {checkpoint['epoch']}")

        return checkpoint["epoch"]
