"""Windowed LSTM regression from recent metric vectors to a 0-100 stress value."""
import copy
import enum
import io
import logging
import math
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence, Tuple

import numpy as np
import torch
import torch.nn as nn
from sklearn.metrics import mean_absolute_error
from torch.utils.data import DataLoader, TensorDataset

from .features import METRIC_FIELDS, inference_metrics, normalize_matrix
from .settings import (
    TRAIN_BATCH_SIZE,
    TRAIN_EPOCHS,
    TRAIN_LEARNING_RATE,
    WINDOW_SIZE,
)
from .store import Sample

logger = logging.getLogger(__name__)

HIDDEN_UNITS = 32


class ForecasterState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    TRAINED = "trained"
    UNTRAINED = "untrained"


class StressLSTM(nn.Module):
    """Single-layer LSTM over a window of metric vectors with a sigmoid head."""

    def __init__(self, n_features: int = len(METRIC_FIELDS), hidden_dim: int = HIDDEN_UNITS):
        super().__init__()
        self.lstm = nn.LSTM(input_size=n_features, hidden_size=hidden_dim, batch_first=True)
        self.head = nn.Linear(hidden_dim, 1)

    def forward(self, x):  # x: B, T, F
        _, (hidden, _) = self.lstm(x)
        return torch.sigmoid(self.head(hidden[-1]))


@dataclass
class TrainOutcome:
    """Result of one fit."""
    n_samples: int
    n_windows: int
    loss: float
    mae: Optional[float]
    status: str  # "trained" or "diverged"


def build_windows(
    samples: Sequence[Sample],
    window_size: int = WINDOW_SIZE,
) -> Optional[Tuple[np.ndarray, np.ndarray]]:
    """
    Build supervised sliding windows from chronologically ordered samples.

    X[i] = normalized inputs of samples[i : i + window_size]
    y[i] = samples[i + window_size].label

    Returns None if there are fewer than window_size + 2 samples.
    """
    if len(samples) < window_size + 2:
        return None

    normalized = normalize_matrix(s.inputs for s in samples)

    X = []
    y = []
    for i in range(len(samples) - window_size):
        X.append(normalized[i:i + window_size])
        y.append(samples[i + window_size].label)

    return np.stack(X).astype(np.float32), np.asarray(y, dtype=np.float32).reshape(-1, 1)


class SequenceForecaster:
    """Trainable stress forecaster with an explicit lifecycle state."""

    def __init__(
        self,
        window_size: int = WINDOW_SIZE,
        hidden_dim: int = HIDDEN_UNITS,
        epochs: int = TRAIN_EPOCHS,
        batch_size: int = TRAIN_BATCH_SIZE,
        learning_rate: float = TRAIN_LEARNING_RATE,
        seed: Optional[int] = None,
    ):
        self.window_size = window_size
        self.hidden_dim = hidden_dim
        self.epochs = epochs
        self.batch_size = batch_size
        self.learning_rate = learning_rate
        self.seed = seed
        self.net: Optional[StressLSTM] = None
        self.state = ForecasterState.UNINITIALIZED

    @property
    def is_trained(self) -> bool:
        return self.state == ForecasterState.TRAINED and self.net is not None

    def begin_loading(self) -> None:
        self.state = ForecasterState.LOADING

    def mark_untrained(self) -> None:
        self.state = ForecasterState.UNTRAINED

    def reset(self) -> None:
        self.net = None
        self.state = ForecasterState.UNINITIALIZED

    def to_bytes(self) -> bytes:
        """Serialize the current weights."""
        if self.net is None:
            raise RuntimeError("No trained network to serialize")
        buffer = io.BytesIO()
        torch.save(self.net.state_dict(), buffer)
        return buffer.getvalue()

    def load_bytes(self, blob: Optional[bytes]) -> bool:
        """
        Restore weights from a serialized artifact.

        Missing or unreadable artifacts return False and leave the
        forecaster without a network; they are never raised.
        """
        if not blob:
            return False
        try:
            state_dict = torch.load(io.BytesIO(blob), map_location="cpu", weights_only=True)
            net = StressLSTM(hidden_dim=self.hidden_dim)
            net.load_state_dict(state_dict)
        except Exception as e:
            logger.warning("Could not load stress model artifact: %s", e)
            return False
        net.eval()
        self.net = net
        self.state = ForecasterState.TRAINED
        return True

    def train(self, samples: Sequence[Sample]) -> Optional[TrainOutcome]:
        """
        Fit on chronologically ordered samples.

        Returns None when there is not enough data for a single window pair.
        Training continues from the current weights when a model exists.  If
        the loss becomes non-finite the fit is discarded and the previous
        weights stay in place (status "diverged").
        """
        windows = build_windows(samples, self.window_size)
        if windows is None:
            logger.info(
                "Skipping training: %d samples, need at least %d",
                len(samples), self.window_size + 2,
            )
            return None

        X, y = windows

        generator = None
        if self.seed is not None:
            torch.manual_seed(self.seed)
            generator = torch.Generator().manual_seed(self.seed)

        if self.net is not None:
            net = copy.deepcopy(self.net)
        else:
            net = StressLSTM(hidden_dim=self.hidden_dim)

        dataset = TensorDataset(torch.from_numpy(X), torch.from_numpy(y))
        # Shuffles the order of windows; each window keeps its internal order.
        loader = DataLoader(dataset, batch_size=self.batch_size, shuffle=True, generator=generator)
        optimizer = torch.optim.Adam(net.parameters(), lr=self.learning_rate)
        loss_fn = nn.MSELoss()

        logger.info("Training stress LSTM on %d sequences", len(dataset))
        net.train()
        epoch_loss = float("nan")
        for epoch in range(self.epochs):
            total = 0.0
            for xb, yb in loader:
                optimizer.zero_grad()
                loss = loss_fn(net(xb), yb)
                loss.backward()
                optimizer.step()
                total += loss.item() * len(xb)
            epoch_loss = total / len(dataset)
            if not math.isfinite(epoch_loss):
                break
        net.eval()

        if not math.isfinite(epoch_loss):
            logger.warning(
                "Stress LSTM diverged at epoch %d (loss=%s); keeping previous weights",
                epoch + 1, epoch_loss,
            )
            return TrainOutcome(
                n_samples=len(samples),
                n_windows=len(dataset),
                loss=epoch_loss,
                mae=None,
                status="diverged",
            )

        with torch.no_grad():
            predictions = net(torch.from_numpy(X)).numpy()
        mae = mean_absolute_error(y, predictions)

        self.net = net
        self.state = ForecasterState.TRAINED

        return TrainOutcome(
            n_samples=len(samples),
            n_windows=len(dataset),
            loss=float(epoch_loss),
            mae=float(mae),
            status="trained",
        )

    def predict(
        self,
        past_metrics: Sequence[Mapping[str, Optional[float]]],
        current: Mapping[str, Optional[float]],
    ) -> Optional[float]:
        """
        Predict stress (0-100) for the current result.

        past_metrics must be oldest first; the last window_size - 1 of them
        are combined with current into one window.  Returns None when the
        model is not trained or there is not enough history.
        """
        needed = self.window_size - 1
        if not self.is_trained or len(past_metrics) < needed:
            return None

        window = [inference_metrics(m) for m in list(past_metrics)[len(past_metrics) - needed:]]
        window.append(inference_metrics(current))

        x = torch.from_numpy(normalize_matrix(window)).unsqueeze(0)  # 1, T, F
        with torch.no_grad():
            out = self.net(x)
        return float(out[0, 0].item()) * 100.0
