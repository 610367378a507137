"""Training orchestration for the stress forecaster: when to (re)train, cold-start seeding, persistence."""
import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

import numpy as np
from sqlalchemy.orm import Session

from .forecaster import SequenceForecaster, TrainOutcome
from .models import ModelArtifact
from .seeding import generate_synthetic_samples
from .settings import MODEL_KEY, SYNTHETIC_SEED_SIZE
from .store import Sample, SampleStore, StoreCorruptionError

logger = logging.getLogger(__name__)

MESSAGE_SYNTHETIC = "trained on synthetic data"
MESSAGE_HISTORY = "trained on history"
MESSAGE_DIVERGED = "training diverged; previous model kept"
MESSAGE_INSUFFICIENT = "not enough data to train"

_locks: Dict[str, threading.RLock] = {}
_locks_guard = threading.Lock()


def training_lock(model_key: str) -> threading.RLock:
    """One lock per model key so overlapping training runs serialize."""
    with _locks_guard:
        lock = _locks.get(model_key)
        if lock is None:
            lock = _locks[model_key] = threading.RLock()
        return lock


def get_artifact(db: Session, model_key: str = MODEL_KEY) -> Optional[ModelArtifact]:
    return db.query(ModelArtifact).filter(ModelArtifact.model_key == model_key).first()


def save_artifact(
    db: Session,
    forecaster: SequenceForecaster,
    outcome: TrainOutcome,
    source: str,
    message: str,
    model_key: str = MODEL_KEY,
) -> ModelArtifact:
    """
    Upsert the single artifact row for model_key.

    Weights are only replaced when the fit succeeded; a diverged fit just
    records its status next to the last good weights.
    """
    now_utc = datetime.now(timezone.utc).isoformat()
    artifact = get_artifact(db, model_key)

    if artifact is None:
        artifact = ModelArtifact(model_key=model_key)
        db.add(artifact)

    artifact.trained_ts_utc = now_utc
    artifact.n_samples = outcome.n_samples
    artifact.source = source
    artifact.status = outcome.status
    artifact.message = message
    artifact.loss = outcome.loss if outcome.status == "trained" else None
    if outcome.status == "trained":
        artifact.weights = forecaster.to_bytes()
        artifact.mae = outcome.mae

    db.commit()
    db.refresh(artifact)
    return artifact


class TrainingOrchestrator:
    """Decides when to train, seeds synthetic data on cold start and persists the result."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        forecaster: SequenceForecaster,
        model_key: str = MODEL_KEY,
        seed_size: int = SYNTHETIC_SEED_SIZE,
        rng: Optional[np.random.Generator] = None,
    ):
        self.session_factory = session_factory
        self.forecaster = forecaster
        self.model_key = model_key
        self.seed_size = seed_size
        self.rng = rng

    @property
    def min_samples(self) -> int:
        return self.forecaster.window_size + 2

    def _load_samples(self, store: SampleStore) -> List[Sample]:
        try:
            return store.load_all()
        except StoreCorruptionError as e:
            logger.warning("Training data unreadable (%s); clearing before re-seeding", e)
            store.clear()
            return []

    def _seed(self, store: SampleStore) -> List[Sample]:
        synthetic = generate_synthetic_samples(self.seed_size, rng=self.rng)
        store.extend(synthetic)
        logger.info("Seeded %d synthetic training samples", len(synthetic))
        return synthetic

    def _fit_and_persist(self, db: Session, samples: List[Sample], source: str, message: str) -> Optional[TrainOutcome]:
        outcome = self.forecaster.train(samples)
        if outcome is None:
            return None
        if outcome.status != "trained":
            message = MESSAGE_DIVERGED
            if self.forecaster.net is None:
                self.forecaster.mark_untrained()
        save_artifact(db, self.forecaster, outcome, source, message, self.model_key)
        return outcome

    def _seed_and_train(self, db: Session, store: SampleStore) -> Dict:
        synthetic = self._seed(store)
        samples = store.load_all()
        outcome = self._fit_and_persist(db, samples, "synthetic", MESSAGE_SYNTHETIC)
        return self._result(outcome, MESSAGE_SYNTHETIC, len(synthetic))

    def _train(self, db: Session) -> Dict:
        """Seed only a short store; otherwise fit on the stored samples as they are."""
        store = SampleStore(db)
        samples = self._load_samples(store)

        if len(samples) < self.min_samples:
            return self._seed_and_train(db, store)

        outcome = self._fit_and_persist(db, samples, "history", MESSAGE_HISTORY)
        return self._result(outcome, MESSAGE_HISTORY, len(samples))

    @staticmethod
    def _result(outcome: Optional[TrainOutcome], message: str, data_points: int) -> Dict:
        if outcome is None:
            return {"success": False, "message": MESSAGE_INSUFFICIENT, "data_points": data_points}
        if outcome.status != "trained":
            return {"success": False, "message": MESSAGE_DIVERGED, "data_points": data_points}
        return {"success": True, "message": message, "data_points": data_points}

    def train_now(self) -> Dict:
        """
        Train on stored samples, seeding synthetic data first when there are
        fewer than window_size + 2 of them.

        Returns {"success", "message", "data_points"}; data_points is the
        synthetic seed size on the cold-start path and the stored sample
        count otherwise.
        """
        with training_lock(self.model_key):
            db = self.session_factory()
            try:
                return self._train(db)
            finally:
                db.close()

    def ensure_ready(self) -> bool:
        """
        Load the persisted artifact, or train when it is missing or
        unreadable (seeding first only if the store is short).  Returns True
        when the model came from the stored artifact.

        Failures here never propagate; if even seeding fails the forecaster
        is left UNTRAINED and predictions return None.
        """
        with training_lock(self.model_key):
            self.forecaster.begin_loading()
            db = self.session_factory()
            try:
                artifact = get_artifact(db, self.model_key)
                if artifact is not None and self.forecaster.load_bytes(artifact.weights):
                    logger.info("Stress model loaded from artifact %r", self.model_key)
                    return True

                if artifact is not None:
                    db.delete(artifact)
                    db.commit()

                logger.info("No usable stress model found; training a new one")
                result = self._train(db)
                if not self.forecaster.is_trained:
                    self.forecaster.mark_untrained()
                logger.info("Cold-start training finished: %s", result["message"])
                return False
            except Exception:
                logger.exception("Cold-start training failed; stress forecasting disabled")
                self.forecaster.mark_untrained()
                return False
            finally:
                db.close()

    def startup(self) -> None:
        """Application start: make the model available, then retrain on current data."""
        if self.ensure_ready():
            result = self.train_now()
            logger.info("Startup retrain: %s (%d data points)", result["message"], result["data_points"])
