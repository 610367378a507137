"""Forecasting service object shared by the API routes."""
import logging
import threading
from typing import Callable, Dict, Mapping, Optional, Sequence

import numpy as np
from sqlalchemy.orm import Session

from .features import metrics_mapping
from .forecaster import SequenceForecaster
from .learner import TrainingOrchestrator, get_artifact, training_lock
from .models import ModelArtifact
from .risk import predict_burnout_risk, sort_chronological
from .settings import MODEL_KEY, SYNTHETIC_SEED_SIZE, TRAIN_SEED
from .store import AssessmentHistory, PreferenceLearner, Sample, SampleStore

logger = logging.getLogger(__name__)


class ForecastService:
    """
    Stress forecasting core: sample store, sequence forecaster, trend risk
    and training orchestration behind one object.

    Build one per application (or per test) with a session factory; it owns
    the in-memory model and opens its own sessions for training so it can
    run outside a request.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        forecaster: Optional[SequenceForecaster] = None,
        model_key: str = MODEL_KEY,
        seed_size: int = SYNTHETIC_SEED_SIZE,
        seed: Optional[int] = None,
    ):
        if seed is None and TRAIN_SEED:
            seed = int(TRAIN_SEED)
        self.session_factory = session_factory
        self.forecaster = forecaster or SequenceForecaster(seed=seed)
        rng = np.random.default_rng(seed) if seed is not None else None
        self.orchestrator = TrainingOrchestrator(
            session_factory,
            self.forecaster,
            model_key=model_key,
            seed_size=seed_size,
            rng=rng,
        )
        self.model_key = model_key
        self._startup_timer: Optional[threading.Timer] = None

    def append_training_sample(
        self,
        metrics: Mapping[str, Optional[float]],
        reported_stress_pct: float,
    ) -> Sample:
        """Store a user-rated sample.  Callers schedule train_now afterwards."""
        db = self.session_factory()
        try:
            return SampleStore(db).append(metrics, reported_stress_pct)
        finally:
            db.close()

    def train_now(self) -> Dict:
        return self.orchestrator.train_now()

    def train_in_background(self) -> None:
        """Retrain after a new sample; errors are logged, never raised."""
        try:
            result = self.train_now()
            logger.info("Retrain after new sample: %s (%d data points)",
                        result["message"], result["data_points"])
        except Exception:
            logger.exception("Background retrain failed")

    def predict_stress(self, history: Sequence, current) -> Optional[float]:
        """
        Predicted stress (0-100) for the current result given prior
        assessment records in any order, or None when no forecast is
        available.
        """
        if len(history) < self.forecaster.window_size - 1:
            return None
        ordered = sort_chronological(history)
        past = [metrics_mapping(record.results) for record in ordered]
        return self.forecaster.predict(past, metrics_mapping(current))

    def predict_burnout_risk(self, history: Sequence) -> Dict:
        return predict_burnout_risk(history)

    def model_state(self, db: Session) -> Optional[ModelArtifact]:
        return get_artifact(db, self.model_key)

    def schedule_startup(self, delay_sec: float) -> None:
        """Run the startup load/train after a short delay on a daemon thread."""
        def run():
            try:
                self.orchestrator.startup()
            except Exception:
                logger.exception("Startup training failed")

        self._startup_timer = threading.Timer(delay_sec, run)
        self._startup_timer.daemon = True
        self._startup_timer.start()

    def cancel_startup(self) -> None:
        if self._startup_timer is not None:
            self._startup_timer.cancel()

    def wipe(self, db: Session) -> None:
        """
        Delete every sample, record, preference and the model artifact.

        Waits for a running fit so it cannot write an artifact back afterwards.
        """
        with training_lock(self.model_key):
            SampleStore(db).clear()
            AssessmentHistory(db).clear()
            PreferenceLearner(db).clear()
            artifact = get_artifact(db, self.model_key)
            if artifact is not None:
                db.delete(artifact)
                db.commit()
            self.forecaster.reset()
        logger.info("All forecasting data wiped")
