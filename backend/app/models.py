"""SQLAlchemy ORM models."""
from sqlalchemy import Boolean, Column, Float, Integer, LargeBinary, String, Text

from .db import Base
from .features import METRIC_FIELDS


class TrainingSample(Base):
    """One labelled metric vector used to train the stress forecaster.

    Rows are append-only; the table is only ever cleared as a whole.
    """
    __tablename__ = "training_samples"

    id = Column(Integer, primary_key=True, index=True)
    reaction_time_ms = Column(Float, nullable=False)
    memory_score_pct = Column(Float, nullable=False)
    tapping_rate_per_sec = Column(Float, nullable=False)
    accuracy_pct = Column(Float, nullable=False)
    label = Column(Float, nullable=False)  # reported stress / 100
    timestamp_ms = Column(Integer, nullable=False)
    synthetic = Column(Boolean, nullable=False, default=False)


class AssessmentRecord(Base):
    """Result of one completed four-game assessment."""
    __tablename__ = "assessment_records"

    pk = Column(Integer, primary_key=True)
    id = Column(String, unique=True, index=True, nullable=False)
    timestamp = Column(String, index=True, nullable=False)  # ISO-8601
    stress_level = Column(Integer, nullable=False)
    reaction_time_ms = Column(Float, nullable=False)
    memory_score_pct = Column(Float, nullable=False)
    tapping_rate_per_sec = Column(Float, nullable=False)
    accuracy_pct = Column(Float, nullable=False)

    @property
    def results(self) -> dict:
        return {field: getattr(self, field) for field in METRIC_FIELDS}


class ModelArtifact(Base):
    """Persisted weights and training metadata of the stress forecaster."""
    __tablename__ = "model_artifact"

    id = Column(Integer, primary_key=True, index=True)
    model_key = Column(String, unique=True, index=True, nullable=False)
    trained_ts_utc = Column(String, nullable=False)
    n_samples = Column(Integer, nullable=False)
    source = Column(String, nullable=False)  # "synthetic" or "history"
    weights = Column(LargeBinary, nullable=True)  # serialized state_dict
    loss = Column(Float, nullable=True)
    mae = Column(Float, nullable=True)
    status = Column(String, nullable=False)  # "trained" or "diverged"
    message = Column(Text, nullable=True)


class Preference(Base):
    """A short learned fact about the user, injected into LLM prompts."""
    __tablename__ = "preferences"

    id = Column(Integer, primary_key=True, index=True)
    entry = Column(String, unique=True, nullable=False)
