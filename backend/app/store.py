"""Persistence of training samples, assessment history and learned preferences."""
import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Mapping, Optional, Union

from sqlalchemy.orm import Session

from .features import METRIC_FIELDS, coerce_metrics
from .models import AssessmentRecord, Preference, TrainingSample
from .risk import parse_timestamp
from .settings import HISTORY_CAP

logger = logging.getLogger(__name__)


class StoreCorruptionError(Exception):
    """A persisted training sample is malformed (non-finite value or label out of range)."""


@dataclass(frozen=True)
class Sample:
    """Immutable in-memory view of a stored training sample."""
    inputs: tuple
    label: float
    timestamp_ms: int
    synthetic: bool = False


def _now_ms() -> int:
    return int(time.time() * 1000)


def _to_sample(row: TrainingSample) -> Sample:
    inputs = tuple(getattr(row, field) for field in METRIC_FIELDS)
    values = inputs + (row.label,)
    if any(v is None or not math.isfinite(v) for v in values):
        raise StoreCorruptionError(f"training sample {row.id} has non-finite values")
    if not 0.0 <= row.label <= 1.0:
        raise StoreCorruptionError(f"training sample {row.id} has label {row.label} outside [0, 1]")
    return Sample(
        inputs=inputs,
        label=row.label,
        timestamp_ms=row.timestamp_ms,
        synthetic=bool(row.synthetic),
    )


class SampleStore:
    """Append-only collection of labelled training samples."""

    def __init__(self, db: Session):
        self.db = db

    def _row(self, sample: Sample) -> TrainingSample:
        return TrainingSample(
            **dict(zip(METRIC_FIELDS, sample.inputs)),
            label=sample.label,
            timestamp_ms=sample.timestamp_ms,
            synthetic=sample.synthetic,
        )

    def append(
        self,
        metrics: Mapping[str, Optional[float]],
        reported_stress_pct: float,
        synthetic: bool = False,
        timestamp_ms: Optional[int] = None,
    ) -> Sample:
        """Store one sample.  Non-finite metrics become 0, label = pct / 100."""
        label = min(1.0, max(0.0, float(reported_stress_pct) / 100))
        sample = Sample(
            inputs=tuple(coerce_metrics(metrics)),
            label=label,
            timestamp_ms=timestamp_ms if timestamp_ms is not None else _now_ms(),
            synthetic=synthetic,
        )
        self.db.add(self._row(sample))
        self.db.commit()
        return sample

    def extend(self, samples: Iterable[Sample]) -> int:
        """Bulk append already-built samples in one commit."""
        rows = [self._row(s) for s in samples]
        self.db.add_all(rows)
        self.db.commit()
        return len(rows)

    def load_all(self) -> List[Sample]:
        """All samples oldest first (by timestamp, then insertion order).

        Raises StoreCorruptionError on a malformed row.
        """
        rows = (
            self.db.query(TrainingSample)
            .order_by(TrainingSample.timestamp_ms, TrainingSample.id)
            .all()
        )
        return [_to_sample(row) for row in rows]

    def count(self) -> int:
        return self.db.query(TrainingSample).count()

    def clear(self) -> None:
        deleted = self.db.query(TrainingSample).delete()
        self.db.commit()
        if deleted:
            logger.info("Cleared %d training samples", deleted)


class AssessmentHistory:
    """Capped history of assessment records, listed newest (most recently added) first."""

    def __init__(self, db: Session, cap: int = HISTORY_CAP):
        self.db = db
        self.cap = cap

    def add(self, record_id: str, timestamp: Union[str, datetime], stress_level: int,
            results: Mapping[str, Optional[float]]) -> AssessmentRecord:
        """Store a record; the timestamp is kept as a UTC-aware ISO-8601 string."""
        record = AssessmentRecord(
            id=record_id,
            timestamp=parse_timestamp(timestamp).isoformat(),
            stress_level=stress_level,
            **dict(zip(METRIC_FIELDS, coerce_metrics(results))),
        )
        self.db.add(record)
        self.db.flush()

        overflow = (
            self.db.query(AssessmentRecord)
            .order_by(AssessmentRecord.pk.desc())
            .offset(self.cap)
            .all()
        )
        for old in overflow:
            self.db.delete(old)

        self.db.commit()
        self.db.refresh(record)
        return record

    def exists(self, record_id: str) -> bool:
        return self.db.query(AssessmentRecord).filter(AssessmentRecord.id == record_id).first() is not None

    def newest_first(self) -> List[AssessmentRecord]:
        return (
            self.db.query(AssessmentRecord)
            .order_by(AssessmentRecord.pk.desc())
            .all()
        )

    def clear(self) -> None:
        self.db.query(AssessmentRecord).delete()
        self.db.commit()


class PreferenceLearner:
    """Accumulates short "topic: preference" facts for LLM context."""

    def __init__(self, db: Session):
        self.db = db

    def learn(self, topic: str, preference: str) -> bool:
        """Store the fact unless it is already known.  Returns True if it was new."""
        entry = f"{topic}: {preference}"
        exists = self.db.query(Preference).filter(Preference.entry == entry).first()
        if exists:
            return False
        self.db.add(Preference(entry=entry))
        self.db.commit()
        return True

    def entries(self) -> List[str]:
        return [p.entry for p in self.db.query(Preference).order_by(Preference.id).all()]

    def context_prompt(self) -> str:
        entries = self.entries()
        if not entries:
            return ""
        bullet_list = "\n".join(f"- {e}" for e in entries)
        return (
            "\n\nUSER PREFERENCES (LEARNED from previous chats):\n"
            f"{bullet_list}\n"
            "Adjust your personality and advice accordingly."
        )

    def clear(self) -> None:
        self.db.query(Preference).delete()
        self.db.commit()
