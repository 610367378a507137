"""FastAPI application exposing the stress forecasting core."""
import logging
from contextlib import asynccontextmanager
from typing import List

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from .db import SessionLocal, get_db, init_db
from .risk import risk_band
from .schemas import (
    AssessmentRecordIn,
    AssessmentRecordResponse,
    BurnoutRiskRequest,
    BurnoutRiskResponse,
    ClearedResponse,
    ModelStateResponse,
    PreferenceContextResponse,
    PreferenceCreate,
    PreferenceLearnedResponse,
    StoredResponse,
    StressPredictionRequest,
    StressPredictionResponse,
    TrainingSampleCreate,
    TrainingSampleResponse,
    TrainResponse,
)
from .service import ForecastService
from .settings import ALLOWED_ORIGINS, TRAIN_STARTUP_DELAY_SEC
from .store import AssessmentHistory, PreferenceLearner, SampleStore, StoreCorruptionError

logger = logging.getLogger(__name__)

# Create tables on import
init_db()


@asynccontextmanager
async def lifespan(app: FastAPI):
    service: ForecastService = app.state.forecast_service
    service.schedule_startup(TRAIN_STARTUP_DELAY_SEC)
    yield
    service.cancel_startup()


app = FastAPI(title="ZenGauge Forecast API", version="0.1.0", lifespan=lifespan)
app.state.forecast_service = ForecastService(SessionLocal)

# CORS configuration
if ALLOWED_ORIGINS:
    allowed_origins = [origin.strip() for origin in ALLOWED_ORIGINS.split(",")]
else:
    allowed_origins = ["http://localhost:5173"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_forecast_service(request: Request) -> ForecastService:
    """Dependency that provides the application's forecast service."""
    return request.app.state.forecast_service


def _burnout_response(result: dict) -> BurnoutRiskResponse:
    return BurnoutRiskResponse(
        risk=result["risk"],
        trend=result["trend"],
        band=risk_band(result["risk"]),
    )


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


# Training samples

@app.post("/samples", response_model=StoredResponse)
def append_sample(
    body: TrainingSampleCreate,
    background_tasks: BackgroundTasks,
    service: ForecastService = Depends(get_forecast_service),
):
    """Store a user-rated result and retrain in the background."""
    service.append_training_sample(body.metrics.model_dump(), body.reported_stress_pct)
    background_tasks.add_task(service.train_in_background)
    return {"stored": True}


@app.get("/samples", response_model=List[TrainingSampleResponse])
def list_samples(db: Session = Depends(get_db)):
    """All training samples, oldest first."""
    try:
        samples = SampleStore(db).load_all()
    except StoreCorruptionError as e:
        raise HTTPException(status_code=500, detail=f"Training data unreadable: {e}")
    return [
        TrainingSampleResponse(
            inputs=list(s.inputs),
            label=s.label,
            timestamp=s.timestamp_ms,
            synthetic=s.synthetic,
        )
        for s in samples
    ]


@app.delete("/samples", response_model=ClearedResponse)
def clear_samples(db: Session = Depends(get_db)):
    SampleStore(db).clear()
    return {"cleared": True}


# Assessment history

@app.post("/assessments", response_model=AssessmentRecordResponse)
def add_assessment(body: AssessmentRecordIn, db: Session = Depends(get_db)):
    """Store a completed assessment; history keeps only the newest records."""
    history = AssessmentHistory(db)
    if history.exists(body.id):
        raise HTTPException(status_code=409, detail=f"Assessment {body.id!r} already stored")
    return history.add(body.id, body.timestamp, body.stress_level, body.results.model_dump())


@app.get("/assessments", response_model=List[AssessmentRecordResponse])
def list_assessments(db: Session = Depends(get_db)):
    """Assessment history, newest first."""
    return AssessmentHistory(db).newest_first()


@app.delete("/assessments", response_model=ClearedResponse)
def clear_assessments(db: Session = Depends(get_db)):
    AssessmentHistory(db).clear()
    return {"cleared": True}


@app.get("/assessments/burnout-risk", response_model=BurnoutRiskResponse)
def stored_burnout_risk(
    db: Session = Depends(get_db),
    service: ForecastService = Depends(get_forecast_service),
):
    """Burnout risk over the stored assessment history."""
    history = AssessmentHistory(db).newest_first()
    return _burnout_response(service.predict_burnout_risk(history))


# Model

@app.post("/model/train", response_model=TrainResponse)
def train_model(service: ForecastService = Depends(get_forecast_service)):
    """Train now on stored samples, seeding synthetic data if there are too few."""
    return service.train_now()


@app.get("/model/state", response_model=ModelStateResponse)
def get_model_state(
    db: Session = Depends(get_db),
    service: ForecastService = Depends(get_forecast_service),
):
    """Metadata of the persisted model artifact."""
    artifact = service.model_state(db)
    if not artifact:
        raise HTTPException(status_code=404, detail="No model artifact found")

    return ModelStateResponse(
        model_key=artifact.model_key,
        trained_ts_utc=artifact.trained_ts_utc,
        n_samples=artifact.n_samples,
        source=artifact.source,
        loss=artifact.loss,
        mae=artifact.mae,
        status=artifact.status,
        message=artifact.message,
        forecaster_state=service.forecaster.state.value,
    )


# Predictions

@app.post("/predict/stress", response_model=StressPredictionResponse)
def predict_stress(
    body: StressPredictionRequest,
    service: ForecastService = Depends(get_forecast_service),
):
    """Forecast stress for the current result; null when unavailable."""
    return {"predicted_stress": service.predict_stress(body.history, body.current)}


@app.post("/predict/burnout-risk", response_model=BurnoutRiskResponse)
def predict_burnout(
    body: BurnoutRiskRequest,
    service: ForecastService = Depends(get_forecast_service),
):
    return _burnout_response(service.predict_burnout_risk(body.history))


# Preferences

@app.post("/preferences", response_model=PreferenceLearnedResponse)
def learn_preference(body: PreferenceCreate, db: Session = Depends(get_db)):
    return {"learned": PreferenceLearner(db).learn(body.topic, body.preference)}


@app.get("/preferences/context", response_model=PreferenceContextResponse)
def preference_context(db: Session = Depends(get_db)):
    learner = PreferenceLearner(db)
    return PreferenceContextResponse(
        entries=learner.entries(),
        context_prompt=learner.context_prompt(),
    )


# Data wipe

@app.delete("/data", response_model=ClearedResponse)
def wipe_all_data(
    db: Session = Depends(get_db),
    service: ForecastService = Depends(get_forecast_service),
):
    """Delete all local data, including the model artifact."""
    service.wipe(db)
    return {"cleared": True}
