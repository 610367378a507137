"""Test the HTTP surface of the forecasting service."""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from backend.app.db import Base, get_db
from backend.app.forecaster import SequenceForecaster
from backend.app.main import app, get_forecast_service
from backend.app.service import ForecastService


@pytest.fixture(scope="function")
def test_service():
    """Fresh in-memory database and forecast service for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    service = ForecastService(
        TestingSessionLocal,
        forecaster=SequenceForecaster(epochs=2, seed=0),
        seed=0,
    )

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_forecast_service] = lambda: service
    yield service
    app.dependency_overrides.clear()
    engine.dispose()


@pytest.fixture
def client(test_service):
    """Test client with test database and service."""
    return TestClient(app)


def metrics(reaction=320, memory=70, tapping=6.5, accuracy=90):
    return {
        "reaction_time_ms": reaction,
        "memory_score_pct": memory,
        "tapping_rate_per_sec": tapping,
        "accuracy_pct": accuracy,
    }


def record(i: int, stress: int):
    return {
        "id": f"rec-{i}",
        "timestamp": f"2024-04-{i + 1:02d}T12:00:00Z",
        "stress_level": stress,
        "results": metrics(),
    }


def test_health_returns_ok(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


class TestSamples:

    def test_append_stores_and_retrains(self, client):
        response = client.post("/samples", json={"metrics": metrics(), "reported_stress_pct": 42})
        assert response.status_code == 200
        assert response.json() == {"stored": True}

        # Background retrain ran after the response: one real sample plus the seed
        samples = client.get("/samples").json()
        real = [s for s in samples if not s["synthetic"]]
        assert len(real) == 1
        assert real[0]["label"] == 0.42
        assert real[0]["inputs"] == [320.0, 70.0, 6.5, 90.0]
        assert len(samples) == 51

        state = client.get("/model/state").json()
        assert state["source"] == "synthetic"
        assert state["forecaster_state"] == "trained"

    def test_missing_metrics_become_zero(self, client):
        client.post("/samples", json={"metrics": {"accuracy_pct": 77}, "reported_stress_pct": 10})

        real = [s for s in client.get("/samples").json() if not s["synthetic"]]
        assert real[0]["inputs"] == [0.0, 0.0, 0.0, 77.0]

    @pytest.mark.parametrize("pct", [-1, 101])
    def test_reported_stress_out_of_range_is_rejected(self, client, pct):
        response = client.post("/samples", json={"metrics": metrics(), "reported_stress_pct": pct})
        assert response.status_code == 422

    def test_clear_samples(self, client):
        client.post("/samples", json={"metrics": metrics(), "reported_stress_pct": 42})
        response = client.delete("/samples")
        assert response.json() == {"cleared": True}
        assert client.get("/samples").json() == []


class TestModel:

    def test_state_404_before_training(self, client):
        response = client.get("/model/state")
        assert response.status_code == 404
        assert "No model artifact" in response.json()["detail"]

    def test_train_on_empty_store_uses_synthetic_data(self, client):
        response = client.post("/model/train")
        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "trained on synthetic data",
            "data_points": 50,
        }

        state = client.get("/model/state").json()
        assert state["model_key"] == "stress_lstm"
        assert state["n_samples"] == 50
        assert state["status"] == "trained"
        assert state["mae"] is not None

    def test_train_twice_trains_on_history(self, client):
        client.post("/model/train")
        response = client.post("/model/train")
        assert response.json()["message"] == "trained on history"


class TestPredictions:

    def test_stress_prediction_null_without_history(self, client):
        client.post("/model/train")
        response = client.post(
            "/predict/stress",
            json={"history": [record(0, 40)], "current": metrics()},
        )
        assert response.status_code == 200
        assert response.json() == {"predicted_stress": None}

    def test_stress_prediction_null_when_untrained(self, client):
        response = client.post(
            "/predict/stress",
            json={"history": [record(0, 40), record(1, 50)], "current": metrics()},
        )
        assert response.json() == {"predicted_stress": None}

    def test_stress_prediction_after_training(self, client):
        client.post("/model/train")
        response = client.post(
            "/predict/stress",
            json={"history": [record(1, 50), record(0, 40)], "current": metrics(reaction=450)},
        )
        value = response.json()["predicted_stress"]
        assert value is not None
        assert 0.0 <= value <= 100.0

    def test_burnout_risk_from_request(self, client):
        history = [record(i, s) for i, s in enumerate([10, 20, 30, 40, 50])]
        response = client.post("/predict/burnout-risk", json={"history": history})
        assert response.status_code == 200
        assert response.json() == {"risk": 100.0, "trend": "up", "band": "high"}

    def test_burnout_risk_short_history(self, client):
        response = client.post("/predict/burnout-risk", json={"history": [record(0, 90)]})
        assert response.json() == {"risk": 0.0, "trend": "stable", "band": "low"}

    @pytest.mark.parametrize("path", ["/predict/stress", "/predict/burnout-risk"])
    def test_malformed_history_timestamp_is_rejected(self, client, path):
        history = [record(0, 40), dict(record(1, 50), timestamp="03/01/2024"), record(2, 60)]
        response = client.post(path, json={"history": history, "current": metrics()})
        assert response.status_code == 422


class TestAssessments:

    def test_add_and_list_newest_first(self, client):
        for i, stress in enumerate([30, 30, 30]):
            response = client.post("/assessments", json=record(i, stress))
            assert response.status_code == 200

        ids = [r["id"] for r in client.get("/assessments").json()]
        assert ids == ["rec-2", "rec-1", "rec-0"]

    def test_duplicate_id_is_rejected(self, client):
        client.post("/assessments", json=record(0, 30))
        response = client.post("/assessments", json=record(0, 35))
        assert response.status_code == 409

    def test_stored_burnout_risk(self, client):
        for i, stress in enumerate([50, 40, 30, 20, 10]):
            client.post("/assessments", json=record(i, stress))

        response = client.get("/assessments/burnout-risk")
        assert response.json() == {"risk": 0.0, "trend": "down", "band": "low"}

    def test_malformed_timestamp_is_rejected(self, client):
        client.post("/assessments", json=record(0, 30))
        client.post("/assessments", json=record(1, 40))

        bad = dict(record(2, 50), timestamp="yesterday")
        assert client.post("/assessments", json=bad).status_code == 422

        response = client.get("/assessments/burnout-risk")
        assert response.status_code == 200
        assert [r["id"] for r in client.get("/assessments").json()] == ["rec-1", "rec-0"]

    def test_timestamp_is_stored_as_aware_iso(self, client):
        body = dict(record(0, 30), timestamp="2024-04-01T14:00:00+02:00")
        stored = client.post("/assessments", json=body).json()
        assert stored["timestamp"] == "2024-04-01T14:00:00+02:00"

        naive = dict(record(1, 30), timestamp="2024-04-02T08:00:00")
        assert client.post("/assessments", json=naive).json()["timestamp"] == "2024-04-02T08:00:00+00:00"

    def test_clear_history(self, client):
        client.post("/assessments", json=record(0, 30))
        assert client.delete("/assessments").json() == {"cleared": True}
        assert client.get("/assessments").json() == []


class TestPreferencesAndWipe:

    def test_preferences_context(self, client):
        assert client.get("/preferences/context").json() == {"entries": [], "context_prompt": ""}

        assert client.post("/preferences", json={"topic": "tone", "preference": "gentle"}).json() == {"learned": True}
        assert client.post("/preferences", json={"topic": "tone", "preference": "gentle"}).json() == {"learned": False}

        body = client.get("/preferences/context").json()
        assert body["entries"] == ["tone: gentle"]
        assert "- tone: gentle" in body["context_prompt"]

    def test_wipe_all_data(self, client):
        client.post("/model/train")
        client.post("/assessments", json=record(0, 30))
        client.post("/preferences", json={"topic": "tone", "preference": "gentle"})

        assert client.delete("/data").json() == {"cleared": True}

        assert client.get("/samples").json() == []
        assert client.get("/assessments").json() == []
        assert client.get("/preferences/context").json()["entries"] == []
        assert client.get("/model/state").status_code == 404
