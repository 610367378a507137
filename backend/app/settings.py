"""Application settings."""
import os
from pathlib import Path

# Database file lives at repo root unless DATABASE_URL overrides it
REPO_ROOT = Path(__file__).resolve().parent.parent.parent
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{REPO_ROOT / 'zengauge.db'}")

# Comma-separated list of origins allowed to call the API
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "")

# Sequence forecaster: number of consecutive assessments per input window
WINDOW_SIZE = 3

# Identifier of the single persisted model artifact
MODEL_KEY = "stress_lstm"

# Training budget
TRAIN_EPOCHS = int(os.getenv("TRAIN_EPOCHS", "30"))
TRAIN_BATCH_SIZE = int(os.getenv("TRAIN_BATCH_SIZE", "4"))
TRAIN_LEARNING_RATE = float(os.getenv("TRAIN_LEARNING_RATE", "0.005"))

# Optional RNG seed for reproducible training/seeding ("" = nondeterministic)
TRAIN_SEED = os.getenv("TRAIN_SEED", "")

# Delay before the startup training run, so the API comes up first
TRAIN_STARTUP_DELAY_SEC = float(os.getenv("TRAIN_STARTUP_DELAY_SEC", "2.0"))

# Number of synthetic samples generated on cold start
SYNTHETIC_SEED_SIZE = int(os.getenv("SYNTHETIC_SEED_SIZE", "50"))

# Maximum number of assessment records kept in history
HISTORY_CAP = int(os.getenv("HISTORY_CAP", "100"))
