"""Central configuration for the contribution-board snake engine."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path

from .errors import ConfigError

# Logging
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)-12s - %(levelname)-8s - %(message)s"


def configure_logging(level: int = logging.INFO) -> None:
    """Configure root logging if the host application has not done so already.

    This keeps the package library-friendly (it will not override an existing logging setup),
    while preserving CLI ergonomics.
    """
    root = logging.getLogger()
    if root.handlers:
        return
    logging.basicConfig(level=level, format=DEFAULT_LOG_FORMAT, stream=sys.stdout)


configure_logging()

logger = logging.getLogger("contribsnake")


# ----------------------------
# Paths / persistence
# ----------------------------
REPO_ROOT = Path(__file__).resolve().parents[1]


def _default_state_dir() -> Path:
    """Resolve the state directory (supports env override)."""
    raw = os.environ.get("CONTRIBSNAKE_STATE_DIR")
    if raw:
        return Path(raw).expanduser().resolve()
    return REPO_ROOT / "state"


STATE_DIR = _default_state_dir()
TRAINING_DIR = STATE_DIR / "snake-training"

# If False, the CLI will not write snapshots to disk.
SAVE_SNAPSHOTS = True

SNAPSHOT_PREFIX = "training-data-"
LATEST_POINTER = "latest.json"
SNAPSHOT_KEEP = 10
SNAPSHOT_CODEC = "json"
SNAPSHOT_CODECS = ("json", "msgpack")


def set_state_dir(state_dir: str | Path) -> None:
    """Update the state directory and derived paths at runtime.

    Directories are created lazily by the snapshot store on first save.
    """
    global STATE_DIR, TRAINING_DIR
    STATE_DIR = Path(state_dir).expanduser().resolve()
    TRAINING_DIR = STATE_DIR / "snake-training"


# ----------------------------
# Board & body
# ----------------------------
DAYS_PER_WEEK = 7
MAX_BODY_LENGTH = 30
GROWTH_PER_COUNT = 2
MAX_GROWTH_PER_EAT = 8

# Training tally credited to the episode per eaten contribution.
EAT_TALLY_PER_COUNT = 10.0

# ----------------------------
# State features / rewards
# ----------------------------
DISTANCE_CLIP = 10

REWARD_STEP_COST = -0.1
REWARD_GROWTH = 10.0
REWARD_FREE_NEIGHBOR = 0.5
REWARD_PROGRESS = 1.0
REWARD_SURVIVAL = 0.1

# Path heuristic weights: (distance*W_D + (1-safety)*W_S - reward) / NORM
PATH_DISTANCE_WEIGHT = 2.0
PATH_SAFETY_WEIGHT = 3.0
PATH_HEURISTIC_NORM = 6.0

# ----------------------------
# Q-learning
# ----------------------------
LEARNING_RATE = 0.2
DISCOUNT_FACTOR = 0.9
EXPLORATION_RATE = 0.3
MIN_EXPLORATION_RATE = 0.1
MAX_EXPLORATION_RATE = 0.3
EXPLORATION_DECAY = 0.995
EXPLORATION_RECOVERY = 1.05
TRAINING_HORIZON = 1000
STATS_WINDOW = 10
CONVERGENCE_WINDOW = 100
CONVERGENCE_THRESHOLD = 0.01

# Floors applied when restoring a snapshot.
RESTORE_MIN_LEARNING_RATE = 0.1
RESTORE_MIN_EXPLORATION_RATE = 0.15
RESTORE_STABLE_PENALTY = 2

# ----------------------------
# Tick cadence / autosave (seconds)
# ----------------------------
RAGE_INTERVAL = 0.2
LEARNED_INTERVAL = 0.05
HEURISTIC_INTERVAL = 0.3
DECISION_TIMEOUT = 0.5
AUTOSAVE_INTERVAL = 5 * 60
SAVE_EVERY_UPDATES = 50
# Longest a shutdown save waits for an in-flight save on another thread.
FINAL_SAVE_TIMEOUT = 5.0

PROGRESS_LOG_INTERVAL = 200

# Headless runs end an episode as a failure after this many ticks.
MAX_TICKS_PER_EPISODE = 2000

# Random board generation for the CLI.
DEFAULT_WEEKS = 53
DEFAULT_DENSITY = 0.3
MAX_DAILY_COUNT = 4


@dataclass(frozen=True)
class AgentConfig:
    """Hyperparameters and schedule constants for :class:`QLearningAgent`."""

    learning_rate: float = LEARNING_RATE
    discount_factor: float = DISCOUNT_FACTOR
    exploration_rate: float = EXPLORATION_RATE
    min_exploration_rate: float = MIN_EXPLORATION_RATE
    max_exploration_rate: float = MAX_EXPLORATION_RATE
    exploration_decay: float = EXPLORATION_DECAY
    exploration_recovery: float = EXPLORATION_RECOVERY
    training_horizon: int = TRAINING_HORIZON
    stats_window: int = STATS_WINDOW
    convergence_window: int = CONVERGENCE_WINDOW
    convergence_threshold: float = CONVERGENCE_THRESHOLD
    restore_min_learning_rate: float = RESTORE_MIN_LEARNING_RATE
    restore_min_exploration_rate: float = RESTORE_MIN_EXPLORATION_RATE

    def __post_init__(self) -> None:
        if not 0.0 < self.learning_rate <= 1.0:
            raise ConfigError(f"learning_rate must be in (0, 1], got {self.learning_rate}")
        if not 0.0 <= self.discount_factor < 1.0:
            raise ConfigError(f"discount_factor must be in [0, 1), got {self.discount_factor}")
        if not 0.0 <= self.exploration_rate <= 1.0:
            raise ConfigError(f"exploration_rate must be in [0, 1], got {self.exploration_rate}")
        if not 0.0 <= self.min_exploration_rate <= self.max_exploration_rate <= 1.0:
            raise ConfigError("exploration bounds must satisfy 0 <= min <= max <= 1")
        if not 0.0 < self.exploration_decay <= 1.0:
            raise ConfigError("exploration_decay must be in (0, 1]")
        if self.exploration_recovery < 1.0:
            raise ConfigError("exploration_recovery must be >= 1")
        if self.training_horizon <= 0 or self.stats_window <= 0 or self.convergence_window <= 0:
            raise ConfigError("training_horizon, stats_window and convergence_window must be > 0")


@dataclass(frozen=True)
class EngineConfig:
    """Settings for the decision loop and its schedulers."""

    max_body_length: int = MAX_BODY_LENGTH
    rage_interval: float = RAGE_INTERVAL
    learned_interval: float = LEARNED_INTERVAL
    heuristic_interval: float = HEURISTIC_INTERVAL
    decision_timeout: float = DECISION_TIMEOUT
    save_every_updates: int = SAVE_EVERY_UPDATES

    def __post_init__(self) -> None:
        if self.max_body_length < 1:
            raise ConfigError("max_body_length must be >= 1")
        for name in ("rage_interval", "learned_interval", "heuristic_interval"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must be >= 0")
        if self.decision_timeout <= 0:
            raise ConfigError("decision_timeout must be > 0")
        if self.save_every_updates < 0:
            raise ConfigError("save_every_updates must be >= 0")


def validate_config() -> None:
    """Basic sanity checks on the module-level constants."""
    ok = True
    if DAYS_PER_WEEK <= 0:
        logger.error("DAYS_PER_WEEK must be > 0")
        ok = False
    if MAX_BODY_LENGTH < 1:
        logger.error("MAX_BODY_LENGTH must be >= 1")
        ok = False
    if SNAPSHOT_KEEP < 1:
        logger.error("SNAPSHOT_KEEP must be >= 1")
        ok = False
    if SNAPSHOT_CODEC not in SNAPSHOT_CODECS:
        logger.error("SNAPSHOT_CODEC must be one of %s", ", ".join(SNAPSHOT_CODECS))
        ok = False
    if not ok:
        raise SystemExit(1)
