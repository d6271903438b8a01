"""Durable snapshots of the learned table and training statistics.

Key design goals:
- Atomic writes (temp file + fsync + ``os.replace``) so readers never see a partial file.
- A single ``latest.json`` pointer naming the newest snapshot.
- Bounded history: only the most recent ``keep`` snapshots survive a save.
- Tolerant loading: a missing or malformed pointer/snapshot yields ``None`` and the
  caller starts from default hyperparameters. A corrupt snapshot is discarded
  wholesale, never partially applied.
"""

from __future__ import annotations

import errno
import itertools
import json
import logging
import math
import os
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple

import msgpack

from . import config
from .errors import ConfigError, SnapshotFormatError
from .features import parse_action_key

logger = logging.getLogger(__name__)

QTable = Dict[str, Dict[str, float]]


def utc_timestamp() -> str:
    """ISO timestamp safe to embed in a file name."""
    return datetime.now(timezone.utc).isoformat().replace(":", "-").replace(".", "-")


@dataclass
class SnapshotData:
    """Everything needed to rebuild an agent: table, hyperparameters, stats."""

    q_table: QTable
    learning_rate: float
    discount_factor: float
    exploration_rate: float
    episode_count: int = 0
    reward_history: List[float] = field(default_factory=list)
    stable_episodes: int = 0
    last_average_reward: Optional[float] = None
    has_converged: bool = False
    timestamp: str = ""

    @property
    def state_count(self) -> int:
        return len(self.q_table)

    @property
    def total_actions(self) -> int:
        return sum(len(actions) for actions in self.q_table.values())

    def convergence_status(self) -> Dict[str, Any]:
        return {
            "stableEpisodes": int(self.stable_episodes),
            "lastAverageReward": self.last_average_reward,
            "hasConverged": bool(self.has_converged),
        }

    def to_document(self) -> Dict[str, Any]:
        return {
            "qTable": [
                [state, [[action, float(value)] for action, value in actions.items()]]
                for state, actions in self.q_table.items()
            ],
            "learningRate": float(self.learning_rate),
            "discountFactor": float(self.discount_factor),
            "explorationRate": float(self.exploration_rate),
            "timestamp": self.timestamp,
            "stats": {
                "episodeCount": int(self.episode_count),
                "rewardHistory": [float(r) for r in self.reward_history],
                "stateCount": self.state_count,
                "totalActions": self.total_actions,
                "convergenceStatus": self.convergence_status(),
            },
        }

    @classmethod
    def from_document(cls, doc: Any) -> "SnapshotData":
        """Validate and decode a snapshot document; any defect rejects the whole thing."""
        if not isinstance(doc, dict):
            raise SnapshotFormatError("snapshot must be a mapping")
        try:
            q_table: QTable = {}
            for pair in doc["qTable"]:
                state, actions = pair
                if not isinstance(state, str):
                    raise SnapshotFormatError(f"state key must be a string, got {state!r}")
                entry: Dict[str, float] = {}
                for action_pair in actions:
                    action, value = action_pair
                    if not isinstance(action, str) or parse_action_key(action) is None:
                        raise SnapshotFormatError(f"invalid action key {action!r}")
                    entry[action] = _finite(value, "q value")
                q_table[state] = entry

            stats = doc.get("stats") or {}
            if not isinstance(stats, dict):
                raise SnapshotFormatError("stats must be a mapping")
            status = stats.get("convergenceStatus") or {}
            if not isinstance(status, dict):
                raise SnapshotFormatError("convergenceStatus must be a mapping")
            last_avg = status.get("lastAverageReward")

            return cls(
                q_table=q_table,
                learning_rate=_finite(doc["learningRate"], "learningRate"),
                discount_factor=_finite(doc["discountFactor"], "discountFactor"),
                exploration_rate=_finite(doc["explorationRate"], "explorationRate"),
                episode_count=int(stats.get("episodeCount", 0) or 0),
                reward_history=[_finite(r, "rewardHistory") for r in stats.get("rewardHistory", [])],
                stable_episodes=int(status.get("stableEpisodes", 0) or 0),
                last_average_reward=None if last_avg is None else float(last_avg),
                has_converged=bool(status.get("hasConverged", False)),
                timestamp=str(doc.get("timestamp", "")),
            )
        except SnapshotFormatError:
            raise
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise SnapshotFormatError(f"malformed snapshot: {exc}") from exc


def _finite(value: Any, what: str) -> float:
    if isinstance(value, bool):
        raise SnapshotFormatError(f"{what} must be a number, got {value!r}")
    out = float(value)
    if math.isnan(out) or math.isinf(out):
        raise SnapshotFormatError(f"{what} must be finite, got {value!r}")
    return out


@dataclass(frozen=True)
class SaveResult:
    ok: bool
    path: Optional[str] = None
    error: Optional[str] = None


class PersistenceStore(Protocol):
    """Port used by the agent and schedulers; file-backed or in-memory."""

    def save(self, snapshot: SnapshotData) -> SaveResult:
        ...

    def load(self) -> Optional[SnapshotData]:
        ...


# ----------------------------
# Codecs
# ----------------------------
def _encode(doc: Dict[str, Any], codec: str) -> bytes:
    if codec == "msgpack":
        return msgpack.packb(doc, use_bin_type=True)
    return json.dumps(doc, indent=2).encode("utf-8")


def _decode(blob: bytes, codec: str) -> Any:
    if codec == "msgpack":
        return msgpack.unpackb(blob, raw=False, strict_map_key=False)
    return json.loads(blob.decode("utf-8"))


_EXTENSIONS = {"json": ".json", "msgpack": ".msgpack"}


def _codec_for(path: Path) -> str:
    return "msgpack" if path.suffix == ".msgpack" else "json"


class FileSnapshotStore:
    """Snapshot files under one directory plus a ``latest.json`` pointer."""

    def __init__(
        self,
        directory: str | Path,
        *,
        keep: int = config.SNAPSHOT_KEEP,
        codec: str = config.SNAPSHOT_CODEC,
    ) -> None:
        if int(keep) < 1:
            raise ConfigError(f"keep must be >= 1, got {keep}")
        if codec not in _EXTENSIONS:
            raise ConfigError(f"unknown snapshot codec {codec!r}")
        self.directory = Path(directory).expanduser()
        self.keep = int(keep)
        self.codec = codec
        self._seq = itertools.count()
        # reentrant: a signal handler may save while this thread is mid-save
        self._lock = threading.RLock()

    @property
    def pointer_path(self) -> Path:
        return self.directory / config.LATEST_POINTER

    def snapshot_files(self) -> List[Path]:
        """Snapshot files, newest first."""
        if not self.directory.is_dir():
            return []
        files: List[Tuple[float, str, Path]] = []
        for path in self.directory.iterdir():
            if not path.name.startswith(config.SNAPSHOT_PREFIX):
                continue
            if path.suffix not in _EXTENSIONS.values():
                continue
            try:
                mtime = path.stat().st_mtime
            except OSError:
                continue
            files.append((mtime, path.name, path))
        files.sort(key=lambda item: (item[0], item[1]), reverse=True)
        return [path for _, _, path in files]

    # ----------------------------
    # Save
    # ----------------------------
    def _write_atomic(self, path: Path, blob: bytes) -> None:
        tmp_path = path.with_name(f"{path.name}.{uuid.uuid4().hex[:8]}.tmp")

        def _write_blob(target: Path) -> None:
            with open(target, "wb") as f:
                f.write(blob)
                f.flush()
                os.fsync(f.fileno())

        try:
            _write_blob(tmp_path)
            try:
                os.replace(tmp_path, path)
            except OSError as exc:
                if exc.errno not in {errno.EACCES, errno.EPERM}:
                    raise
                logger.warning("Atomic replace denied (%s); falling back to overwrite", exc)
                _write_blob(path)
        finally:
            try:
                if tmp_path.exists():
                    tmp_path.unlink()
            except OSError as exc:
                logger.warning("Unable to delete %s: %s", tmp_path, exc)

    def save(self, snapshot: SnapshotData) -> SaveResult:
        with self._lock:
            try:
                self.directory.mkdir(parents=True, exist_ok=True)
                if not snapshot.timestamp:
                    snapshot.timestamp = utc_timestamp()
                name = (
                    f"{config.SNAPSHOT_PREFIX}{snapshot.timestamp}-{next(self._seq):04d}"
                    f"{_EXTENSIONS[self.codec]}"
                )
                path = self.directory / name
                self._write_atomic(path, _encode(snapshot.to_document(), self.codec))

                pointer = {
                    "latestFile": name,
                    "timestamp": snapshot.timestamp,
                    "convergenceStatus": snapshot.convergence_status(),
                }
                self._write_atomic(self.pointer_path, _encode(pointer, "json"))
            except (OSError, TypeError, ValueError) as exc:
                logger.error("Save failed: %s", exc)
                return SaveResult(ok=False, error=str(exc))

            self._rotate()
            logger.info(
                "Saved %d states to %s (converged=%s)",
                snapshot.state_count,
                path,
                snapshot.has_converged,
            )
            return SaveResult(ok=True, path=str(path))

    def _rotate(self) -> None:
        for old in self.snapshot_files()[self.keep:]:
            try:
                old.unlink()
                logger.debug("Deleted old snapshot %s", old.name)
            except OSError as exc:
                logger.warning("Unable to delete %s: %s", old, exc)

    def clear(self) -> int:
        """Delete every snapshot and the pointer; returns the number of files removed."""
        removed = 0
        with self._lock:
            for path in [*self.snapshot_files(), self.pointer_path]:
                if not path.exists():
                    continue
                try:
                    path.unlink()
                    removed += 1
                except OSError as exc:
                    logger.warning("Unable to delete %s: %s", path, exc)
        return removed

    # ----------------------------
    # Load
    # ----------------------------
    def _resolve(self, latest: str) -> Path:
        path = Path(latest)
        return path if path.is_absolute() else self.directory / path

    def load(self) -> Optional[SnapshotData]:
        if not self.pointer_path.exists():
            logger.info("No saved training data found in %s; starting fresh", self.directory)
            return None
        try:
            pointer = json.loads(self.pointer_path.read_text(encoding="utf-8"))
            latest = pointer["latestFile"]
            if not isinstance(latest, str):
                raise SnapshotFormatError("latestFile must be a string")
        except (OSError, ValueError, KeyError, TypeError, SnapshotFormatError) as exc:
            logger.error("Unreadable pointer %s: %s", self.pointer_path, exc)
            return None

        path = self._resolve(latest)
        if not path.exists():
            logger.warning("Latest snapshot %s does not exist", path)
            return None
        try:
            snapshot = SnapshotData.from_document(_decode(path.read_bytes(), _codec_for(path)))
        except (OSError, TypeError, ValueError, SnapshotFormatError, msgpack.UnpackException) as exc:
            logger.error("Load failed for %s: %s", path, exc)
            return None

        logger.info(
            "Loaded %d states (%d actions, %d updates) from %s",
            snapshot.state_count,
            snapshot.total_actions,
            snapshot.episode_count,
            path,
        )
        return snapshot


class InMemoryStore:
    """Process-local store with the same rotation bound; used by tests and dry runs."""

    def __init__(self, keep: int = config.SNAPSHOT_KEEP) -> None:
        if int(keep) < 1:
            raise ConfigError(f"keep must be >= 1, got {keep}")
        self.keep = int(keep)
        self.snapshots: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def save(self, snapshot: SnapshotData) -> SaveResult:
        if not snapshot.timestamp:
            snapshot.timestamp = utc_timestamp()
        # store the serialized form so later mutation of the agent cannot leak in
        doc = json.loads(json.dumps(snapshot.to_document()))
        with self._lock:
            self.snapshots.append(doc)
            del self.snapshots[: -self.keep]
        return SaveResult(ok=True, path=f"memory://{len(self.snapshots) - 1}")

    def load(self) -> Optional[SnapshotData]:
        with self._lock:
            if not self.snapshots:
                return None
            doc = self.snapshots[-1]
        try:
            return SnapshotData.from_document(doc)
        except SnapshotFormatError as exc:
            logger.error("Load failed: %s", exc)
            return None
