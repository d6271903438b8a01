"""Command-line interface and headless run loop."""

from __future__ import annotations

import argparse
import cProfile
import json
import logging
import pstats
import random
import threading
import time
from pathlib import Path
from typing import List, Optional

from . import config
from .board import Board
from .config import EngineConfig
from .engine import DecisionLoop, EpisodeSummary, TickResult
from .errors import ConfigError
from .persistence import FileSnapshotStore
from .policy import make_policy
from .qlearning import QLearningAgent
from .scheduler import AutoSaver, TickScheduler, install_shutdown_handlers

logger = logging.getLogger(__name__)


def _open_jsonl(path: Optional[str]):
    if not path:
        return None
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    return p.open("a", encoding="utf-8")


def random_counts(weeks: int, density: float, first_day: int, rng: random.Random) -> List[int]:
    """A synthetic contribution series: each day is non-zero with probability ``density``."""
    days = weeks * config.DAYS_PER_WEEK - first_day
    return [
        rng.randint(1, config.MAX_DAILY_COUNT) if rng.random() < density else 0
        for _ in range(max(0, days))
    ]


def load_counts(path: str) -> List[int]:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ConfigError(f"{path} must contain a JSON list of daily counts")
    return [int(c) for c in data]


def build_board(
    weeks: int,
    density: float,
    first_day: int,
    counts_file: Optional[str],
    rng: random.Random,
) -> Board:
    if counts_file:
        counts = load_counts(counts_file)
    else:
        counts = random_counts(weeks, density, first_day, rng)
    return Board(weeks, counts, first_day_offset=first_day)


def run(
    episodes: int,
    mode: str = "learned",
    weeks: int = config.DEFAULT_WEEKS,
    density: float = config.DEFAULT_DENSITY,
    counts_file: Optional[str] = None,
    first_day: int = 0,
    seed: Optional[int] = None,
    max_ticks: Optional[int] = None,
    log_jsonl: Optional[str] = None,
    state_dir: Optional[str] = None,
    codec: str = config.SNAPSHOT_CODEC,
    keep: int = config.SNAPSHOT_KEEP,
    no_save: bool = False,
    reset_memory: bool = False,
    realtime: bool = False,
) -> int:
    config_snapshot = {
        "SAVE_SNAPSHOTS": config.SAVE_SNAPSHOTS,
        "MAX_TICKS_PER_EPISODE": config.MAX_TICKS_PER_EPISODE,
        "SNAPSHOT_CODEC": config.SNAPSHOT_CODEC,
        "SNAPSHOT_KEEP": config.SNAPSHOT_KEEP,
        "STATE_DIR": config.STATE_DIR,
        "TRAINING_DIR": config.TRAINING_DIR,
    }
    if state_dir:
        config.set_state_dir(state_dir)

    # Evaluation mode: allow loading, but disable writes.
    if no_save:
        config.SAVE_SNAPSHOTS = False
    if max_ticks is not None:
        config.MAX_TICKS_PER_EPISODE = int(max_ticks)
    config.SNAPSHOT_CODEC = codec
    config.SNAPSHOT_KEEP = int(keep)

    hook = None
    saver: Optional[AutoSaver] = None
    loop: Optional[DecisionLoop] = None
    jsonl_f = None
    try:
        config.validate_config()

        rng = random.Random(seed)
        board = build_board(weeks, density, first_day, counts_file, rng)
        logger.info(
            "Board: %d weeks, %d reward cells (first day offset %d)",
            board.total_weeks,
            board.total_rewards(),
            board.first_day_offset,
        )

        store = FileSnapshotStore(config.TRAINING_DIR, keep=config.SNAPSHOT_KEEP, codec=config.SNAPSHOT_CODEC)
        if reset_memory:
            removed = store.clear()
            logger.info("Memory reset via CLI (%d files removed)", removed)

        agent = QLearningAgent.from_store(store, rng=random.Random(seed))
        engine_config = EngineConfig()
        policy = make_policy(mode, agent, timeout=engine_config.decision_timeout)

        if config.SAVE_SNAPSHOTS and policy.learns:
            saver = AutoSaver(store, agent)
            hook = install_shutdown_handlers(saver.final_save)

        jsonl_f = _open_jsonl(log_jsonl)
        episode_ticks = 0
        finished = threading.Event()

        def on_episode_end(summary: EpisodeSummary) -> None:
            nonlocal episode_ticks
            episode_ticks = 0
            if jsonl_f is not None:
                row = {
                    "ts": time.time(),
                    "episode": summary.index,
                    "mode": mode,
                    "success": summary.success,
                    "reason": summary.reason,
                    "score": summary.score,
                    "reward": summary.reward,
                    "steps": summary.steps,
                    "length": summary.length,
                    "seed": seed,
                    "weeks": board.total_weeks,
                    "states": agent.state_count,
                    "exploration": agent.exploration_rate,
                }
                jsonl_f.write(json.dumps(row) + "\n")
                jsonl_f.flush()
            if summary.index >= episodes:
                finished.set()
                scheduler.stop()

        loop = DecisionLoop(
            policy,
            agent if policy.learns else None,
            engine_config,
            on_episode_end=on_episode_end,
            on_save_request=saver.request if saver is not None else None,
        )

        def on_tick(result: TickResult) -> None:
            nonlocal episode_ticks
            if finished.is_set():
                return
            episode_ticks += 1
            if episode_ticks % config.PROGRESS_LOG_INTERVAL == 0:
                logger.info(
                    "Episode %d | Tick %d | Score %.0f | Length %d",
                    loop.stats.episodes + 1,
                    episode_ticks,
                    loop.episode_score,
                    loop.snake.length,
                )
            if episode_ticks >= config.MAX_TICKS_PER_EPISODE:
                logger.info("Reached per-episode tick cap (%d); ending episode", config.MAX_TICKS_PER_EPISODE)
                loop.abort(board, "tick_cap")

        scheduler = TickScheduler(loop, lambda: board, on_tick=on_tick)

        t0 = time.time()
        if episodes > 0:
            loop.activate(board)
            if saver is not None:
                saver.start()
            if realtime:
                scheduler.start()
                scheduler.wait()
            else:
                while not finished.is_set():
                    if scheduler.run_for(config.PROGRESS_LOG_INTERVAL) == 0:
                        break

        if saver is not None:
            saver.stop()
            saver.flush()

        stats = loop.stats
        logger.info(
            "Session: episodes=%d successes=%d (%.1f%%) avg_score=%.2f avg_reward=%.2f best=%.0f (%.2fs)",
            stats.episodes,
            stats.successes,
            stats.success_rate,
            stats.average_score,
            stats.average_reward,
            stats.best_score,
            time.time() - t0,
        )
        if policy.learns:
            logger.info(
                "Agent: states=%d actions=%d updates=%d exploration=%.3f converged=%s",
                agent.state_count,
                agent.total_actions,
                agent.stats.episode_count,
                agent.exploration_rate,
                agent.stats.has_converged,
            )
        return 0
    except KeyboardInterrupt:
        logger.info("Interrupted; saving state...")
        if saver is not None:
            saver.stop()
            hook()
        return 130
    finally:
        if loop is not None:
            loop.close()
        if hook is not None:
            hook.uninstall()
        if jsonl_f is not None:
            jsonl_f.close()
        for attr, value in config_snapshot.items():
            setattr(config, attr, value)


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Contribution-board snake engine")
    parser.add_argument("--episodes", type=int, default=10, help="Number of episodes to run")
    parser.add_argument(
        "--mode",
        choices=("heuristic", "learned"),
        default="learned",
        help="Move selection: A* heuristic or the Q-learning agent",
    )
    parser.add_argument("--weeks", type=int, default=config.DEFAULT_WEEKS, help="Board width in weeks")
    parser.add_argument(
        "--density",
        type=float,
        default=config.DEFAULT_DENSITY,
        help="Probability that a generated day has contributions",
    )
    parser.add_argument(
        "--counts-file",
        type=str,
        default=None,
        help="JSON list of daily contribution counts (overrides --density)",
    )
    parser.add_argument("--first-day", type=int, default=0, help="Weekday offset of the first calendar day")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for reproducibility")
    parser.add_argument("--max-ticks", type=int, default=None, help="Per-episode tick cap")
    parser.add_argument("--profile", action="store_true", help="Enable profiling output")
    parser.add_argument(
        "--log-jsonl",
        type=str,
        default=None,
        help="Append per-episode metrics to a JSONL file (e.g. runs/session.jsonl)",
    )
    parser.add_argument(
        "--state-dir",
        type=str,
        default=None,
        help="Override state directory (default: state/). Useful for isolated runs.",
    )
    parser.add_argument(
        "--codec",
        choices=config.SNAPSHOT_CODECS,
        default=config.SNAPSHOT_CODEC,
        help="Snapshot file format",
    )
    parser.add_argument(
        "--keep",
        type=int,
        default=config.SNAPSHOT_KEEP,
        help="Number of snapshots to retain",
    )
    parser.add_argument(
        "--reset-memory",
        action="store_true",
        help="Delete persisted training snapshots before running.",
    )
    parser.add_argument(
        "--no-save",
        action="store_true",
        help="Do not write snapshots to disk (evaluation mode).",
    )
    parser.add_argument(
        "--realtime",
        action="store_true",
        help="Tick at the live cadence instead of as fast as possible.",
    )

    args = parser.parse_args(argv)
    kwargs = dict(
        episodes=args.episodes,
        mode=args.mode,
        weeks=args.weeks,
        density=args.density,
        counts_file=args.counts_file,
        first_day=args.first_day,
        seed=args.seed,
        max_ticks=args.max_ticks,
        log_jsonl=args.log_jsonl,
        state_dir=args.state_dir,
        codec=args.codec,
        keep=args.keep,
        no_save=args.no_save,
        reset_memory=args.reset_memory,
        realtime=args.realtime,
    )

    if args.profile:
        profiler = cProfile.Profile()
        profiler.enable()
        rc = run(**kwargs)
        profiler.disable()
        stats = pstats.Stats(profiler).sort_stats("cumulative")
        print("\n=== Profiling Results ===")
        stats.print_stats(30)
        return rc

    return run(**kwargs)
