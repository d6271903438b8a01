import argparse
import subprocess
import sys
from pathlib import Path

import pandas as pd


def run_command(cmd: list[str]) -> None:
    print(f">> {' '.join(cmd)}")
    subprocess.run(cmd, check=True)


def describe_jsonl(path: Path, label: str) -> None:
    if not path.exists():
        print(f"warning: {path} does not exist")
        return
    df = pd.read_json(path, lines=True)
    cols = ["score", "reward", "steps", "length", "states"]
    print(f"\n--- {label} ({path.name}) ---")
    print(df[cols].describe())
    print(f"success rate: {100.0 * df['success'].mean():.2f}%")


def main() -> None:
    parser = argparse.ArgumentParser(description="Run train+eval benchmark for the contribution snake")
    parser.add_argument(
        "--seed",
        type=int,
        default=42,
        help="Random seed to fix during the benchmark",
    )
    parser.add_argument(
        "--train-episodes",
        type=int,
        default=300,
        help="Number of episodes in the training run",
    )
    parser.add_argument(
        "--eval-episodes",
        type=int,
        default=100,
        help="Number of episodes in the evaluation run",
    )
    parser.add_argument(
        "--weeks",
        type=int,
        default=20,
        help="Board width in weeks",
    )
    parser.add_argument(
        "--state-dir",
        type=Path,
        default=Path("state/benchmark"),
        help="State directory used for both runs",
    )
    parser.add_argument(
        "--runs-dir",
        type=Path,
        default=Path("runs"),
        help="Where to emit JSONL telemetry files",
    )

    args = parser.parse_args()
    args.state_dir.mkdir(parents=True, exist_ok=True)
    args.runs_dir.mkdir(exist_ok=True)

    train_log = args.runs_dir / f"train_seed{args.seed}.jsonl"
    eval_log = args.runs_dir / f"eval_seed{args.seed}.jsonl"
    heuristic_log = args.runs_dir / f"heuristic_seed{args.seed}.jsonl"

    common = [
        "--seed",
        str(args.seed),
        "--weeks",
        str(args.weeks),
        "--state-dir",
        str(args.state_dir),
    ]
    cmd_train = [
        sys.executable,
        "-m",
        "contribsnake",
        "--mode",
        "learned",
        "--episodes",
        str(args.train_episodes),
        *common,
        "--log-jsonl",
        str(train_log),
    ]
    cmd_eval = [
        sys.executable,
        "-m",
        "contribsnake",
        "--mode",
        "learned",
        "--episodes",
        str(args.eval_episodes),
        *common,
        "--log-jsonl",
        str(eval_log),
        "--no-save",
    ]
    cmd_heuristic = [
        sys.executable,
        "-m",
        "contribsnake",
        "--mode",
        "heuristic",
        "--episodes",
        str(args.eval_episodes),
        *common,
        "--log-jsonl",
        str(heuristic_log),
        "--no-save",
    ]

    run_command(cmd_train)
    run_command(cmd_eval)
    run_command(cmd_heuristic)

    describe_jsonl(train_log, "training")
    describe_jsonl(eval_log, "evaluation")
    describe_jsonl(heuristic_log, "heuristic baseline")


if __name__ == "__main__":
    main()
