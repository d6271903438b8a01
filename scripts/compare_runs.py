from __future__ import annotations

import argparse
from pathlib import Path

import pandas as pd


def describe(path: Path, label: str) -> None:
    if not path.exists():
        print(f"warning: {path} not found")
        return
    df = pd.read_json(path, lines=True)
    cols = [
        "score",
        "reward",
        "steps",
        "length",
        "states",
        "exploration",
    ]
    print(f"\n--- {label} ({path.name}) ---")
    print(df[cols].describe())
    episodes = len(df)
    successes = int(df["success"].sum())
    if episodes:
        rate = 100.0 * successes / episodes
        print(f"success rate: {rate:.2f}% ({successes} cleared / {episodes} episodes)")
    print("failure reasons:")
    print(df.loc[~df["success"], "reason"].value_counts().to_string())


def main() -> None:
    parser = argparse.ArgumentParser(description="Describe JSONL benchmark runs")
    parser.add_argument(
        "--train",
        type=Path,
        default=Path("runs/train_preset.jsonl"),
        help="Training log to summarize",
    )
    parser.add_argument(
        "--eval",
        type=Path,
        default=Path("runs/eval_preset.jsonl"),
        help="Evaluation log to summarize",
    )
    args = parser.parse_args()

    describe(args.train, "training")
    describe(args.eval, "evaluation")


if __name__ == "__main__":
    main()
