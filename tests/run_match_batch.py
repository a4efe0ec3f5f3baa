#!/usr/bin/env python3
import sys,os
if __name__ == "__main__":
    sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import argparse
import json
from collections import Counter

from citychase.schemas import MatchConfig, Node
from citychase.services.match import MatchController


def run_one(seed: int, *, idle_police: bool = False) -> dict:
    """1試合を遅延なしで最後まで回して結果をまとめる

    idle_police: 警察は人間扱いで何もしない（犯人AIの逃げ切り確認用）
    """
    pursuer = "human" if idle_police else "ai"
    ctrl = MatchController(MatchConfig(pursuer=pursuer, evader="ai", rand_seed=seed))
    if idle_police:
        for rc in ((0, 0), (0, 1), (0, 2)):
            ctrl.place_unit(Node.new(rc))
    ctrl.start_match()
    while idle_police and ctrl.state.phase != "end":
        ctrl.end_pursuer_turn()
    state = ctrl.state
    return {
        "seed": seed,
        "winner": state.winner,
        "turn": state.turn,
        "path": [[c.row, c.col] for c in state.path],
        "traces": len(state.evidence.revealed),
    }


def main():
    ap = argparse.ArgumentParser(description="Run AI matches headless and summarise the results")
    ap.add_argument("--games", type=int, default=100, help="number of matches")
    ap.add_argument("--seed", type=int, default=0, help="first random seed")
    ap.add_argument("--idle-police", action="store_true", help="police never act; checks that the criminal always escapes")
    ap.add_argument("--out", type=str, default=None, help="write per-match results as JSONL")
    args = ap.parse_args()

    results = [run_one(args.seed + i, idle_police=args.idle_police) for i in range(args.games)]
    wins = Counter(r["winner"] for r in results)
    turns = [r["turn"] for r in results if r["winner"] == "pursuer"]
    summary = {
        "games": len(results),
        "pursuer": wins.get("pursuer", 0),
        "evader": wins.get("evader", 0),
        "avg_arrest_turn": round(sum(turns) / len(turns), 2) if turns else None,
    }
    if args.out:
        with open(args.out, "w", encoding="utf-8") as f:
            for r in results:
                f.write(json.dumps(r, ensure_ascii=False) + "\n")
    print(json.dumps(summary, ensure_ascii=False, indent=2))


if __name__ == "__main__":
    main()
