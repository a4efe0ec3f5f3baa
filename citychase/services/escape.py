"""
犯人側の逃走プランナー

方針:
- 候補は隣接する未訪問のビル。
- 各候補について、残りターン分の自己回避経路が存在するかをバックトラックで全探索する
  （次の選択肢が少ないセルから試す）。
- 完走できる候補の中から「先の選択肢の多さ」と「中央への寄りやすさ」で順位付けする。
- 完走できる候補が無くても、合法手があるかぎり動く（stuck にはしない）。
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from citychase.schemas import MAX_TURN, Cell
from citychase.services.board import cell_neighbors, center_distance

CENTER_WEIGHT = 0.5


@dataclass
class EscapePlan:
    move: Optional[Cell] = None
    proven_safe: bool = False
    candidates: List[Cell] = field(default_factory=list)
    safe: List[Cell] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)

    @property
    def stuck(self) -> bool:
        return self.move is None


def escape_candidates(position: Cell, visited: Iterable[Cell]) -> list[Cell]:
    seen = set(visited)
    return [n for n in cell_neighbors(position) if n not in seen]


def onward_degree(cell: Cell, visited: set[Cell]) -> int:
    return sum(1 for n in cell_neighbors(cell) if n not in visited and n != cell)


def can_complete(cell: Cell, steps_remaining: int, visited: set[Cell]) -> bool:
    """
    cell から steps_remaining 手の自己回避移動が続けられるか。
    visited には cell 自身を含めておくこと。探索中に書き換えるが、戻る前に元に戻す。
    """
    if steps_remaining <= 0:
        return True
    options = [n for n in cell_neighbors(cell) if n not in visited]
    options.sort(key=lambda n: onward_degree(n, visited))
    for nxt in options:
        visited.add(nxt)
        try:
            if can_complete(nxt, steps_remaining - 1, visited):
                return True
        finally:
            visited.discard(nxt)
    return False


def rank_score(cell: Cell, visited: set[Cell]) -> float:
    # 次数が優先、中央寄りはタイブレーク程度 (< 1)
    return onward_degree(cell, visited | {cell}) + CENTER_WEIGHT / (1 + center_distance(cell))


def plan_escape(position: Cell, visited: Iterable[Cell], turn: int, max_turn: int = MAX_TURN) -> EscapePlan:
    seen = set(visited)
    seen.add(position)
    plan = EscapePlan()
    plan.candidates = escape_candidates(position, seen)
    if not plan.candidates:
        plan.logs.append(f"T{turn}: no unvisited neighbour of {position}")
        return plan

    steps = max_turn - turn - 1
    for cand in plan.candidates:
        trial = set(seen)
        trial.add(cand)
        if can_complete(cand, steps, trial):
            plan.safe.append(cand)

    pool = plan.safe
    if pool:
        plan.proven_safe = True
    else:
        pool = plan.candidates
        plan.logs.append(f"T{turn}: no candidate can finish {steps} more moves, moving anyway")

    ranked = sorted(pool, key=lambda c: (-rank_score(c, seen), c.row, c.col))
    plan.move = ranked[0]
    return plan
