"""
警察側の推論エンジン

- 暴いた痕跡 (セル, 最初の滞在ターン) から全セルの「ヒート」（犯人がいそうな度合い）を計算する。
- ヒートから移動目標・捜索目標を決める。
- 犯人側に流れる無線（チャッター）を作る。自信が低いときはわざと嘘の方角を流す。

乱数はすべて引数の rng から取る。
"""

import math
import random
from typing import Iterable, Optional, Sequence

from citychase.schemas import (
    CHATTER_FALSE_RATE,
    CHATTER_THRESHOLD,
    CONFIDENCE_MAX,
    CONFIDENCE_MIN,
    IMPOSSIBLE_PENALTY,
    MAX_TURN,
    Cell,
    ChatterLine,
    MoveUnit,
    Node,
    PursuerView,
    Quadrant,
    SearchCell,
)
from citychase.services.board import (
    all_cells,
    manhattan,
    node_cell_distance,
    node_neighbors,
    quadrant_of,
    surrounding_cells,
)

Heat = dict[Cell, float]

FALLOFF = 1.5
FRESH_GAIN = 2.0
SEARCH_HEAT_WEIGHT = 2.0
UNSEARCHED_BONUS = 0.6
SEARCH_JITTER = 0.05
TARGET_JITTER = 1e-3
SEARCH_HEAT_THRESHOLD = 0.75

QUADRANT_NAMES: dict[Quadrant, str] = {
    "NW": "north-west",
    "NE": "north-east",
    "SW": "south-west",
    "SE": "south-east",
}

# 開始時のヘリ配置パターン
FORMATIONS: tuple[tuple[tuple[int, int], ...], ...] = (
    ((1, 1), (1, 2), (2, 1)),
    ((1, 2), (2, 1), (2, 2)),
    ((0, 1), (2, 0), (2, 3)),
    ((1, 0), (0, 3), (3, 2)),
    ((0, 0), (1, 2), (3, 1)),
)


def compute_heat(evidence: Sequence[tuple[Cell, int]], turn: int) -> Heat:
    """
    evidence: 暴いた痕跡 (セル, 最初の滞在ターン)
    turn: 現在のターン

    1手に1マスしか動けないので、痕跡から delta ターンで届かないセルは強く減衰させる。
    届くセルは「ちょうど移動しきった距離」付近ほど高くし、新しい痕跡ほど重く扱う。
    複数の痕跡は独立な制約として掛け合わせ、最大値が 1 になるよう正規化する。
    """
    cells = all_cells()
    if not evidence:
        return {c: 1.0 for c in cells}

    max_et = max(max(et for _, et in evidence), 1)
    scores: Heat = {}
    for p in cells:
        score = 1.0
        for ec, et in evidence:
            delta = max(0, turn - et)
            d = manhattan(p, ec)
            if d > delta or (d == 0 and delta > 0):
                # 届かない、または再訪（ルール上ありえない）
                score *= IMPOSSIBLE_PENALTY
                continue
            freshness = et / max_et
            slack = delta - d
            score *= 1.0 + FRESH_GAIN * freshness * math.exp(-slack / FALLOFF)
        scores[p] = score

    peak = max(scores.values())
    return {c: s / peak for c, s in scores.items()}


def peak_cell(heat: Heat) -> Cell:
    """ヒート最大のセル（同値は座標順で決定的に）"""
    return min(heat, key=lambda c: (-heat[c], c.row, c.col))


def best_move_target(heat: Heat, rng: random.Random) -> Cell:
    return max(heat, key=lambda c: heat[c] + rng.random() * TARGET_JITTER)


def best_search_target(heat: Heat, node: Node, searched: Iterable[Cell], rng: random.Random) -> Cell:
    done = set(searched)

    def score(c: Cell) -> float:
        bonus = UNSEARCHED_BONUS if c not in done else 0.0
        return SEARCH_HEAT_WEIGHT * heat[c] + bonus + rng.random() * SEARCH_JITTER

    return max(surrounding_cells(node), key=score)


def step_toward(node: Node, target: Cell, occupied: Iterable[Node]) -> Optional[Node]:
    """
    target に近づく隣接交差点を返す。塞がっていれば次善の交差点。
    どこにも動けなければ None（その場合は捜索で手番を消化する）。
    """
    blocked = set(occupied)
    ranked = sorted(node_neighbors(node), key=lambda n: (node_cell_distance(n, target), n.row, n.col))
    for n in ranked:
        if n not in blocked:
            return n
    return None


def confidence(heat: Heat) -> int:
    """ヒートの尖り具合（最大値 - 平均）から自信度 [35, 95] を出す"""
    values = list(heat.values())
    sharpness = max(values) - sum(values) / len(values)
    raw = CONFIDENCE_MIN + 60 * sharpness
    return int(round(max(CONFIDENCE_MIN, min(CONFIDENCE_MAX, raw))))


def top_quadrant(heat: Heat) -> Quadrant:
    return quadrant_of(peak_cell(heat))


def chatter_hint(heat: Heat, turn: int, rng: random.Random, max_turn: int = MAX_TURN) -> ChatterLine:
    """
    最終ターン前で自信が閾値未満なら、高確率で別の方角を流す（偽情報）。
    最終ターンは必ず本当の方角。
    """
    true_q = top_quadrant(heat)
    conf = confidence(heat)
    quadrant = true_q
    if turn < max_turn and conf < CHATTER_THRESHOLD:
        if rng.random() < CHATTER_FALSE_RATE:
            quadrant = rng.choice([q for q in QUADRANT_NAMES if q != true_q])
    name = QUADRANT_NAMES[quadrant]
    if conf >= 75:
        message = f"T{turn}: all units, suspect confirmed in the {name} blocks"
    elif conf >= CHATTER_THRESHOLD:
        message = f"T{turn}: tightening the net on the {name} blocks"
    else:
        message = f"T{turn}: unconfirmed sighting, {name} side"
    return ChatterLine(turn=turn, quadrant=quadrant, confidence=conf, truthful=quadrant == true_q, message=message)


def choose_deployment(rng: random.Random) -> list[Node]:
    formation = rng.choice(FORMATIONS)
    return [Node.new(rc) for rc in formation]


def plan_pursuer_action(view: PursuerView, rng: random.Random) -> SearchCell | MoveUnit | None:
    """
    警察の1アクションを決める（捜索側に見える情報のみ使用）。
    番号の若い未行動のヘリから順に動かし、パスはしない。
    """
    if view.phase != "pursuer" or view.budget <= 0:
        return None
    unit = next((u for u in sorted(view.units, key=lambda u: u.index) if not u.acted), None)
    if unit is None:
        return None

    evidence = [(Cell(row=t.row, col=t.col), t.first_seen) for t in view.traces]
    heat = compute_heat(evidence, view.turn)
    node = Node(row=unit.row, col=unit.col)
    target = best_move_target(heat, rng)
    search = best_search_target(heat, node, view.searched, rng)

    if target in surrounding_cells(node) or (evidence and heat[search] >= SEARCH_HEAT_THRESHOLD):
        return SearchCell(unit=unit.index, cell=search)

    occupied = [Node(row=u.row, col=u.col) for u in view.units if u.index != unit.index]
    step = step_toward(node, target, occupied)
    if step is None:
        return SearchCell(unit=unit.index, cell=search)
    return MoveUnit(unit=unit.index, node=step)
