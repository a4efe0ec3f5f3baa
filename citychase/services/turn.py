import os
import random
import sys
from typing import Callable, Optional

from citychase.schemas import (
    ACTIONS_PER_TURN,
    MAX_TURN,
    UNIT_COUNT,
    Action,
    CancelSearchMode,
    Cell,
    ClearUnits,
    EndPursuerTurn,
    EnterSearchMode,
    EvaderMove,
    EvaderView,
    EvidenceStore,
    GameState,
    MarkPayload,
    MatchConfig,
    MoveUnit,
    Node,
    Phase,
    PlaceUnit,
    PursuerView,
    RemoveUnit,
    ReviewView,
    SearchCell,
    SearchMark,
    SelectUnit,
    StartMatch,
    TracePayload,
    UnitPayload,
    UnitState,
)
from citychase.services.belief import chatter_hint, compute_heat
from citychase.services.board import all_cells, node_neighbors, surrounding_cells
from citychase.services.escape import escape_candidates
from citychase.services.evidence import (
    first_seen,
    reveal,
    revealed_evidence,
    stamp_visit,
    trace_color,
    visited_cells,
)

# Debug flag: enable when running tests or when env var CITYCHASE_DEBUG is set
DEBUG = bool(os.getenv('CITYCHASE_DEBUG')) or ('unittest' in sys.modules) or ('PYTEST_CURRENT_TEST' in os.environ)


def _dbg(*args, **kwargs):
    if DEBUG:
        print(*args, **kwargs)


Handler = Callable[[GameState, Action, random.Random], Optional[GameState]]

SETUP_PROMPT = f"Place {UNIT_COUNT} units on the intersections"


def new_game(config: MatchConfig | None = None) -> GameState:
    return GameState(config=config or MatchConfig(), log=(SETUP_PROMPT,))


# ---------- legality ----------

def legal_unit_moves(state: GameState, index: int) -> list[Node]:
    if state.phase != "pursuer" or state.budget <= 0:
        return []
    if not 0 <= index < len(state.units):
        return []
    unit = state.units[index]
    if unit.acted:
        return []
    occupied = state.occupied_nodes(exclude=index)
    return [n for n in node_neighbors(unit.node) if n not in occupied]


def legal_searches(state: GameState, index: int) -> list[Cell]:
    if state.phase != "pursuer" or state.budget <= 0:
        return []
    if not 0 <= index < len(state.units):
        return []
    unit = state.units[index]
    if unit.acted:
        return []
    return list(surrounding_cells(unit.node))


def legal_evader_moves(state: GameState) -> list[Cell]:
    if state.evader is None:
        return []
    return escape_candidates(state.evader, visited_cells(state.evidence))


def _resolve_unit(state: GameState, requested: int | None) -> int | None:
    index = requested if requested is not None else state.selected
    if index is None or not 0 <= index < len(state.units):
        return None
    return index


def _with_unit(state: GameState, index: int, **update) -> tuple[UnitState, ...]:
    return tuple(u.model_copy(update=update) if u.index == index else u for u in state.units)


# ---------- setup ----------

def _place_unit(state: GameState, action: PlaceUnit, rng: random.Random) -> GameState | None:
    if len(state.units) >= UNIT_COUNT or action.node in state.occupied_nodes():
        return None
    units = state.units + (UnitState(index=len(state.units), node=action.node),)
    left = UNIT_COUNT - len(units)
    return state.model_copy(update={
        "units": units,
        "log": state.log + (f"Unit {len(units)} placed at {action.node} ({left} left)",),
    })


def _remove_unit(state: GameState, action: RemoveUnit, rng: random.Random) -> GameState | None:
    if action.node not in state.occupied_nodes():
        return None
    kept = [u.node for u in state.units if u.node != action.node]
    units = tuple(UnitState(index=i, node=n) for i, n in enumerate(kept))
    left = UNIT_COUNT - len(units)
    return state.model_copy(update={
        "units": units,
        "log": state.log + (f"Unit removed from {action.node} ({left} left)",),
    })


def _clear_units(state: GameState, action: ClearUnits, rng: random.Random) -> GameState | None:
    if not state.units:
        return None
    return state.model_copy(update={"units": (), "log": state.log + (SETUP_PROMPT,)})


def _start_match(state: GameState, action: StartMatch, rng: random.Random) -> GameState | None:
    if len(state.units) != UNIT_COUNT:
        return None
    if state.config.evader == "ai":
        # 犯人AIの初期位置は全25マスから一様に選ぶ
        start = rng.choice(all_cells())
    else:
        start = action.evader_start
        if start is None:
            return None
    started = state.model_copy(update={
        "phase": "pursuer",
        "turn": 1,
        "evader": start,
        "evidence": stamp_visit(EvidenceStore(), start, 1),
        "searched": frozenset(),
        "path": (start,),
        "chatter": (),
        "winner": "undetermined",
        "log": state.log + ("The criminal went into hiding...",),
    })
    return _begin_pursuer_turn(started, rng)


# ---------- pursuer turn ----------

def _begin_pursuer_turn(state: GameState, rng: random.Random) -> GameState:
    heat = compute_heat(revealed_evidence(state.evidence), state.turn)
    line = chatter_hint(heat, state.turn, rng)
    return state.model_copy(update={
        "phase": "pursuer",
        "budget": ACTIONS_PER_TURN,
        "units": tuple(u.model_copy(update={"acted": False}) for u in state.units),
        "selected": None,
        "mode": "move",
        "marks": (),
        "chatter": state.chatter + (line,),
    })


def _end_pursuer_turn(state: GameState) -> GameState:
    if state.turn >= MAX_TURN:
        return state.model_copy(update={
            "phase": "end",
            "winner": "evader",
            "selected": None,
            "mode": "move",
            "log": state.log + (f"T{state.turn}: survived {MAX_TURN} turns - the criminal wins",),
        })
    if not legal_evader_moves(state):
        # 袋小路に追い込まれた犯人は逮捕扱い
        return state.model_copy(update={
            "phase": "end",
            "winner": "pursuer",
            "selected": None,
            "mode": "move",
            "log": state.log + (f"T{state.turn}: the criminal is boxed in - the police win",),
        })
    return state.model_copy(update={
        "phase": "evader",
        "selected": None,
        "mode": "move",
        "log": state.log + (f"T{state.turn}: police turn over",),
    })


def _spend(state: GameState, **update) -> GameState:
    spent = state.model_copy(update={**update, "budget": state.budget - 1, "mode": "move"})
    if spent.budget == 0:
        return _end_pursuer_turn(spent)
    return spent


def _select_unit(state: GameState, action: SelectUnit, rng: random.Random) -> GameState | None:
    if not 0 <= action.unit < len(state.units):
        return None
    return state.model_copy(update={"selected": action.unit, "mode": "move"})


def _enter_search_mode(state: GameState, action: EnterSearchMode, rng: random.Random) -> GameState | None:
    if state.selected is None or not legal_searches(state, state.selected):
        return None
    return state.model_copy(update={"mode": "search"})


def _cancel_search_mode(state: GameState, action: CancelSearchMode, rng: random.Random) -> GameState | None:
    if state.mode != "search":
        return None
    return state.model_copy(update={"mode": "move"})


def _move_unit(state: GameState, action: MoveUnit, rng: random.Random) -> GameState | None:
    index = _resolve_unit(state, action.unit)
    if index is None or action.node not in legal_unit_moves(state, index):
        return None
    return _spend(
        state,
        units=_with_unit(state, index, node=action.node, acted=True),
        log=state.log + (f"T{state.turn}: unit {index + 1} moved to {action.node}",),
    )


def _search_cell(state: GameState, action: SearchCell, rng: random.Random) -> GameState | None:
    index = _resolve_unit(state, action.unit)
    if index is None or action.cell not in legal_searches(state, index):
        return None
    units = _with_unit(state, index, acted=True)
    marks = state.marks + (SearchMark(turn=state.turn, cell=action.cell, unit=index),)
    searched = state.searched | {action.cell}

    if action.cell == state.evader:
        return state.model_copy(update={
            "units": units,
            "marks": marks,
            "searched": searched,
            "budget": state.budget - 1,
            "phase": "end",
            "winner": "pursuer",
            "selected": None,
            "mode": "move",
            "log": state.log + (f"T{state.turn}: unit {index + 1} searched {action.cell} - ARREST! The police win",),
        })

    evidence, found = reveal(state.evidence, action.cell, state.turn)
    if found:
        line = f"T{state.turn}: unit {index + 1} searched {action.cell} - trace found (T{first_seen(evidence, action.cell)})"
    else:
        line = f"T{state.turn}: unit {index + 1} searched {action.cell} - nothing new"
    return _spend(state, units=units, marks=marks, searched=searched, evidence=evidence, log=state.log + (line,))


def _end_turn_action(state: GameState, action: EndPursuerTurn, rng: random.Random) -> GameState | None:
    return _end_pursuer_turn(state)


# ---------- evader turn ----------

def _evader_move(state: GameState, action: EvaderMove, rng: random.Random) -> GameState | None:
    if action.cell not in legal_evader_moves(state):
        return None
    turn = state.turn + 1
    moved = state.model_copy(update={
        "turn": turn,
        "evader": action.cell,
        "evidence": stamp_visit(state.evidence, action.cell, turn),
        "path": state.path + (action.cell,),
        "log": state.log + (f"T{turn}: the criminal moved...",),
    })
    return _begin_pursuer_turn(moved, rng)


_HANDLERS: dict[Phase, dict[type, Handler]] = {
    "setup": {
        PlaceUnit: _place_unit,
        RemoveUnit: _remove_unit,
        ClearUnits: _clear_units,
        StartMatch: _start_match,
    },
    "pursuer": {
        SelectUnit: _select_unit,
        MoveUnit: _move_unit,
        EnterSearchMode: _enter_search_mode,
        CancelSearchMode: _cancel_search_mode,
        SearchCell: _search_cell,
        EndPursuerTurn: _end_turn_action,
    },
    "evader": {
        EvaderMove: _evader_move,
    },
    "end": {},
}


def transition(state: GameState, action: Action, rng: random.Random | None = None) -> GameState:
    """
    (state, action) から次の state を返す。
    不正な操作は無視し、同じ state オブジェクトをそのまま返す（例外は投げない）。
    """
    handler = _HANDLERS[state.phase].get(type(action))
    if handler is None:
        _dbg(f"[T{state.turn}] rejected {action.kind} in phase {state.phase}")
        return state
    nxt = handler(state, action, rng if rng is not None else random.Random())
    if nxt is None:
        _dbg(f"[T{state.turn}] rejected illegal {action.kind}")
        return state
    check_invariants(nxt)
    return nxt


def check_invariants(state: GameState) -> None:
    assert 0 <= state.budget <= ACTIONS_PER_TURN, f"budget out of range: {state.budget}"
    assert len(state.units) <= UNIT_COUNT, "too many units"
    if state.phase != "setup":
        assert len(state.units) == UNIT_COUNT, f"expected {UNIT_COUNT} units, got {len(state.units)}"
        assert state.evader is not None, "evader position missing"
        assert state.evader in state.evidence.visits, "evader cell has no visit record"
        assert len(state.path) == state.turn, "path length must follow the turn counter"
    if state.phase != "end":
        assert state.turn <= MAX_TURN, f"turn {state.turn} beyond cap"
        assert state.winner == "undetermined", "winner set before the end"
    else:
        assert state.winner != "undetermined", "ended without a winner"
    assert len({u.node for u in state.units}) == len(state.units), "two units share a node"
    for cell in state.evidence.revealed:
        assert state.evidence.visits.get(cell), f"revealed {cell} without a visit record"


# ---------- projections ----------

def _unit_payloads(state: GameState) -> list[UnitPayload]:
    return [UnitPayload(index=u.index, row=u.node.row, col=u.node.col, acted=u.acted) for u in state.units]


def _mark_payloads(state: GameState) -> list[MarkPayload]:
    return [MarkPayload(turn=m.turn, row=m.cell.row, col=m.cell.col, unit=m.unit) for m in state.marks]


def _trace_payloads(state: GameState, cells) -> list[TracePayload]:
    result = []
    for cell in sorted(cells):
        t = first_seen(state.evidence, cell)
        if t is not None:
            result.append(TracePayload(row=cell.row, col=cell.col, first_seen=t, color=trace_color(t)))
    return result


def pursuer_view(state: GameState) -> PursuerView:
    """警察側の表示用。犯人の現在地は含めない。"""
    return PursuerView(
        phase=state.phase,
        turn=state.turn,
        budget=state.budget,
        units=_unit_payloads(state),
        selected=state.selected,
        mode=state.mode,
        traces=_trace_payloads(state, state.evidence.revealed),
        searched=sorted(state.searched),
        marks=_mark_payloads(state),
        log=list(state.log),
        winner=state.winner,
    )


def evader_view(state: GameState) -> EvaderView:
    return EvaderView(
        phase=state.phase,
        turn=state.turn,
        position=state.evader,
        visited=sorted(visited_cells(state.evidence)),
        legal_moves=legal_evader_moves(state) if state.phase == "evader" else [],
        units=_unit_payloads(state),
        marks=_mark_payloads(state),
        chatter=[line.message for line in state.chatter],
        log=list(state.log),
        winner=state.winner,
    )


def review_view(state: GameState) -> ReviewView | None:
    """試合終了後の振り返り用。終了前は None。"""
    if state.phase != "end":
        return None
    return ReviewView(
        turn=state.turn,
        winner=state.winner,
        path=list(state.path),
        traces=_trace_payloads(state, state.evidence.visits.keys()),
    )
