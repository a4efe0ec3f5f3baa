import os
import random
import sys
import time
import uuid
from dataclasses import dataclass
from threading import Lock, RLock
from typing import Dict, Optional

from citychase.schemas import (
    EVADER_ACTIONS,
    Action,
    CancelSearchMode,
    Cell,
    ClearUnits,
    EndPursuerTurn,
    EnterSearchMode,
    EvaderMove,
    EvaderView,
    GameState,
    Handoff,
    MatchConfig,
    MatchListItem,
    MoveUnit,
    Node,
    Phase,
    PlaceUnit,
    PursuerView,
    RemoveUnit,
    ReviewView,
    SearchCell,
    SelectUnit,
    Side,
    StartMatch,
)
from citychase.services.ai_base import AIPlayerABC
from citychase.services.ai_cpu import EvaderBot, PursuerBot
from citychase.services.scheduler import ImmediateScheduler, ScheduledTask, SchedulerABC
from citychase.services.turn import evader_view, new_game, pursuer_view, review_view, transition
from citychase.utils.audit import match_write

# Debug flag: enable when running tests or when env var CITYCHASE_DEBUG is set
DEBUG = bool(os.getenv('CITYCHASE_DEBUG')) or ('unittest' in sys.modules) or ('PYTEST_CURRENT_TEST' in os.environ)


def _dbg(log_id: str | None, *args, **kwargs):
    """Debug helper: prints when DEBUG, always writes to match log.

    - print: 環境変数/テスト時のみ
    - file: `match_write` へ `{"type":"debug","msg":...}` を出力（best-effort）
    """
    if DEBUG:
        print(*args, **kwargs)
    msg = " ".join(str(a) for a in args)
    match_write(log_id, {"type": "debug", "msg": msg})


_AUDIT_TYPES = {
    "move_unit": "move",
    "search_cell": "search",
}


HANDOFF_MESSAGES: dict[Side, str] = {
    "pursuer": "Hand the device to the police player",
    "evader": "Hand the device to the criminal player",
}


@dataclass(frozen=True)
class Ticket:
    """遅延コールバックが古くなっていないかを判定する札"""
    generation: int
    turn: int
    phase: Phase
    budget: int


def _side_of(action: Action) -> Optional[Side]:
    if isinstance(action, EVADER_ACTIONS):
        return "evader"
    if isinstance(action, StartMatch):
        # 開始はどちらの人間プレイヤーからでも
        return None
    return "pursuer"


def _cell_xy(cell: Cell | None) -> list[int] | None:
    return [cell.row, cell.col] if cell is not None else None


class MatchController:
    """
    1試合分の進行役。
    - 唯一の可変参照として GameState を持ち、アクションを transition に渡す。
    - AI 側の手番では scheduler 経由で「考え中」の遅延を挟んでボットを呼ぶ。
    - 2人対戦（同じ端末）では手番交代ごとに handoff を立て、確認されるまで入力を止める。
    """

    def __init__(self,
                 config: MatchConfig | None = None,
                 *,
                 scheduler: SchedulerABC | None = None,
                 match_id: str | None = None,
                 log_id: str | None = None,
               ):
        self.match_id = match_id or str(uuid.uuid4())
        self.log_id = log_id
        self.config = config or MatchConfig()
        self.rng = random.Random(self.config.rand_seed)
        self.scheduler: SchedulerABC = scheduler or ImmediateScheduler()
        self.created_at = int(time.time())
        self.lock = RLock()
        self.bots: dict[Side, AIPlayerABC] = {}
        if self.config.pursuer == "ai":
            self.bots["pursuer"] = PursuerBot()
        if self.config.evader == "ai":
            self.bots["evader"] = EvaderBot()
        self.generation = 0
        self.handoff: Optional[Handoff] = None
        self.viewer: Optional[Side] = None
        self._pending: list[ScheduledTask] = []
        self.state: GameState = self._initial_state()

    def _initial_state(self) -> GameState:
        state = new_game(self.config)
        match_write(self.log_id, {
            "type": "match_bootstrap",
            "generation": self.generation,
            "config": self.config.model_dump(),
        })
        bot = self.bots.get("pursuer")
        if isinstance(bot, PursuerBot):
            for action in bot.deploy(self.rng):
                state = transition(state, action, self.rng)
            match_write(self.log_id, {
                "type": "setup",
                "origin": bot.name,
                "units": [[u.node.row, u.node.col] for u in state.units],
            })
        return state

    # --- human entry points ---

    def dispatch(self, action: Action) -> bool:
        """人間プレイヤーからの操作。受理されたら True。"""
        with self.lock:
            side = _side_of(action)
            if side is not None:
                if self.config.control_of(side) != "human":
                    _dbg(self.log_id, f"[{self.match_id}] {action.kind} rejected: {side} is AI-controlled")
                    return False
                if self.handoff is not None:
                    _dbg(self.log_id, f"[{self.match_id}] {action.kind} rejected: waiting for handoff")
                    return False
                if self.config.pass_and_play and self.viewer is not None and self.viewer != side:
                    _dbg(self.log_id, f"[{self.match_id}] {action.kind} rejected: {self.viewer} is holding the device")
                    return False
            return self._apply(action, origin="human")

    def place_unit(self, node: Node) -> bool:
        return self.dispatch(PlaceUnit(node=node))

    def remove_unit(self, node: Node) -> bool:
        return self.dispatch(RemoveUnit(node=node))

    def clear_units(self) -> bool:
        return self.dispatch(ClearUnits())

    def start_match(self, evader_start: Cell | None = None) -> bool:
        return self.dispatch(StartMatch(evader_start=evader_start))

    def select_unit(self, index: int) -> bool:
        return self.dispatch(SelectUnit(unit=index))

    def move_unit(self, node: Node, unit: int | None = None) -> bool:
        return self.dispatch(MoveUnit(node=node, unit=unit))

    def enter_search_mode(self) -> bool:
        return self.dispatch(EnterSearchMode())

    def cancel_search_mode(self) -> bool:
        return self.dispatch(CancelSearchMode())

    def search_cell(self, cell: Cell, unit: int | None = None) -> bool:
        return self.dispatch(SearchCell(cell=cell, unit=unit))

    def end_pursuer_turn(self) -> bool:
        return self.dispatch(EndPursuerTurn())

    def evader_move(self, cell: Cell) -> bool:
        return self.dispatch(EvaderMove(cell=cell))

    def acknowledge_handoff(self, viewer: Side | None = None) -> bool:
        with self.lock:
            if self.handoff is None:
                return False
            if viewer is not None and viewer != self.handoff.pending_viewer:
                return False
            self.viewer = self.handoff.pending_viewer
            self.handoff = None
            return True

    def reset(self) -> None:
        """試合を放棄して SETUP からやり直す。保留中の AI コールバックは全て無効になる。"""
        with self.lock:
            self._invalidate()
            match_write(self.log_id, {"type": "reset", "generation": self.generation, "turn": self.state.turn})
            self.handoff = None
            self.viewer = None
            self.state = self._initial_state()

    def close(self) -> None:
        with self.lock:
            self._invalidate()

    # --- read-only projections ---

    def pursuer_view(self) -> PursuerView:
        return pursuer_view(self.state)

    def evader_view(self) -> EvaderView | None:
        """犯人の現在地を含むので、人間の犯人プレイヤーが見ているときだけ返す"""
        state = self.state
        if state.phase != "end":
            if self.config.evader != "human":
                return None
            if self.config.pass_and_play and (self.handoff is not None or self.viewer != "evader"):
                return None
        return evader_view(state)

    def review_view(self) -> ReviewView | None:
        return review_view(self.state)

    def handoff_signal(self) -> Handoff | None:
        return self.handoff

    # --- internals ---

    def _invalidate(self) -> None:
        self.generation += 1
        for task in self._pending:
            task.cancel()
        self._pending = []

    def _ticket(self) -> Ticket:
        s = self.state
        return Ticket(generation=self.generation, turn=s.turn, phase=s.phase, budget=s.budget)

    def _apply(self, action: Action, *, origin: str) -> bool:
        prev = self.state
        nxt = transition(prev, action, self.rng)
        if nxt is prev:
            return False
        self.state = nxt
        self._audit(prev, nxt, action, origin)
        self._update_handoff(prev, nxt)
        self._schedule_ai()
        return True

    def _update_handoff(self, prev: GameState, nxt: GameState) -> None:
        if not self.config.pass_and_play:
            return
        if nxt.phase == "end":
            self.handoff = None
            self.viewer = None
        elif nxt.phase != prev.phase and nxt.phase in ("pursuer", "evader"):
            side: Side = "pursuer" if nxt.phase == "pursuer" else "evader"
            self.handoff = Handoff(pending_viewer=side, message=HANDOFF_MESSAGES[side])
            self.viewer = None

    def _schedule_ai(self) -> None:
        phase = self.state.phase
        if phase not in ("pursuer", "evader"):
            return
        bot = self.bots.get("pursuer" if phase == "pursuer" else "evader")
        if bot is None:
            return
        ticket = self._ticket()
        delay = bot.delay_ms(self.config, self.rng)
        self._pending = [t for t in self._pending if not t.done and not t.cancelled]
        task = self.scheduler.schedule(delay, lambda: self._run_bot(bot, ticket))
        if not task.done:
            self._pending.append(task)

    def _run_bot(self, bot: AIPlayerABC, ticket: Ticket) -> None:
        with self.lock:
            if ticket != self._ticket():
                _dbg(self.log_id, f"[{self.match_id}] stale {bot.side} callback dropped")
                match_write(self.log_id, {
                    "type": "stale_callback",
                    "side": bot.side,
                    "expected": [ticket.generation, ticket.turn, ticket.phase, ticket.budget],
                })
                return
            action = bot.think(self.state, self.rng)
            if action is not None and self._apply(action, origin=bot.name):
                return
            # 打つ手が無い／拒否された場合でも止まらないよう手番を進める
            _dbg(self.log_id, f"[{self.match_id}] {bot.name} could not act at T{self.state.turn}")
            if bot.side == "pursuer":
                self._apply(EndPursuerTurn(), origin=bot.name)

    def _audit(self, prev: GameState, nxt: GameState, action: Action, origin: str) -> None:
        record: dict = {"type": _AUDIT_TYPES.get(action.kind, action.kind), "turn": prev.turn, "origin": origin}
        if isinstance(action, (PlaceUnit, RemoveUnit, MoveUnit)):
            record["node"] = [action.node.row, action.node.col]
        if isinstance(action, (MoveUnit, SearchCell)):
            record["unit"] = action.unit if action.unit is not None else prev.selected
        if isinstance(action, SearchCell):
            record["cell"] = _cell_xy(action.cell)
            if nxt.winner == "pursuer" and nxt.phase == "end":
                record["type"] = "arrest"
            elif nxt.evidence.revealed != prev.evidence.revealed:
                record["type"] = "reveal"
        if isinstance(action, StartMatch):
            record["type"] = "match_start"
            record["evader_start"] = _cell_xy(nxt.evader)
            record["units"] = [[u.node.row, u.node.col] for u in nxt.units]
        if isinstance(action, EvaderMove):
            # 犯人の位置は監査ログにのみ残す
            record["cell"] = _cell_xy(action.cell)
        match_write(self.log_id, record)

        if prev.phase == "pursuer" and nxt.phase != "pursuer":
            match_write(self.log_id, {"type": "turn_end", "turn": prev.turn, "budget_left": nxt.budget})
            if nxt.winner == "pursuer" and record["type"] != "arrest":
                match_write(self.log_id, {"type": "stuck", "turn": nxt.turn, "cell": _cell_xy(nxt.evader)})
        if nxt.phase == "end" and prev.phase != "end":
            _dbg(self.log_id, f"[{self.match_id}] T{nxt.turn} match over: winner={nxt.winner}")
            match_write(self.log_id, {
                "type": "match_end",
                "turn": nxt.turn,
                "winner": nxt.winner,
                "path": [_cell_xy(c) for c in nxt.path],
            })


class MatchStore:
    def __init__(self) -> None:
        self._matches: Dict[str, MatchController] = {}
        self._lock = Lock()

    def create(self, config: MatchConfig | None = None, *, scheduler: SchedulerABC | None = None) -> MatchController:
        mid = str(uuid.uuid4())
        ctrl = MatchController(config, scheduler=scheduler, match_id=mid, log_id=mid)
        with self._lock:
            self._matches[mid] = ctrl
        return ctrl

    def get(self, match_id: str) -> MatchController:
        return self._matches[match_id]

    def list(self) -> list[MatchListItem]:
        with self._lock:
            items = list(self._matches.values())
        return [
            MatchListItem(
                match_id=m.match_id,
                phase=m.state.phase,
                turn=m.state.turn,
                winner=m.state.winner,
                created_at=m.created_at,
                config=m.config,
            )
            for m in items
        ]

    def remove(self, match_id: str) -> None:
        with self._lock:
            ctrl = self._matches.pop(match_id)
        ctrl.close()


store = MatchStore()
