from typing import Annotated, Dict, List, Literal, Optional, Tuple, Union
from pydantic import BaseModel, Field, field_validator

GRID: int = 5  # ビル 5x5
NODE: int = GRID - 1  # 交差点 4x4
UNIT_COUNT = 3
ACTIONS_PER_TURN = 3
MAX_TURN = 11

IMPOSSIBLE_PENALTY = 0.02
CHATTER_THRESHOLD = 55
CHATTER_FALSE_RATE = 0.7
CONFIDENCE_MIN = 35
CONFIDENCE_MAX = 95

Side = Literal["pursuer", "evader"]
Control = Literal["human", "ai"]
Phase = Literal["setup", "pursuer", "evader", "end"]
Mode = Literal["move", "search"]
Winner = Literal["pursuer", "evader", "undetermined"]
Quadrant = Literal["NW", "NE", "SW", "SE"]
TraceColor = Literal["gold", "orange", "gray"]


class Cell(BaseModel, frozen=True):
    """ビル（捜索対象のブロック）"""
    row: int = Field(ge=0, lt=GRID)
    col: int = Field(ge=0, lt=GRID)

    def __lt__(self, other):
        if not isinstance(other, Cell):
            return NotImplemented
        return (self.row, self.col) < (other.row, other.col)

    def __str__(self) -> str:
        return f"({self.row},{self.col})"

    @staticmethod
    def new(p1: 'int|tuple[int,int]|Cell', p2: int | None = None) -> 'Cell':
        if isinstance(p1, Cell):
            return Cell(row=p1.row, col=p1.col)
        elif isinstance(p1, (tuple, list)) and len(p1) == 2:
            return Cell(row=p1[0], col=p1[1])
        elif isinstance(p1, int) and isinstance(p2, int):
            return Cell(row=p1, col=p2)
        else:
            raise TypeError(f"invalid parameters to Cell.new {p1}, {p2}")


class Node(BaseModel, frozen=True):
    """交差点（ヘリの位置）"""
    row: int = Field(ge=0, lt=NODE)
    col: int = Field(ge=0, lt=NODE)

    def __lt__(self, other):
        if not isinstance(other, Node):
            return NotImplemented
        return (self.row, self.col) < (other.row, other.col)

    def __str__(self) -> str:
        return f"<{self.row},{self.col}>"

    @staticmethod
    def new(p1: 'int|tuple[int,int]|Node', p2: int | None = None) -> 'Node':
        if isinstance(p1, Node):
            return Node(row=p1.row, col=p1.col)
        elif isinstance(p1, (tuple, list)) and len(p1) == 2:
            return Node(row=p1[0], col=p1[1])
        elif isinstance(p1, int) and isinstance(p2, int):
            return Node(row=p1, col=p2)
        else:
            raise TypeError(f"invalid parameters to Node.new {p1}, {p2}")


class UnitState(BaseModel, frozen=True):
    index: int
    node: Node
    acted: bool = False


class SearchMark(BaseModel, frozen=True):
    turn: int
    cell: Cell
    unit: int


class ChatterLine(BaseModel, frozen=True):
    """無線の傍受ログ（犯人側に見える）"""
    turn: int
    quadrant: Quadrant
    confidence: int
    truthful: bool
    message: str


class Handoff(BaseModel, frozen=True):
    pending_viewer: Side
    message: str


class MatchConfig(BaseModel, frozen=True):
    pursuer: Control = "human"
    evader: Control = "ai"
    evader_delays_ms: Tuple[int, ...] = (600, 900, 1200, 1500)
    pursuer_stagger_ms: int = 350
    rand_seed: Optional[int] = None

    @field_validator("evader_delays_ms")
    @classmethod
    def _delays_not_empty(cls, v: Tuple[int, ...]) -> Tuple[int, ...]:
        if not v or any(d < 0 for d in v):
            raise ValueError("evader_delays_ms must hold at least one non-negative delay")
        return v

    @property
    def pass_and_play(self) -> bool:
        return self.pursuer == "human" and self.evader == "human"

    def control_of(self, side: Side) -> Control:
        return self.pursuer if side == "pursuer" else self.evader


# === Actions ===
# 各フェーズで受け付けるアクションは turn.py の表で閉じている

class PlaceUnit(BaseModel, frozen=True):
    kind: Literal["place_unit"] = "place_unit"
    node: Node


class RemoveUnit(BaseModel, frozen=True):
    kind: Literal["remove_unit"] = "remove_unit"
    node: Node


class ClearUnits(BaseModel, frozen=True):
    kind: Literal["clear_units"] = "clear_units"


class StartMatch(BaseModel, frozen=True):
    kind: Literal["start_match"] = "start_match"
    evader_start: Optional[Cell] = None


class SelectUnit(BaseModel, frozen=True):
    kind: Literal["select_unit"] = "select_unit"
    unit: int


class MoveUnit(BaseModel, frozen=True):
    kind: Literal["move_unit"] = "move_unit"
    node: Node
    unit: Optional[int] = None  # None: 選択中のヘリ


class EnterSearchMode(BaseModel, frozen=True):
    kind: Literal["enter_search_mode"] = "enter_search_mode"


class CancelSearchMode(BaseModel, frozen=True):
    kind: Literal["cancel_search_mode"] = "cancel_search_mode"


class SearchCell(BaseModel, frozen=True):
    kind: Literal["search_cell"] = "search_cell"
    cell: Cell
    unit: Optional[int] = None  # None: 選択中のヘリ


class EndPursuerTurn(BaseModel, frozen=True):
    kind: Literal["end_pursuer_turn"] = "end_pursuer_turn"


class EvaderMove(BaseModel, frozen=True):
    kind: Literal["evader_move"] = "evader_move"
    cell: Cell


Action = Annotated[
    Union[
        PlaceUnit, RemoveUnit, ClearUnits, StartMatch,
        SelectUnit, MoveUnit, EnterSearchMode, CancelSearchMode, SearchCell, EndPursuerTurn,
        EvaderMove,
    ],
    Field(discriminator="kind"),
]

EVADER_ACTIONS = (EvaderMove,)


class EvidenceStore(BaseModel, frozen=True):
    """犯人の滞在履歴と、捜索で暴かれた痕跡"""
    visits: Dict[Cell, Tuple[int, ...]] = {}
    revealed: frozenset[Cell] = frozenset()


class GameState(BaseModel, frozen=True):
    config: MatchConfig = MatchConfig()
    phase: Phase = "setup"
    turn: int = 1
    budget: int = ACTIONS_PER_TURN
    units: Tuple[UnitState, ...] = ()
    selected: Optional[int] = None
    mode: Mode = "move"
    evader: Optional[Cell] = None  # secret
    evidence: EvidenceStore = EvidenceStore()
    searched: frozenset[Cell] = frozenset()
    marks: Tuple[SearchMark, ...] = ()
    path: Tuple[Cell, ...] = ()
    chatter: Tuple[ChatterLine, ...] = ()
    log: Tuple[str, ...] = ()
    winner: Winner = "undetermined"

    def occupied_nodes(self, *, exclude: int | None = None) -> set[Node]:
        return {u.node for u in self.units if u.index != exclude}


# === Per-viewer payloads ===

class UnitPayload(BaseModel):
    index: int
    row: int
    col: int
    acted: bool


class TracePayload(BaseModel):
    row: int
    col: int
    first_seen: int
    color: TraceColor


class MarkPayload(BaseModel):
    turn: int
    row: int
    col: int
    unit: int


class PursuerView(BaseModel):
    phase: Phase
    turn: int
    budget: int
    units: List[UnitPayload] = []
    selected: Optional[int] = None
    mode: Mode = "move"
    traces: List[TracePayload] = []
    searched: List[Cell] = []
    marks: List[MarkPayload] = []
    log: List[str] = []
    winner: Winner = "undetermined"


class EvaderView(BaseModel):
    phase: Phase
    turn: int
    position: Optional[Cell] = None
    visited: List[Cell] = []
    legal_moves: List[Cell] = []
    units: List[UnitPayload] = []
    marks: List[MarkPayload] = []
    chatter: List[str] = []
    log: List[str] = []
    winner: Winner = "undetermined"


class ReviewView(BaseModel):
    turn: int
    winner: Winner
    path: List[Cell] = []
    traces: List[TracePayload] = []


class MatchListItem(BaseModel):
    match_id: str
    phase: Phase
    turn: int
    winner: Winner
    created_at: int
    config: Optional[MatchConfig] = None
