from citychase.schemas import Cell, EvidenceStore, TraceColor


def stamp_visit(store: EvidenceStore, cell: Cell, turn: int) -> EvidenceStore:
    """犯人の滞在を記録した新しいストアを返す（追記のみ）。"""
    turns = store.visits.get(cell, ())
    if turn in turns:
        return store
    visits = dict(store.visits)
    visits[cell] = turns + (turn,)
    return store.model_copy(update={"visits": visits})


def first_seen(store: EvidenceStore, cell: Cell) -> int | None:
    turns = store.visits.get(cell)
    if not turns:
        return None
    return min(turns)


def has_record(store: EvidenceStore, cell: Cell, turn: int) -> bool:
    """turn 時点までに cell への滞在記録があるか"""
    return any(t <= turn for t in store.visits.get(cell, ()))


def reveal(store: EvidenceStore, cell: Cell, turn: int) -> tuple[EvidenceStore, bool]:
    """
    捜索で痕跡を暴く。
    戻り値: (新しいストア, 今回新たに暴いたか)
    """
    if cell in store.revealed or not has_record(store, cell, turn):
        return store, False
    return store.model_copy(update={"revealed": store.revealed | {cell}}), True


def visited_cells(store: EvidenceStore) -> frozenset[Cell]:
    return frozenset(c for c, turns in store.visits.items() if turns)


def revealed_evidence(store: EvidenceStore) -> list[tuple[Cell, int]]:
    """捜索側が知り得る (セル, 最初に滞在したターン) の一覧"""
    result = []
    for cell in sorted(store.revealed):
        t = first_seen(store, cell)
        if t is not None:
            result.append((cell, t))
    return result


def trace_color(visit_turn: int) -> TraceColor:
    if visit_turn == 1:
        return "gold"
    if visit_turn == 6:
        return "orange"
    return "gray"
