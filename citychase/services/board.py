from functools import lru_cache
from citychase.schemas import GRID, NODE, Cell, Node, Quadrant

_DELTAS = ((-1, 0), (+1, 0), (0, -1), (0, +1))


@lru_cache(maxsize=None)
def all_cells() -> tuple[Cell, ...]:
    return tuple(Cell(row=r, col=c) for r in range(GRID) for c in range(GRID))


@lru_cache(maxsize=None)
def all_nodes() -> tuple[Node, ...]:
    return tuple(Node(row=r, col=c) for r in range(NODE) for c in range(NODE))


@lru_cache(maxsize=None)
def cell_neighbors(cell: Cell) -> tuple[Cell, ...]:
    """上下左右で隣接するビル（盤外は除く）"""
    result = []
    for dr, dc in _DELTAS:
        r, c = cell.row + dr, cell.col + dc
        if 0 <= r < GRID and 0 <= c < GRID:
            result.append(Cell(row=r, col=c))
    return tuple(result)


@lru_cache(maxsize=None)
def node_neighbors(node: Node) -> tuple[Node, ...]:
    """上下左右で隣接する交差点（盤外は除く）"""
    result = []
    for dr, dc in _DELTAS:
        r, c = node.row + dr, node.col + dc
        if 0 <= r < NODE and 0 <= c < NODE:
            result.append(Node(row=r, col=c))
    return tuple(result)


@lru_cache(maxsize=None)
def surrounding_cells(node: Node) -> tuple[Cell, ...]:
    """交差点を囲む2x2のビル。ヘリが捜索できるのはこの4つだけ。"""
    r, c = node.row, node.col
    return (
        Cell(row=r, col=c),
        Cell(row=r, col=c + 1),
        Cell(row=r + 1, col=c),
        Cell(row=r + 1, col=c + 1),
    )


def is_cell_adjacent(a: Cell, b: Cell) -> bool:
    return manhattan(a, b) == 1


def is_node_adjacent(a: Node, b: Node) -> bool:
    return abs(a.row - b.row) + abs(a.col - b.col) == 1


def manhattan(a: Cell, b: Cell) -> int:
    return abs(a.row - b.row) + abs(a.col - b.col)


def center_distance(cell: Cell) -> int:
    mid = GRID // 2
    return abs(cell.row - mid) + abs(cell.col - mid)


def node_cell_distance(node: Node, cell: Cell) -> float:
    """
    交差点の中心 (row+0.5, col+0.5) からビルまでのマンハッタン距離。
    囲んでいるビルなら 1.0 になる。
    """
    return abs(node.row + 0.5 - cell.row) + abs(node.col + 0.5 - cell.col)


def quadrant_of(cell: Cell) -> Quadrant:
    # 中央の行・列は北・西側に含める
    north = cell.row * 2 < GRID
    west = cell.col * 2 < GRID
    if north:
        return "NW" if west else "NE"
    return "SW" if west else "SE"
