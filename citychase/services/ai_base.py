import random
from abc import ABC, abstractmethod
from typing import Optional

from citychase.schemas import Action, GameState, MatchConfig, Side

"""AIの思考ルーチンを実装するための抽象クラス"""
class AIPlayerABC(ABC):
    """AIの思考ルーチンを実装するための抽象クラス

    コントローラから手番ごとに呼ばれ、エンジンに渡すアクションを1つ返す。
    状態は書き換えない。
    """
    side: Side = "pursuer"

    def __init__(self, name: str = "CPU"):
        self.name = name

    def is_turn(self, state: GameState) -> bool:
        return state.phase == self.side

    def delay_ms(self, config: MatchConfig, rng: random.Random) -> int:
        """次のアクションまでの「考え中」時間"""
        return 0

    @abstractmethod
    def think(self, state: GameState, rng: random.Random) -> Optional[Action]:
        """思考ルーチンを実装するための抽象メソッド（None は打つ手なし）"""
        ...
