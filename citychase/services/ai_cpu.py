"""
CPU向けAI実装

- PursuerBot: 警察側。捜索側に見える情報（pursuer_view）だけから推論エンジンで1手ずつ決める。
- EvaderBot: 犯人側。逃走プランナーで袋小路に入らない手を選ぶ。
"""

from __future__ import annotations

import random
from typing import Optional

from citychase.schemas import EvaderMove, GameState, MatchConfig, PlaceUnit
from citychase.services.ai_base import AIPlayerABC
from citychase.services.belief import choose_deployment, plan_pursuer_action
from citychase.services.escape import EscapePlan, plan_escape
from citychase.services.evidence import visited_cells
from citychase.services.turn import pursuer_view


class PursuerBot(AIPlayerABC):
    """警察ボット: 1回の呼び出しで1機を動かす（移動か捜索、パスはしない）"""
    side = "pursuer"

    def __init__(self, name: str = "CPU(Police)"):
        super().__init__(name=name)

    def deploy(self, rng: random.Random) -> list[PlaceUnit]:
        return [PlaceUnit(node=n) for n in choose_deployment(rng)]

    def delay_ms(self, config: MatchConfig, rng: random.Random) -> int:
        return config.pursuer_stagger_ms

    def think(self, state: GameState, rng: random.Random):  # type: ignore[override]
        return plan_pursuer_action(pursuer_view(state), rng)


class EvaderBot(AIPlayerABC):
    side = "evader"

    def __init__(self, name: str = "CPU(Criminal)"):
        super().__init__(name=name)
        self.last_plan: Optional[EscapePlan] = None

    def delay_ms(self, config: MatchConfig, rng: random.Random) -> int:
        return rng.choice(config.evader_delays_ms)

    def think(self, state: GameState, rng: random.Random) -> Optional[EvaderMove]:  # type: ignore[override]
        if state.evader is None:
            return None
        plan = plan_escape(state.evader, visited_cells(state.evidence), state.turn)
        self.last_plan = plan
        if plan.stuck:
            return None
        return EvaderMove(cell=plan.move)
