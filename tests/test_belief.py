import random

import pytest

from citychase.schemas import MAX_TURN, Cell, MatchConfig, MoveUnit, Node, PlaceUnit, SearchCell, StartMatch
from citychase.services.belief import (
    best_search_target,
    chatter_hint,
    choose_deployment,
    compute_heat,
    confidence,
    plan_pursuer_action,
    step_toward,
    top_quadrant,
)
from citychase.services.board import all_cells, all_nodes
from citychase.services.turn import new_game, pursuer_view, transition


def test_uniform_heat_without_evidence():
    heat = compute_heat([], turn=5)
    assert len(heat) == 25
    assert all(v == 1.0 for v in heat.values())
    assert confidence(heat) == 35


@pytest.mark.parametrize("evidence,turn", [
    ([(Cell.new(0, 0), 1)], 3),
    ([(Cell.new(2, 2), 2), (Cell.new(2, 3), 3)], 6),
    ([(Cell.new(4, 4), 1), (Cell.new(0, 0), 9)], 11),
    ([(Cell.new(1, 1), 4)], 4),
])
def test_heat_is_normalised(evidence, turn):
    heat = compute_heat(evidence, turn)
    assert max(heat.values()) == pytest.approx(1.0)
    assert min(heat.values()) > 0.0


def test_unreachable_cells_are_penalised():
    heat = compute_heat([(Cell.new(0, 0), 1)], turn=3)
    # 2ターンでちょうど届く距離が最も高い
    assert heat[Cell.new(1, 1)] == pytest.approx(1.0)
    assert heat[Cell.new(0, 2)] == pytest.approx(1.0)
    assert heat[Cell.new(0, 1)] < 1.0
    # 届かないセルと、再訪になるセルはほぼゼロ
    assert heat[Cell.new(4, 4)] < 0.01
    assert heat[Cell.new(0, 0)] < 0.01
    assert confidence(heat) >= 55
    assert top_quadrant(heat) == "NW"


def test_recent_sightings_weigh_more():
    old = compute_heat([(Cell.new(0, 0), 1), (Cell.new(4, 4), 5)], turn=6)
    # 新しい痕跡の周辺が最も熱い
    assert old[Cell.new(4, 3)] > old[Cell.new(0, 1)]


def test_chatter_is_truthful_on_final_turn():
    heat = compute_heat([], turn=MAX_TURN)
    assert confidence(heat) < 55
    for seed in range(60):
        line = chatter_hint(heat, MAX_TURN, random.Random(seed))
        assert line.truthful
        assert line.quadrant == top_quadrant(heat)
        assert line.turn == MAX_TURN


def test_chatter_may_lie_when_unsure():
    heat = compute_heat([], turn=4)
    lines = [chatter_hint(heat, 4, random.Random(seed)) for seed in range(60)]
    lies = [l for l in lines if not l.truthful]
    assert lies
    assert len(lies) < len(lines)
    for l in lies:
        assert l.quadrant != top_quadrant(heat)
    for l in lines:
        assert l.truthful == (l.quadrant == top_quadrant(heat))


def test_chatter_is_truthful_when_confident():
    heat = compute_heat([(Cell.new(0, 0), 1)], turn=3)
    for seed in range(40):
        assert chatter_hint(heat, 3, random.Random(seed)).truthful


def test_search_target_prefers_unsearched_cells():
    heat = compute_heat([], turn=2)
    searched = {Cell.new(0, 0), Cell.new(0, 1), Cell.new(1, 0)}
    for seed in range(20):
        assert best_search_target(heat, Node.new(0, 0), searched, random.Random(seed)) == Cell.new(1, 1)


def test_search_target_prefers_heat():
    heat = {c: 0.1 for c in all_cells()}
    heat[Cell.new(1, 0)] = 1.0
    target = best_search_target(heat, Node.new(0, 0), {Cell.new(1, 0)}, random.Random(1))
    assert target == Cell.new(1, 0)


def test_step_toward_avoids_occupied_nodes():
    target = Cell.new(3, 3)
    assert step_toward(Node.new(0, 0), target, []) == Node.new(0, 1)
    assert step_toward(Node.new(0, 0), target, [Node.new(0, 1)]) == Node.new(1, 0)
    assert step_toward(Node.new(0, 0), target, [Node.new(0, 1), Node.new(1, 0)]) is None
    # 近い方が塞がれていても、遠ざかる手で動く（止まらない）
    assert step_toward(Node.new(1, 1), Cell.new(0, 0), [Node.new(0, 1), Node.new(1, 0)]) in (
        Node.new(2, 1), Node.new(1, 2),
    )


def test_deployment_is_three_distinct_nodes():
    for seed in range(10):
        nodes = choose_deployment(random.Random(seed))
        assert len(nodes) == 3
        assert len(set(nodes)) == 3
        assert all(n in all_nodes() for n in nodes)


def _started_state():
    rng = random.Random(7)
    state = new_game(MatchConfig(pursuer="ai", evader="human"))
    for rc in ((0, 0), (3, 3), (0, 3)):
        state = transition(state, PlaceUnit(node=Node.new(rc)), rng)
    return transition(state, StartMatch(evader_start=Cell.new(4, 0)), rng), rng


def test_plan_uses_units_in_index_order_and_never_passes():
    state, rng = _started_state()
    for expected in range(3):
        action = plan_pursuer_action(pursuer_view(state), rng)
        assert isinstance(action, (MoveUnit, SearchCell))
        assert action.unit == expected
        nxt = transition(state, action, rng)
        assert nxt is not state, f"illegal planned action {action}"
        if nxt.phase != "pursuer":
            break
        assert nxt.budget == state.budget - 1
        state = nxt


def test_plan_returns_none_outside_pursuer_turn():
    state = new_game(MatchConfig(pursuer="ai", evader="human"))
    assert plan_pursuer_action(pursuer_view(state), random.Random(0)) is None
