"""Shared test fixtures for pokerwars."""

import json
import re

import pytest

from pokerwars.agent import LLMAgent
from pokerwars.config import parse_config
from pokerwars.core.adapter import MockAdapter
from pokerwars.holdem.table import FULL_DECK, HoldemTable
from pokerwars.storage import RunStorage
from pokerwars.strategies import STRATEGIES


def make_config_dict(
    strategies=("always_call", "always_call"),
    starting_stack=500,
    blinds=((10, 20, 100),),
    seed=42,
    raise_cap=2,
    **tournament,
) -> dict:
    """Raw config mapping with one mock agent per seat."""
    agents = {f"bot{i}": {"provider": "mock", "strategy": s} for i, s in enumerate(strategies)}
    return {
        "tournament": {
            "name": "test-tourney",
            "starting_stack": starting_stack,
            "seed": seed,
            "raise_cap": raise_cap,
            "hand_delay_s": 0,
            **tournament,
        },
        "blind_structure": [
            {"small_blind": sb, "big_blind": bb, "hands_until_increase": n}
            for sb, bb, n in blinds
        ],
        "agents": agents,
        "seats": [{"index": i, "agent": f"bot{i}"} for i in range(len(strategies))],
        "compute_caps": {"timeout_s": 5.0, "max_tool_steps": 3},
    }


def make_config(**kwargs):
    return parse_config(make_config_dict(**kwargs))


class StackedTable(HoldemTable):
    """HoldemTable dealing a fixed card order: deal_order[0] is dealt first."""

    def __init__(self, deal_order, num_seats=10):
        super().__init__(num_seats)
        self._deal_order = list(deal_order)

    def _shuffled_deck(self, deck_seed):
        rest = [c for c in FULL_DECK if c not in self._deal_order]
        return rest + list(reversed(self._deal_order))


def reply(action, amount=None, reasoning="scripted"):
    return json.dumps({"action": action, "amount": amount, "reasoning": reasoning})


def legal_in(messages) -> list[str]:
    prompt = next(m["content"] for m in messages if m["role"] == "user")
    match = re.search(r"Legal Actions:\s*(.+)", prompt)
    return [a.strip() for a in match.group(1).split(",")]


def street_of(messages) -> str:
    prompt = next(m["content"] for m in messages if m["role"] == "user")
    return re.search(r"Community Cards: .*\((\w+)\)", prompt).group(1)


def fold_strategy(messages, context):
    return reply("check" if "check" in legal_in(messages) else "fold")


def passive_strategy(messages, context):
    return reply("check" if "check" in legal_in(messages) else "call")


def scripted_factory(**strategies):
    """Agent factory: named agents use the given strategies, others their config's."""

    def factory(agent_config, caps):
        strategy = strategies.get(agent_config.name) or STRATEGIES[agent_config.strategy]
        return LLMAgent(MockAdapter(agent_config.name, strategy), agent_config.name, caps)

    return factory


@pytest.fixture
def storage(tmp_path):
    return RunStorage(tmp_path / "runs")


@pytest.fixture
def config():
    return make_config()
