"""Tournament configuration loader.

Config files are YAML (JSON works too, it is a YAML subset). Every problem
found is collected into a single ConfigError so a bad config is rejected
before any run state exists.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from pokerwars.strategies import STRATEGIES

_PROVIDERS = ("mock", "openai", "anthropic", "openrouter")
_DEFAULT_PROVIDER = "openrouter"
_DEFAULT_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}
MAX_SEAT_INDEX = 9
MIN_SEATS = 2
MAX_SEATS = 10


class ConfigError(ValueError):
    """Raised when a tournament config is invalid."""

    def __init__(self, problems: list[str]):
        self.problems = list(problems)
        joined = "\n".join(f"  - {p}" for p in self.problems)
        super().__init__(f"Invalid config:\n{joined}")


@dataclass(frozen=True)
class BlindLevel:
    small_blind: int
    big_blind: int
    hands_until_increase: int


@dataclass(frozen=True)
class SeatConfig:
    index: int
    agent: str  # name in TournamentConfig.agents, or a gateway model id


@dataclass
class AgentConfig:
    name: str
    provider: str  # "mock", "openai", "anthropic", "openrouter"
    model_id: str | None = None
    strategy: str | None = None  # for mock provider
    api_key_env: str | None = None
    base_url: str | None = None
    site_url: str | None = None  # OpenRouter attribution
    app_name: str | None = None  # OpenRouter attribution
    temperature: float = 0.0


@dataclass
class ComputeCaps:
    max_output_tokens: int = 1024
    timeout_s: float = 60.0
    max_tool_steps: int = 5


@dataclass
class StorageConfig:
    runs_dir: Path = Path("runs")
    mongo_uri: str | None = None
    mongo_db: str = "pokerwars"


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 6010


@dataclass
class TournamentConfig:
    name: str
    starting_stack: int
    blind_structure: list[BlindLevel]
    seats: list[SeatConfig]
    seed: int | None = None
    raise_cap: int = 2
    hand_delay_s: float = 0.1
    agents: dict[str, AgentConfig] = field(default_factory=dict)
    compute_caps: ComputeCaps = field(default_factory=ComputeCaps)
    storage: StorageConfig = field(default_factory=StorageConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    def seat(self, index: int) -> SeatConfig | None:
        for s in self.seats:
            if s.index == index:
                return s
        return None

    def agent_for(self, seat_index: int) -> AgentConfig:
        """Resolve the agent config driving a seat."""
        seat = self.seat(seat_index)
        if seat is None:
            raise KeyError(f"No seat {seat_index} in config")
        return resolve_agent(seat.agent, self.agents)


def resolve_agent(identifier: str, agents: dict[str, AgentConfig]) -> AgentConfig:
    """Named agents win; anything else is a gateway model id."""
    if identifier in agents:
        return agents[identifier]
    return AgentConfig(
        name=identifier,
        provider=_DEFAULT_PROVIDER,
        model_id=identifier,
        api_key_env=_DEFAULT_KEY_ENV[_DEFAULT_PROVIDER],
    )


def load_config(path: Path) -> TournamentConfig:
    """Load tournament config from a YAML (or JSON) file."""
    path = Path(path)
    if not path.exists():
        raise ConfigError([f"config file not found: {path}"])
    with open(path) as f:
        raw = yaml.safe_load(f)
    return parse_config(raw)


def parse_config(raw: Any) -> TournamentConfig:
    """Validate a raw mapping and build a TournamentConfig."""
    if not isinstance(raw, dict):
        raise ConfigError(["config must be a mapping"])

    problems: list[str] = []
    t = raw.get("tournament") or {}
    if not isinstance(t, dict):
        problems.append("tournament: must be a mapping")
        t = {}

    name = t.get("name", "poker-wars")
    starting_stack = t.get("starting_stack")
    if not _positive_int(starting_stack):
        problems.append("tournament.starting_stack: must be a positive integer")
    seed = t.get("seed")
    if seed is not None and not isinstance(seed, int):
        problems.append("tournament.seed: must be an integer")
    raise_cap = t.get("raise_cap", 2)
    if not _positive_int(raise_cap):
        problems.append("tournament.raise_cap: must be a positive integer")
    hand_delay_s = t.get("hand_delay_s", 0.1)
    if not isinstance(hand_delay_s, (int, float)) or hand_delay_s < 0:
        problems.append("tournament.hand_delay_s: must be >= 0")

    blinds = _parse_blinds(raw.get("blind_structure"), problems)
    agents = _parse_agents(raw.get("agents") or {}, problems)
    seats = _parse_seats(raw.get("seats"), problems)

    compute = _section(raw, "compute_caps", problems)
    caps = ComputeCaps(
        max_output_tokens=compute.get("max_output_tokens", 1024),
        timeout_s=compute.get("timeout_s", 60.0),
        max_tool_steps=compute.get("max_tool_steps", 5),
    )
    if not _positive_int(caps.max_output_tokens):
        problems.append("compute_caps.max_output_tokens: must be a positive integer")
    if not _positive_int(caps.max_tool_steps):
        problems.append("compute_caps.max_tool_steps: must be a positive integer")
    if not _is_number(caps.timeout_s) or caps.timeout_s <= 0:
        problems.append("compute_caps.timeout_s: must be positive")

    st = _section(raw, "storage", problems)
    runs_dir = st.get("runs_dir", "runs")
    if not isinstance(runs_dir, (str, Path)) or not str(runs_dir):
        problems.append("storage.runs_dir: must be a path string")
        runs_dir = "runs"
    storage = StorageConfig(
        runs_dir=Path(runs_dir),
        mongo_uri=st.get("mongo_uri"),
        mongo_db=st.get("mongo_db", "pokerwars"),
    )
    sv = _section(raw, "server", problems)
    server = ServerConfig(host=sv.get("host", "127.0.0.1"), port=sv.get("port", 6010))
    if not _positive_int(server.port) or server.port > 65535:
        problems.append("server.port: must be an integer 1-65535")

    if problems:
        raise ConfigError(problems)

    return TournamentConfig(
        name=name,
        starting_stack=starting_stack,
        blind_structure=blinds,
        seats=seats,
        seed=seed,
        raise_cap=raise_cap,
        hand_delay_s=float(hand_delay_s),
        agents=agents,
        compute_caps=caps,
        storage=storage,
        server=server,
    )


# ------------------------------------------------------------------
# Section parsers
# ------------------------------------------------------------------

def _positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _section(raw: dict, key: str, problems: list[str]) -> dict:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        problems.append(f"{key}: must be a mapping")
        return {}
    return value


def _parse_blinds(raw: Any, problems: list[str]) -> list[BlindLevel]:
    if not isinstance(raw, list) or not raw:
        problems.append("blind_structure: at least one blind level is required")
        return []
    levels = []
    for i, lvl in enumerate(raw):
        if not isinstance(lvl, dict):
            problems.append(f"blind_structure[{i}]: must be a mapping")
            continue
        sb = lvl.get("small_blind")
        bb = lvl.get("big_blind")
        hands = lvl.get("hands_until_increase")
        ok = True
        for key, value in (("small_blind", sb), ("big_blind", bb),
                           ("hands_until_increase", hands)):
            if not _positive_int(value):
                problems.append(f"blind_structure[{i}].{key}: must be a positive integer")
                ok = False
        if ok and sb > bb:
            problems.append(f"blind_structure[{i}]: small_blind exceeds big_blind")
            ok = False
        if ok:
            levels.append(BlindLevel(sb, bb, hands))
    return levels


def _parse_agents(raw: Any, problems: list[str]) -> dict[str, AgentConfig]:
    if not isinstance(raw, dict):
        problems.append("agents: must be a mapping")
        return {}
    agents = {}
    for name, a in raw.items():
        a = a or {}
        if not isinstance(a, dict):
            problems.append(f"agents.{name}: must be a mapping")
            continue
        provider = a.get("provider", _DEFAULT_PROVIDER)
        if provider not in _PROVIDERS:
            problems.append(
                f"agents.{name}.provider: unknown provider {provider!r} "
                f"(expected one of {', '.join(_PROVIDERS)})"
            )
            continue
        if provider == "mock" and a.get("strategy") not in STRATEGIES:
            problems.append(
                f"agents.{name}.strategy: unknown mock strategy {a.get('strategy')!r} "
                f"(available: {', '.join(STRATEGIES)})"
            )
            continue
        temperature = a.get("temperature", 0.0)
        if not _is_number(temperature) or temperature < 0:
            problems.append(f"agents.{name}.temperature: must be a non-negative number")
            continue
        agents[name] = AgentConfig(
            name=name,
            provider=provider,
            model_id=a.get("model_id", None if provider == "mock" else name),
            strategy=a.get("strategy"),
            api_key_env=a.get("api_key_env", _DEFAULT_KEY_ENV.get(provider)),
            base_url=a.get("base_url"),
            site_url=a.get("site_url"),
            app_name=a.get("app_name"),
            temperature=float(temperature),
        )
    return agents


def _parse_seats(raw: Any, problems: list[str]) -> list[SeatConfig]:
    if not isinstance(raw, list):
        problems.append("seats: must be a list")
        return []
    if not MIN_SEATS <= len(raw) <= MAX_SEATS:
        problems.append(f"seats: need {MIN_SEATS}-{MAX_SEATS} seats, got {len(raw)}")
    seats = []
    seen: set[int] = set()
    for i, s in enumerate(raw):
        if not isinstance(s, dict):
            problems.append(f"seats[{i}]: must be a mapping")
            continue
        index = s.get("index")
        agent = s.get("agent")
        if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index <= MAX_SEAT_INDEX:
            problems.append(f"seats[{i}].index: must be an integer 0-{MAX_SEAT_INDEX}")
            continue
        if index in seen:
            problems.append(f"seats[{i}].index: duplicate seat index {index}")
            continue
        if not isinstance(agent, str) or not agent:
            problems.append(f"seats[{i}].agent: must be a non-empty string")
            continue
        seen.add(index)
        seats.append(SeatConfig(index=index, agent=agent))
    return sorted(seats, key=lambda s: s.index)
