"""Tests for tournament config loading and validation."""

import json

import pytest
import yaml

from pokerwars.config import (
    ConfigError,
    TournamentConfig,
    load_config,
    parse_config,
    resolve_agent,
)

from conftest import make_config_dict


class TestParseConfig:
    def test_minimal_valid(self):
        config = parse_config(make_config_dict())
        assert isinstance(config, TournamentConfig)
        assert config.starting_stack == 500
        assert config.seed == 42
        assert len(config.seats) == 2
        assert config.blind_structure[0].big_blind == 20
        assert config.agents["bot0"].provider == "mock"

    def test_defaults(self):
        raw = make_config_dict()
        del raw["tournament"]["raise_cap"]
        del raw["compute_caps"]
        config = parse_config(raw)
        assert config.raise_cap == 2
        assert config.compute_caps.max_tool_steps == 5
        assert config.compute_caps.timeout_s == 60.0
        assert config.server.port == 6010
        assert str(config.storage.runs_dir) == "runs"

    def test_seats_sorted_by_index(self):
        raw = make_config_dict(strategies=("always_call",) * 3)
        raw["seats"] = [{"index": 7, "agent": "bot0"}, {"index": 2, "agent": "bot1"}, {"index": 4, "agent": "bot2"}]
        config = parse_config(raw)
        assert [s.index for s in config.seats] == [2, 4, 7]

    def test_problems_collected_together(self):
        raw = make_config_dict()
        raw["tournament"]["starting_stack"] = 0
        raw["blind_structure"] = [{"small_blind": 40, "big_blind": 20, "hands_until_increase": 5}]
        raw["seats"] = [{"index": 0, "agent": "bot0"}]
        with pytest.raises(ConfigError) as exc_info:
            parse_config(raw)
        problems = exc_info.value.problems
        assert any("starting_stack" in p for p in problems)
        assert any("small_blind exceeds big_blind" in p for p in problems)
        assert any("need 2-10 seats" in p for p in problems)

    def test_duplicate_seat_index(self):
        raw = make_config_dict()
        raw["seats"] = [{"index": 1, "agent": "bot0"}, {"index": 1, "agent": "bot1"}]
        with pytest.raises(ConfigError, match="duplicate seat index"):
            parse_config(raw)

    def test_seat_index_out_of_range(self):
        raw = make_config_dict()
        raw["seats"][1]["index"] = 10
        with pytest.raises(ConfigError, match="must be an integer 0-9"):
            parse_config(raw)

    def test_too_many_seats(self):
        raw = make_config_dict(strategies=("always_call",) * 10)
        raw["seats"].append({"index": 3, "agent": "bot0"})
        with pytest.raises(ConfigError, match="need 2-10 seats, got 11"):
            parse_config(raw)

    def test_empty_blind_structure(self):
        raw = make_config_dict()
        raw["blind_structure"] = []
        with pytest.raises(ConfigError, match="at least one blind level"):
            parse_config(raw)

    def test_unknown_mock_strategy(self):
        raw = make_config_dict()
        raw["agents"]["bot0"]["strategy"] = "telepathy"
        with pytest.raises(ConfigError, match="unknown mock strategy"):
            parse_config(raw)

    def test_unknown_provider(self):
        raw = make_config_dict()
        raw["agents"]["bot0"] = {"provider": "smoke-signals"}
        with pytest.raises(ConfigError, match="unknown provider"):
            parse_config(raw)

    def test_not_a_mapping(self):
        with pytest.raises(ConfigError):
            parse_config(["not", "a", "mapping"])

    def test_bool_is_not_an_int(self):
        raw = make_config_dict()
        raw["tournament"]["raise_cap"] = True
        with pytest.raises(ConfigError, match="raise_cap"):
            parse_config(raw)

    @pytest.mark.parametrize("section, value", [
        ("compute_caps", 5),
        ("storage", "x"),
        ("server", [1]),
    ])
    def test_section_not_a_mapping(self, section, value):
        raw = make_config_dict()
        raw[section] = value
        with pytest.raises(ConfigError) as exc_info:
            parse_config(raw)
        assert f"{section}: must be a mapping" in exc_info.value.problems

    def test_max_output_tokens_must_be_int(self):
        raw = make_config_dict()
        raw["compute_caps"]["max_output_tokens"] = "lots"
        with pytest.raises(ConfigError, match="max_output_tokens"):
            parse_config(raw)

    @pytest.mark.parametrize("temperature", ["warm", True, -0.5])
    def test_bad_temperature(self, temperature):
        raw = make_config_dict()
        raw["agents"]["bot0"]["temperature"] = temperature
        with pytest.raises(ConfigError, match=r"agents\.bot0\.temperature"):
            parse_config(raw)

    def test_int_temperature_accepted(self):
        raw = make_config_dict()
        raw["agents"]["bot0"]["temperature"] = 1
        assert parse_config(raw).agents["bot0"].temperature == 1.0

    @pytest.mark.parametrize("port", [0, 65536, "6010", True])
    def test_bad_port(self, port):
        raw = make_config_dict()
        raw["server"] = {"port": port}
        with pytest.raises(ConfigError, match="server.port"):
            parse_config(raw)

    def test_runs_dir_must_be_a_path(self):
        raw = make_config_dict()
        raw["storage"] = {"runs_dir": 7}
        with pytest.raises(ConfigError, match="storage.runs_dir"):
            parse_config(raw)


class TestResolveAgent:
    def test_named_agent_wins(self):
        config = parse_config(make_config_dict())
        assert config.agent_for(0).strategy == "always_call"

    def test_bare_model_id_goes_to_openrouter(self):
        agent = resolve_agent("anthropic/claude-sonnet-4", {})
        assert agent.provider == "openrouter"
        assert agent.model_id == "anthropic/claude-sonnet-4"
        assert agent.api_key_env == "OPENROUTER_API_KEY"

    def test_named_provider_gets_default_key_env(self):
        raw = make_config_dict()
        raw["agents"]["claude"] = {"provider": "anthropic", "model_id": "claude-sonnet-4"}
        config = parse_config(raw)
        assert config.agents["claude"].api_key_env == "ANTHROPIC_API_KEY"

    def test_unknown_seat(self):
        config = parse_config(make_config_dict())
        with pytest.raises(KeyError):
            config.agent_for(5)


class TestLoadConfig:
    def test_yaml_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(make_config_dict()))
        config = load_config(path)
        assert config.name == "test-tourney"

    def test_json_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps(make_config_dict()))
        assert load_config(path).starting_stack == 500

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "nope.yaml")
