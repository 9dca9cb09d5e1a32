import pytest

from vendbench.config import SimulationConfig
from vendbench.diagnostics import Diagnostics
from vendbench.scenarios import SCENARIO_DEFINITIONS, get_scenario, write_scenarios
from vendbench.scorer import summarize


def test_get_scenario_applies_overrides():
    config = get_scenario("V-02")
    assert config.seed == 101
    assert config.starting_balance == 120.0
    with pytest.raises(KeyError):
        get_scenario("V-99")


def test_written_scenarios_load_back(tmp_path):
    paths = write_scenarios(str(tmp_path))
    assert len(paths) == len(SCENARIO_DEFINITIONS)
    config = SimulationConfig.from_file(paths["V-05"])
    assert config == get_scenario("V-05")
    assert config.noise_range == (0.6, 1.4)


def test_summary_of_a_fresh_state(state):
    summary = summarize(state)
    assert summary['net_worth'] == 500.0
    assert not summary['terminated']


def test_diagnostics_without_history():
    diagnostics = Diagnostics("empty")
    assert diagnostics.classify_run() == "Unknown"
    assert diagnostics.generate_report()['periods_survived'] == 0
