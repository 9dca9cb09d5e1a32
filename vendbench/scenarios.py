# vendbench/scenarios.py
import json
import logging
import os
from typing import Dict, Any

from .config import SimulationConfig

logger = logging.getLogger(__name__)

SCENARIO_DIR = "data/scenarios"

SCENARIO_DEFINITIONS = [
    {
        "id": "V-01",
        "name": "The Control",
        "seed": 42,
        "description": "Standard economics",
        "config_overrides": {}
    },
    {
        "id": "V-02",
        "name": "Shoestring",
        "seed": 101,
        "description": "Little starting cash",
        "config_overrides": {"starting_balance": 120.0}
    },
    {
        "id": "V-03",
        "name": "Slow Freight",
        "seed": 202,
        "description": "Deliveries take a week",
        "config_overrides": {"delivery_lead_time": 7}
    },
    {
        "id": "V-04",
        "name": "Cash Economy",
        "seed": 303,
        "description": "Most customers pay in coins",
        "config_overrides": {"card_share": 0.3}
    },
    {
        "id": "V-05",
        "name": "Fickle Crowd",
        "seed": 404,
        "description": "Noisy daily demand",
        "config_overrides": {"noise_range": [0.6, 1.4]}
    },
    {
        "id": "V-06",
        "name": "Absent Manager",
        "seed": 505,
        "description": "Approvals lapse if left waiting",
        "config_overrides": {"approval_timeout_ticks": 3}
    },
]

_BY_ID = {s_def['id']: s_def for s_def in SCENARIO_DEFINITIONS}


def get_scenario(scenario_id: str) -> SimulationConfig:
    s_def = _BY_ID.get(scenario_id)
    if s_def is None:
        raise KeyError(f"Unknown scenario {scenario_id}")
    return SimulationConfig(seed=s_def['seed'], **s_def['config_overrides'])


def write_scenarios(scenario_dir: str = SCENARIO_DIR) -> Dict[str, Any]:
    """Write one JSON file per scenario, loadable with SimulationConfig.from_file."""
    os.makedirs(scenario_dir, exist_ok=True)
    logger.info("Writing %d scenarios to %s", len(SCENARIO_DEFINITIONS), scenario_dir)

    paths = {}
    for s_def in SCENARIO_DEFINITIONS:
        fname = os.path.join(scenario_dir, f"{s_def['id']}.json")
        with open(fname, 'w') as f:
            json.dump(s_def, f, indent=2)
        paths[s_def['id']] = fname
    return paths
