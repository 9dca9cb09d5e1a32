import numpy as np
import pytest

from vendbench.baselines import ScriptedBackend
from vendbench.config import SimulationConfig
from vendbench.engine import create_initial_state
from vendbench.models import StorageItem
from vendbench.scheduler import WorkerScheduler


@pytest.fixture
def config():
    return SimulationConfig(seed=7)


@pytest.fixture
def state(config):
    return create_initial_state(config)


@pytest.fixture
def stocked_state(state):
    state.storage = [
        StorageItem(name="Chips", quantity=20, unit_cost=0.5, size_class='small'),
        StorageItem(name="Water", quantity=12, unit_cost=0.4, size_class='large'),
    ]
    return state


@pytest.fixture
def backend():
    return ScriptedBackend()


@pytest.fixture
def events():
    return []


@pytest.fixture
def scheduler(backend, config, events):
    return WorkerScheduler(backend, config, event_sink=events.append)


@pytest.fixture
def rng(config):
    return np.random.RandomState(config.seed)
