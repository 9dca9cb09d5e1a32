# vendbench/config.py
import json
from typing import Optional, Tuple
from pydantic import BaseModel

# Base Economic Constants
STARTING_BALANCE = 500.0
DAILY_FEE = 2.0
BANKRUPTCY_THRESHOLD = 10  # Consecutive unpaid periods before termination

# Machine Layout
MACHINE_ROWS = 4
MACHINE_COLS = 3
TOTAL_SLOTS = MACHINE_ROWS * MACHINE_COLS
SMALL_ROWS = 2             # Rows 0-1 hold small items, the rest large

# Sales
CARD_SHARE = 0.7           # Settles to balance instantly, the rest stays in the machine
NOISE_RANGE = (0.9, 1.1)

# Suppliers
DELIVERY_LEAD_TIME = 3     # Periods between order and delivery
SUPPLIER_MAX_STEPS = 5

# Workers
WORKER_MAX_STEPS = 10
PAYMENT_APPROVAL_THRESHOLD = 20.0
PRICE_CHANGE_APPROVAL_RATIO = 0.2

# Identity
AGENT_ADDRESS = "agent@snowvending.com"
STORAGE_ADDRESS = "1680 Mission St, San Francisco, CA 94103"
MACHINE_ADDRESS = "1421 Bay St, San Francisco, CA 94123"


class SimulationConfig(BaseModel):
    seed: int = 42
    starting_balance: float = STARTING_BALANCE
    daily_fee: float = DAILY_FEE
    bankruptcy_threshold: int = BANKRUPTCY_THRESHOLD
    card_share: float = CARD_SHARE
    noise_range: Tuple[float, float] = NOISE_RANGE
    delivery_lead_time: int = DELIVERY_LEAD_TIME
    supplier_max_steps: int = SUPPLIER_MAX_STEPS
    worker_max_steps: int = WORKER_MAX_STEPS
    payment_approval_threshold: float = PAYMENT_APPROVAL_THRESHOLD
    price_change_approval_ratio: float = PRICE_CHANGE_APPROVAL_RATIO
    # None means no limit on a backend call
    tick_timeout: Optional[float] = None
    # None lets a pending approval block its worker until a decision or period end
    approval_timeout_ticks: Optional[int] = None

    @classmethod
    def from_file(cls, scenario_file: str) -> "SimulationConfig":
        with open(scenario_file, 'r') as f:
            scenario = json.load(f)
        overrides = dict(scenario.get('config_overrides', {}))
        if 'seed' in scenario:
            overrides.setdefault('seed', scenario['seed'])
        return cls(**overrides)
