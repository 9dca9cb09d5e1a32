# vendbench/errors.py


class SimulationError(Exception):
    """Base class for domain errors surfaced to the principal."""


class ValidationError(SimulationError):
    """Unknown id, size mismatch, bad slot position, duplicate assignment."""


class InsufficientFundsError(SimulationError):
    def __init__(self, required: float, available: float, what: str = "payment"):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient funds for {what}: need ${required:.2f}, have ${available:.2f}"
        )


class BackendFailure(SimulationError):
    """Timeout, transport error or malformed output from the model backend."""


class InvariantViolation(SimulationError):
    """Raised on transitions that correct orchestration never attempts."""
