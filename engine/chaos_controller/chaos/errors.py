"""
Chaos controller error taxonomy.

Only request-shape errors ever reach an API caller. Downstream outages are
absorbed by the propagator and the status aggregator.
"""


class ChaosError(Exception):
    """Base class for controller errors."""

    code = "chaos_error"
    status_code = 400

    def __init__(self, message: str, **context: str):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, str]:
        return {"error": self.code, "message": self.message, **self.context}


class UnknownService(ChaosError):
    """Raised when a request names a service outside the registry."""

    code = "unknown_service"

    def __init__(self, service: str):
        super().__init__(f"Unknown service: {service}", service=service)


class UnknownFault(ChaosError):
    """Raised when a request names a fault kind that does not exist."""

    code = "unknown_fault"

    def __init__(self, fault: str):
        super().__init__(f"Unknown fault: {fault}", fault=fault)


class UnknownScenario(ChaosError):
    """Raised when a scenario name is not in the catalogue."""

    code = "unknown_scenario"
    status_code = 404

    def __init__(self, name: str):
        super().__init__(f"Unknown scenario: {name}", scenario=name)


class UnreachableService(ChaosError):
    """
    A downstream call timed out, was refused or returned non-2xx.

    Never raised out of the propagator or status aggregator; its message is
    what ends up in ``PropagationResult.error``.
    """

    code = "unreachable_service"
    status_code = 502

    def __init__(self, service: str, reason: str):
        super().__init__(f"{service} unreachable: {reason}", service=service)
