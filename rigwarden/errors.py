from __future__ import annotations


class RigwardenError(Exception):
    """Base class for supervisor errors."""


class SpawnError(RigwardenError):
    """The child program could not be launched (missing or not executable)."""


class ResourceExhaustedError(SpawnError):
    """The OS refused to create the child (no memory, pids or descriptors)."""


class InvalidTransition(RigwardenError):
    def __init__(self, name: str, current: str, target: str) -> None:
        super().__init__(f"{name}: illegal state change {current} -> {target}")
        self.name = name
        self.current = current
        self.target = target


class TelemetryError(RigwardenError):
    """A status API answered with something that could not be parsed."""


class ConfigUpdateError(RigwardenError):
    """The runtime config of the hashing client could not be rewritten."""
