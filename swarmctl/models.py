"""Shared data models for swarmctl."""
from enum import Enum


class Role(str, Enum):
    """Cluster role a host is provisioned for."""
    CONTROL_PLANE = 'control-plane'
    WORKER = 'worker'

    def __str__(self) -> str:
        return self.value
