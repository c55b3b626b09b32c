"""
Policy -- the runtime knobs of the engine, as one immutable value.

Responsibility:
    Carries the settings the services consult: how multi-line deliveries
    treat failing lines, whether a duplicate-flagged request needs an
    explanation, and which roles grant which permissions.

Architecture position:
    Kernel > Domain -- pure value.  Built from YAML configuration by
    ``procurement_config.bridges.build_engine_policy``; the kernel itself
    never reads configuration files.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType

from procurement_kernel.domain.authority import (
    DEFAULT_ROLE_PERMISSIONS,
    Permission,
    ProjectRole,
)


class DeliveryPolicy(str, Enum):
    """How a delivery submission handles lines that fail validation."""

    # Failing lines are rejected, the rest are recorded
    PARTIAL = "partial"
    # Any failing line rejects the whole submission
    ALL_OR_NOTHING = "all_or_nothing"


@dataclass(frozen=True)
class EnginePolicy:
    delivery_policy: DeliveryPolicy = DeliveryPolicy.PARTIAL
    require_duplicate_explanation: bool = True
    role_permissions: Mapping[ProjectRole, frozenset[Permission]] = field(
        default_factory=lambda: MappingProxyType(dict(DEFAULT_ROLE_PERMISSIONS))
    )

    @classmethod
    def defaults(cls) -> EnginePolicy:
        return cls()
