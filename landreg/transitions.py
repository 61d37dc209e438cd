"""
State transition tables for land assets and transfer cases.

The orchestrator consults these tables before every write. A target is
reachable only if it appears in the table entry for the current state;
self-loops are never listed, so re-applying a transition that would not
change state is rejected as an invalid transition.

Role tables name the global roles allowed to drive a record *into* a target
state. Ownership is per-asset and is checked by the orchestrator.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Optional

from landreg.errors import InvalidTransition
from landreg.models import AssetStatus, CaseStatus, Role


# =============================================================================
# ASSET VERIFICATION
# =============================================================================

ASSET_TRANSITIONS: Dict[AssetStatus, FrozenSet[AssetStatus]] = {
    AssetStatus.PENDING: frozenset({
        AssetStatus.ASSIGNED,
        AssetStatus.VERIFIED,
        AssetStatus.REJECTED,
    }),
    AssetStatus.ASSIGNED: frozenset({
        AssetStatus.INSPECTION_SCHEDULED,
        AssetStatus.VERIFIED,
        AssetStatus.REJECTED,
    }),
    AssetStatus.INSPECTION_SCHEDULED: frozenset({
        AssetStatus.INSPECTED,
    }),
    AssetStatus.INSPECTED: frozenset({
        AssetStatus.VERIFIED,
        AssetStatus.REJECTED,
    }),
    AssetStatus.VERIFIED: frozenset(),
    AssetStatus.REJECTED: frozenset(),
}

ASSET_TARGET_ROLES: Dict[AssetStatus, FrozenSet[Role]] = {
    AssetStatus.ASSIGNED: frozenset({Role.ADMIN}),
    AssetStatus.INSPECTION_SCHEDULED: frozenset({Role.INSPECTOR, Role.ADMIN}),
    AssetStatus.INSPECTED: frozenset({Role.INSPECTOR}),
    AssetStatus.VERIFIED: frozenset({Role.INSPECTOR, Role.ADMIN}),
    AssetStatus.REJECTED: frozenset({Role.INSPECTOR, Role.ADMIN}),
}


# =============================================================================
# TRANSFER CASES
# =============================================================================

CASE_TRANSITIONS: Dict[CaseStatus, FrozenSet[CaseStatus]] = {
    CaseStatus.PENDING: frozenset({CaseStatus.INSPECTION_SCHEDULED}),
    CaseStatus.INSPECTION_SCHEDULED: frozenset({CaseStatus.INSPECTED}),
    CaseStatus.INSPECTED: frozenset({CaseStatus.APPROVED, CaseStatus.REJECTED}),
    CaseStatus.APPROVED: frozenset({CaseStatus.COMPLETED}),
    CaseStatus.REJECTED: frozenset(),
    CaseStatus.COMPLETED: frozenset(),
}

# APPROVED -> COMPLETED is driven by finalize_transfer and carries no role.
CASE_TARGET_ROLES: Dict[CaseStatus, FrozenSet[Role]] = {
    CaseStatus.INSPECTION_SCHEDULED: frozenset({Role.ADMIN}),
    CaseStatus.INSPECTED: frozenset({Role.INSPECTOR}),
    CaseStatus.APPROVED: frozenset({Role.ADMIN}),
    CaseStatus.REJECTED: frozenset({Role.ADMIN}),
}


def can_advance_asset(current: AssetStatus, target: AssetStatus) -> bool:
    return target in ASSET_TRANSITIONS.get(current, frozenset())


def can_advance_case(current: CaseStatus, target: CaseStatus) -> bool:
    return target in CASE_TRANSITIONS.get(current, frozenset())


def require_asset_transition(current: AssetStatus, target: AssetStatus) -> None:
    """Raise InvalidTransition unless ``current -> target`` is in the table."""
    if not can_advance_asset(current, target):
        raise InvalidTransition(current.value, target.value)


def require_case_transition(current: CaseStatus, target: CaseStatus) -> None:
    """Raise InvalidTransition unless ``current -> target`` is in the table."""
    if not can_advance_case(current, target):
        raise InvalidTransition(current.value, target.value)


def roles_for_asset_target(target: AssetStatus) -> FrozenSet[Role]:
    return ASSET_TARGET_ROLES.get(target, frozenset())


def roles_for_case_target(target: CaseStatus) -> Optional[FrozenSet[Role]]:
    """Allowed roles, or None when the step is system-driven."""
    return CASE_TARGET_ROLES.get(target)
