"""
Land Registry Record Types

Canonical records owned by the registries and mutated only through the
workflow orchestrator:

    LandAsset       a land parcel and its verification lifecycle
    TransferCase    an ownership transfer request against a listed asset

Both records embed an append-only notification list and an append-only
transition history. Sub-records (evidence, inspection outcome, notification,
transition) are immutable once appended.

Verification States:

    PENDING ──▶ ASSIGNED ──▶ INSPECTION_SCHEDULED ──▶ INSPECTED
       │           │                                      │
       └───────────┴──────────────┬───────────────────────┘
                                  ▼
                        VERIFIED  |  REJECTED

Transfer States:

    PENDING ──▶ INSPECTION_SCHEDULED ──▶ INSPECTED ──▶ APPROVED ──▶ COMPLETED
                                             │
                                             └──────▶ REJECTED

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from landreg.core import to_iso, utc_now


# =============================================================================
# ENUMERATIONS
# =============================================================================

class Role(Enum):
    """Global account roles returned by the account directory."""
    OWNER = "owner"          # Regular registered account, may own assets
    INSPECTOR = "inspector"
    ADMIN = "admin"


class AssetStatus(Enum):
    """Verification status of a land asset."""
    PENDING = "pending"
    ASSIGNED = "assigned"
    INSPECTION_SCHEDULED = "inspection_scheduled"
    INSPECTED = "inspected"
    VERIFIED = "verified"
    REJECTED = "rejected"

    def has_inspector(self) -> bool:
        return self in _ASSET_INSPECTOR_STATES

    def is_terminal(self) -> bool:
        return self in {AssetStatus.VERIFIED, AssetStatus.REJECTED}


_ASSET_INSPECTOR_STATES: FrozenSet[AssetStatus] = frozenset({
    AssetStatus.ASSIGNED,
    AssetStatus.INSPECTION_SCHEDULED,
    AssetStatus.INSPECTED,
})


class CaseStatus(Enum):
    """Status of an ownership transfer case."""
    PENDING = "pending"
    INSPECTION_SCHEDULED = "inspection_scheduled"
    INSPECTED = "inspected"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"

    def is_terminal(self) -> bool:
        return self in {CaseStatus.REJECTED, CaseStatus.COMPLETED}


class Recommendation(Enum):
    APPROVE = "approve"
    REJECT = "reject"


class Severity(Enum):
    INFO = "info"
    WARNING = "warning"
    SUCCESS = "success"
    ERROR = "error"


class EvidenceType(Enum):
    PROPERTY_DEED = "property_deed"
    SURVEY_REPORT = "survey_report"
    TAX_RECEIPT = "tax_receipt"
    IDENTITY_PROOF = "identity_proof"
    OWNERSHIP_PROOF = "ownership_proof"
    INSPECTION_REPORT = "inspection_report"
    OTHER = "other"


class PropertyCategory(Enum):
    AGRICULTURAL = "Agricultural"
    RESIDENTIAL = "Residential"
    COMMERCIAL = "Commercial"
    INDUSTRIAL = "Industrial"


class AreaUnit(Enum):
    SQ_FT = "sq ft"
    SQ_YARD = "sq yard"
    ACRE = "acre"


# =============================================================================
# SUB-RECORDS
# =============================================================================

@dataclass(frozen=True)
class EvidenceItem:
    """A content-addressed reference to a supporting document."""
    evidence_type: EvidenceType
    content_hash: str
    size: int
    submitted_at: datetime
    filename: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.evidence_type.value,
            "content_hash": self.content_hash,
            "size": self.size,
            "submitted_at": to_iso(self.submitted_at),
            "filename": self.filename,
        }


@dataclass(frozen=True)
class InspectionChecklist:
    """Site visit checklist filled in by the inspector."""
    property_visited: bool = False
    documents_verified: bool = False
    boundaries_checked: bool = False
    ownership_confirmed: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {
            "property_visited": self.property_visited,
            "documents_verified": self.documents_verified,
            "boundaries_checked": self.boundaries_checked,
            "ownership_confirmed": self.ownership_confirmed,
        }


@dataclass(frozen=True)
class InspectionOutcome:
    """Inspection report submitted by the assigned inspector."""
    report_hash: str
    recommendation: Recommendation
    notes: str
    submitted_at: datetime
    gps_location: str = ""
    visit_date: str = ""
    checklist: InspectionChecklist = field(default_factory=InspectionChecklist)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "report_hash": self.report_hash,
            "recommendation": self.recommendation.value,
            "notes": self.notes,
            "submitted_at": to_iso(self.submitted_at),
            "gps_location": self.gps_location,
            "visit_date": self.visit_date,
            "checklist": self.checklist.to_dict(),
        }


@dataclass(frozen=True)
class Notification:
    """An entry in a record's append-only notification log."""
    message: str
    sent_at: datetime
    recipients: Tuple[str, ...]
    severity: Severity = Severity.INFO

    def addressed_to(self, account: str) -> bool:
        return account.lower() in self.recipients

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "sent_at": to_iso(self.sent_at),
            "recipients": list(self.recipients),
            "severity": self.severity.value,
        }


@dataclass(frozen=True)
class StateTransition:
    """Record of a state transition on an asset or case."""
    from_state: Optional[str]
    to_state: str
    actor: str
    timestamp: datetime
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_state": self.from_state,
            "to_state": self.to_state,
            "actor": self.actor,
            "timestamp": to_iso(self.timestamp),
            "reason": self.reason,
        }


def normalize_recipients(*accounts: Optional[str]) -> Tuple[str, ...]:
    """Lowercase, drop empties, keep first-seen order."""
    seen: List[str] = []
    for account in accounts:
        if account and account.lower() not in seen:
            seen.append(account.lower())
    return tuple(seen)


# =============================================================================
# LAND ASSET
# =============================================================================

@dataclass
class LandAsset:
    """
    Canonical record of a land parcel.

    Invariants (checked by ``invariant_violations``):
        listed_for_sale implies verification_status == VERIFIED
        assigned_inspector is set iff status in {ASSIGNED, INSPECTION_SCHEDULED, INSPECTED}
        verification_status == REJECTED implies a non-empty rejection_reason
    """
    asset_id: int
    survey_id: str
    location: str
    category: PropertyCategory
    area: Decimal
    area_unit: AreaUnit
    owner: str
    evidence: List[EvidenceItem]
    declared_price: Decimal = Decimal("0")
    verification_status: AssetStatus = AssetStatus.PENDING
    listed_for_sale: bool = False
    assigned_inspector: Optional[str] = None
    inspection_outcome: Optional[InspectionOutcome] = None
    rejection_reason: Optional[str] = None
    active_case_id: Optional[int] = None
    notifications: List[Notification] = field(default_factory=list)
    history: List[StateTransition] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    version: int = 0

    @property
    def state(self) -> str:
        return self.verification_status.value

    def notification_recipients(self) -> Tuple[str, ...]:
        return normalize_recipients(self.owner, self.assigned_inspector)

    def invariant_violations(self) -> List[str]:
        problems: List[str] = []
        if self.listed_for_sale and self.verification_status != AssetStatus.VERIFIED:
            problems.append("listed for sale while not verified")
        if (self.assigned_inspector is not None) != self.verification_status.has_inspector():
            problems.append(
                f"assigned_inspector={self.assigned_inspector!r} inconsistent with "
                f"status {self.verification_status.value}"
            )
        if self.verification_status == AssetStatus.REJECTED and not self.rejection_reason:
            problems.append("rejected without a reason")
        if not self.evidence:
            problems.append("no evidence attached")
        return problems

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "survey_id": self.survey_id,
            "location": self.location,
            "category": self.category.value,
            "area": str(self.area),
            "area_unit": self.area_unit.value,
            "declared_price": str(self.declared_price),
            "owner": self.owner,
            "verification_status": self.verification_status.value,
            "listed_for_sale": self.listed_for_sale,
            "assigned_inspector": self.assigned_inspector,
            "evidence": [e.to_dict() for e in self.evidence],
            "inspection_outcome": self.inspection_outcome.to_dict() if self.inspection_outcome else None,
            "rejection_reason": self.rejection_reason,
            "active_case_id": self.active_case_id,
            "notifications": [n.to_dict() for n in self.notifications],
            "history": [t.to_dict() for t in self.history],
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "version": self.version,
        }


# =============================================================================
# TRANSFER CASE
# =============================================================================

@dataclass
class TransferCase:
    """
    Canonical record of an ownership transfer request.

    ``finalize_pending`` is the durable marker of the approve/finalize saga:
    it is set when the case enters APPROVED and cleared when the case reaches
    COMPLETED, so an interrupted finalize can always be re-run.
    """
    case_id: int
    asset_id: int
    from_account: str
    to_account: str
    status: CaseStatus = CaseStatus.PENDING
    assigned_inspector: Optional[str] = None
    inspection_outcome: Optional[InspectionOutcome] = None
    evidence: List[EvidenceItem] = field(default_factory=list)
    rejection_reason: Optional[str] = None
    finalize_pending: bool = False
    completed_at: Optional[datetime] = None
    ledger_receipt: Optional[str] = None
    notifications: List[Notification] = field(default_factory=list)
    history: List[StateTransition] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    version: int = 0

    @property
    def state(self) -> str:
        return self.status.value

    @property
    def is_open(self) -> bool:
        return not self.status.is_terminal()

    def notification_recipients(self) -> Tuple[str, ...]:
        return normalize_recipients(self.from_account, self.to_account, self.assigned_inspector)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "case_id": self.case_id,
            "asset_id": self.asset_id,
            "from_account": self.from_account,
            "to_account": self.to_account,
            "status": self.status.value,
            "assigned_inspector": self.assigned_inspector,
            "inspection_outcome": self.inspection_outcome.to_dict() if self.inspection_outcome else None,
            "evidence": [e.to_dict() for e in self.evidence],
            "rejection_reason": self.rejection_reason,
            "finalize_pending": self.finalize_pending,
            "completed_at": to_iso(self.completed_at),
            "ledger_receipt": self.ledger_receipt,
            "notifications": [n.to_dict() for n in self.notifications],
            "history": [t.to_dict() for t in self.history],
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "version": self.version,
        }
