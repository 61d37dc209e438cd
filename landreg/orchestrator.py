"""
Workflow Orchestrator

Drives land assets through verification and transfer cases through
inspection, approval and finalization.

Every operation follows the same path:

    credentials ─▶ IdentityVerifier ─▶ role lookup (AccountDirectory)
         │
         ▼
    load record (version v) ─▶ role + state checks (transition tables)
         │
         ▼
    resolve evidence (EvidenceStore, before any write)
         │
         ▼
    compare_and_set(record, v) with new state, history and notifications
         │
         ▼
    (transfer completed) ─▶ LedgerSynchronizer.submit()   advisory, async

Approval is a two-step saga. ``approve`` moves the case to APPROVED with
``finalize_pending`` set, then runs ``finalize_transfer``, which moves
ownership on the asset and completes the case. Each step is its own
compare-and-set; if the process stops between them the case stays APPROVED
and ``finalize_transfer`` can be re-run at any time. Finalizing is
idempotent.

Every attempt, successful or not, is written to the audit trail. Every
``WorkflowError`` leaving this module carries the current record snapshot.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, FrozenSet, Iterator, List, Optional, Sequence, Union

from landreg import schema
from landreg.config import LandregConfig, get_config
from landreg.core import utc_now
from landreg.errors import (
    AuthenticationFailed,
    AuthorizationDenied,
    ConcurrentModification,
    InvalidTransition,
    PreconditionFailed,
    WorkflowError,
)
from landreg.evidence import DocumentUpload, EvidenceResolver, EvidenceStore
from landreg.identity import Credentials, IdentityVerifier, is_account
from landreg.ledger import LedgerAdapter, LedgerSynchronizer, TransferAnchor
from landreg.models import (
    AreaUnit,
    AssetStatus,
    CaseStatus,
    InspectionChecklist,
    InspectionOutcome,
    LandAsset,
    Notification,
    PropertyCategory,
    Recommendation,
    Role,
    Severity,
    StateTransition,
    TransferCase,
)
from landreg.observability import AuditLogger, AuditOutcome, EngineLayer, get_logger, timed_operation
from landreg.registry import AccountDirectory, AssetRegistry, CaseRegistry, DirectoryGateway
from landreg.transitions import (
    require_asset_transition,
    require_case_transition,
    roles_for_asset_target,
    roles_for_case_target,
)

log = get_logger("orchestrator", EngineLayer.WORKFLOW)

# Attempts for follow-up writes that must eventually land (asset release,
# ledger receipt). Each attempt reloads the record.
FOLLOW_UP_ATTEMPTS = 3


@dataclass(frozen=True)
class Actor:
    """An authenticated account and its global role."""
    account: str
    role: Role


@dataclass(frozen=True)
class NotificationView:
    """A notification together with the record it was posted on."""
    record_type: str
    record_id: int
    notification: Notification

    def to_dict(self) -> Dict[str, Any]:
        d = self.notification.to_dict()
        d.update({"record_type": self.record_type, "record_id": self.record_id})
        return d


@dataclass
class InspectorAssignments:
    assets: List[LandAsset] = field(default_factory=list)
    cases: List[TransferCase] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assets": [a.to_dict() for a in self.assets],
            "cases": [c.to_dict() for c in self.cases],
        }


def _parse_decimal(value: Union[int, str], field_name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise PreconditionFailed(f"{field_name} is not a decimal number: {value!r}") from None


class WorkflowEngine:
    """
    Entry point for every asset and transfer operation.

    Collaborators are injected; the ledger adapter is optional and the engine
    behaves identically with or without it.
    """

    def __init__(
        self,
        evidence_store: EvidenceStore,
        directory: AccountDirectory,
        ledger: Optional[LedgerAdapter] = None,
        config: Optional[LandregConfig] = None,
        verifier: Optional[IdentityVerifier] = None,
        audit: Optional[AuditLogger] = None,
        assets: Optional[AssetRegistry] = None,
        cases: Optional[CaseRegistry] = None,
        synchronizer: Optional[LedgerSynchronizer] = None,
    ):
        self.config = config or get_config()
        self.assets = assets if assets is not None else AssetRegistry()
        self.cases = cases if cases is not None else CaseRegistry()
        self.verifier = verifier or IdentityVerifier()
        self.audit = audit or AuditLogger()
        self.evidence = EvidenceResolver(
            evidence_store,
            timeout_seconds=self.config.evidence.timeout_seconds.get(),
            max_document_bytes=self.config.evidence.max_document_bytes.get(),
        )
        self.directory = DirectoryGateway(
            directory,
            timeout_seconds=self.config.directory.timeout_seconds.get(),
        )
        self.synchronizer: Optional[LedgerSynchronizer] = synchronizer
        if self.synchronizer is None and ledger is not None and self.config.ledger.enabled.get():
            self.synchronizer = LedgerSynchronizer.from_config(ledger, self.config)
        if self.synchronizer is not None and self.synchronizer.on_anchored is None:
            self.synchronizer.on_anchored = self._record_ledger_receipt

    def close(self) -> None:
        if self.synchronizer is not None:
            self.synchronizer.stop()

    def __enter__(self) -> "WorkflowEngine":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Shared plumbing
    # ------------------------------------------------------------------

    def _authenticate(self, credentials: Credentials) -> Actor:
        if not self.verifier.verify(credentials.message, credentials.signature, credentials.account):
            raise AuthenticationFailed(f"Signature does not match account {credentials.account}")
        account = credentials.account.lower()
        role = self.directory.role_of(account)
        if role is None:
            raise AuthorizationDenied(f"Account {account} is not registered")
        return Actor(account=account, role=role)

    def _snapshot(self, record_type: str, record_id: Any) -> Optional[Union[LandAsset, TransferCase]]:
        if not isinstance(record_id, int):
            return None
        registry = self.assets if record_type == "asset" else self.cases
        return registry.find(record_id)

    @contextmanager
    def _guard(self, action: str, record_type: str, record_id: Any, credentials: Optional[Credentials]) -> Iterator[None]:
        """Audit the attempt and attach the authoritative record to any WorkflowError."""
        actor = str(credentials.account or "").lower() if credentials is not None else "system"
        try:
            yield
        except WorkflowError as e:
            current = self._snapshot(record_type, record_id)
            if current is not None:
                e.attach_record(current.to_dict(), current.state)
            denied = isinstance(e, (AuthenticationFailed, AuthorizationDenied))
            self.audit.record(
                actor, action, record_type, str(record_id),
                AuditOutcome.DENIED if denied else AuditOutcome.FAILURE,
                error=e.code, detail=e.message,
            )
            log.info(
                f"{action} rejected",
                operation=action,
                error_code=e.code,
                record_type=record_type,
                record_id=record_id,
            )
            raise
        self.audit.record(actor, action, record_type, str(record_id), AuditOutcome.SUCCESS)

    @staticmethod
    def _require_role(actor: Actor, allowed: FrozenSet[Role], requested_state: str) -> None:
        if actor.role not in allowed:
            raise AuthorizationDenied(
                f"Role {actor.role.value} may not move record to {requested_state}",
                requested_state=requested_state,
            )

    def _require_inspector_role(self, account: str) -> str:
        if not is_account(account):
            raise PreconditionFailed(f"Not an account identifier: {account!r}")
        account = account.lower()
        if self.directory.role_of(account) != Role.INSPECTOR:
            raise PreconditionFailed(f"Account {account} does not hold the inspector role")
        return account

    @staticmethod
    def _notify(record: Union[LandAsset, TransferCase], message: str, severity: Severity = Severity.INFO) -> None:
        record.notifications.append(Notification(
            message=message,
            sent_at=utc_now(),
            recipients=record.notification_recipients(),
            severity=severity,
        ))

    @staticmethod
    def _record_transition(
        record: Union[LandAsset, TransferCase],
        from_state: Optional[str],
        to_state: str,
        actor: str,
        reason: str = "",
    ) -> None:
        record.history.append(StateTransition(
            from_state=from_state,
            to_state=to_state,
            actor=actor,
            timestamp=utc_now(),
            reason=reason,
        ))

    def _advance_asset(self, asset: LandAsset, target: AssetStatus, actor: str, reason: str = "") -> None:
        previous = asset.verification_status
        asset.verification_status = target
        self._record_transition(asset, previous.value, target.value, actor, reason)

    def _advance_case(self, case: TransferCase, target: CaseStatus, actor: str, reason: str = "") -> None:
        previous = case.status
        case.status = target
        self._record_transition(case, previous.value, target.value, actor, reason)

    def _outcome_from_report(self, report: Dict[str, Any], report_document: DocumentUpload) -> InspectionOutcome:
        schema.require_valid(report, schema.INSPECTION_REPORT)
        if report_document is None:
            raise PreconditionFailed("An inspection report document is required")
        item = self.evidence.resolve_one(report_document)
        checklist = report.get("checklist") or {}
        return InspectionOutcome(
            report_hash=item.content_hash,
            recommendation=Recommendation(report["recommendation"]),
            notes=report.get("notes", ""),
            submitted_at=utc_now(),
            gps_location=report.get("gps_location", ""),
            visit_date=report.get("visit_date", ""),
            checklist=InspectionChecklist(**checklist),
        )

    def _check_document_count(self, documents: Sequence[DocumentUpload], minimum: int) -> None:
        limit = self.config.workflow.max_evidence_items.get()
        if len(documents) < minimum:
            raise PreconditionFailed(f"At least {minimum} evidence document(s) required")
        if len(documents) > limit:
            raise PreconditionFailed(f"At most {limit} evidence documents allowed, got {len(documents)}")

    # ------------------------------------------------------------------
    # Asset verification
    # ------------------------------------------------------------------

    @timed_operation(log, "submit_for_verification")
    def submit_for_verification(
        self,
        credentials: Credentials,
        submission: Dict[str, Any],
        documents: Sequence[DocumentUpload],
    ) -> LandAsset:
        """Create a Pending asset owned by the caller."""
        survey_id = submission.get("survey_id") if isinstance(submission, dict) else None
        with self._guard("submit_for_verification", "asset", survey_id, credentials):
            actor = self._authenticate(credentials)
            if actor.role != Role.OWNER:
                raise AuthorizationDenied(
                    f"Role {actor.role.value} may not submit assets for verification",
                    requested_state=AssetStatus.PENDING.value,
                )
            schema.require_valid(submission, schema.ASSET_SUBMISSION)
            self._check_document_count(documents, minimum=1)
            area = _parse_decimal(submission["area"], "area")
            if area <= 0:
                raise PreconditionFailed("area must be greater than zero")
            price = _parse_decimal(submission.get("declared_price", 0), "declared_price")

            existing = self.assets.find_by_survey_id(survey_id)
            if existing is not None and existing.verification_status != AssetStatus.REJECTED:
                raise PreconditionFailed(
                    f"Survey id {survey_id!r} is already registered as asset {existing.asset_id}",
                    current_state=existing.state,
                    record=existing.to_dict(),
                )

            evidence = self.evidence.resolve(documents)

            asset = LandAsset(
                asset_id=self.assets.next_id(),
                survey_id=survey_id,
                location=submission["location"],
                category=PropertyCategory(submission["category"]),
                area=area,
                area_unit=AreaUnit(submission["area_unit"]),
                declared_price=price,
                owner=actor.account,
                evidence=evidence,
            )
            self._record_transition(asset, None, AssetStatus.PENDING.value, actor.account, "submitted")
            self._notify(
                asset,
                f"Property verification submitted for {survey_id}. Awaiting inspector assignment.",
            )
            stored = self.assets.insert(asset)

        log.info("Asset submitted", asset_id=stored.asset_id, survey_id=survey_id, owner=actor.account)
        return stored

    @timed_operation(log, "assign_inspector")
    def assign_inspector(self, credentials: Credentials, asset_id: int, inspector: str) -> LandAsset:
        target = AssetStatus.ASSIGNED
        with self._guard("assign_inspector", "asset", asset_id, credentials):
            actor = self._authenticate(credentials)
            asset = self.assets.load(asset_id)
            version = asset.version
            self._require_role(actor, roles_for_asset_target(target), target.value)
            require_asset_transition(asset.verification_status, target)
            inspector = self._require_inspector_role(inspector)
            if inspector == asset.owner:
                raise PreconditionFailed(
                    f"Inspector {inspector} owns asset {asset_id} and may not inspect it",
                    requested_state=target.value,
                )

            asset.assigned_inspector = inspector
            self._advance_asset(asset, target, actor.account)
            self._notify(asset, f"Inspector {inspector} assigned to property {asset.survey_id}.")
            stored = self.assets.compare_and_set(asset_id, version, asset)

        log.info("Inspector assigned", asset_id=asset_id, inspector=inspector)
        return stored

    @timed_operation(log, "schedule_inspection")
    def schedule_inspection(
        self,
        credentials: Credentials,
        asset_id: int,
        scheduled_for: str = "",
    ) -> LandAsset:
        target = AssetStatus.INSPECTION_SCHEDULED
        with self._guard("schedule_inspection", "asset", asset_id, credentials):
            actor = self._authenticate(credentials)
            asset = self.assets.load(asset_id)
            version = asset.version
            self._require_role(actor, roles_for_asset_target(target), target.value)
            if actor.role == Role.INSPECTOR and actor.account != asset.assigned_inspector:
                raise AuthorizationDenied(
                    f"Only the assigned inspector may schedule the inspection of asset {asset_id}",
                    requested_state=target.value,
                )
            require_asset_transition(asset.verification_status, target)

            when = f" for {scheduled_for}" if scheduled_for else ""
            self._advance_asset(asset, target, actor.account, scheduled_for)
            self._notify(asset, f"Inspection scheduled{when} for property {asset.survey_id}.")
            stored = self.assets.compare_and_set(asset_id, version, asset)
        return stored

    @timed_operation(log, "submit_inspection_report")
    def submit_inspection_report(
        self,
        credentials: Credentials,
        asset_id: int,
        report: Dict[str, Any],
        report_document: DocumentUpload,
    ) -> LandAsset:
        target = AssetStatus.INSPECTED
        with self._guard("submit_inspection_report", "asset", asset_id, credentials):
            actor = self._authenticate(credentials)
            asset = self.assets.load(asset_id)
            version = asset.version
            self._require_role(actor, roles_for_asset_target(target), target.value)
            if actor.account != asset.assigned_inspector:
                raise AuthorizationDenied(
                    f"Only the assigned inspector may report on asset {asset_id}",
                    requested_state=target.value,
                )
            require_asset_transition(asset.verification_status, target)
            outcome = self._outcome_from_report(report, report_document)

            asset.inspection_outcome = outcome
            self._advance_asset(asset, target, actor.account)
            approve = outcome.recommendation == Recommendation.APPROVE
            self._notify(
                asset,
                f"Inspection report submitted for property {asset.survey_id}. "
                f"Recommendation: {outcome.recommendation.value}.",
                Severity.SUCCESS if approve else Severity.WARNING,
            )
            stored = self.assets.compare_and_set(asset_id, version, asset)
        return stored

    def _check_verifier(self, actor: Actor, asset: LandAsset, target: AssetStatus) -> None:
        self._require_role(actor, roles_for_asset_target(target), target.value)
        if actor.account == asset.owner:
            raise AuthorizationDenied(
                f"Owner of asset {asset.asset_id} may not decide its verification",
                requested_state=target.value,
            )
        if (
            actor.role == Role.INSPECTOR
            and asset.assigned_inspector is not None
            and actor.account != asset.assigned_inspector
        ):
            raise AuthorizationDenied(
                f"Asset {asset.asset_id} is assigned to another inspector",
                requested_state=target.value,
            )

    @timed_operation(log, "verify")
    def verify(self, credentials: Credentials, asset_id: int, notes: str = "") -> LandAsset:
        """Mark the asset Verified; it is listed for sale automatically."""
        target = AssetStatus.VERIFIED
        with self._guard("verify", "asset", asset_id, credentials):
            actor = self._authenticate(credentials)
            asset = self.assets.load(asset_id)
            version = asset.version
            self._check_verifier(actor, asset, target)
            require_asset_transition(asset.verification_status, target)

            self._notify(
                asset,
                f"Property {asset.survey_id} has been verified and automatically listed for sale.",
                Severity.SUCCESS,
            )
            asset.assigned_inspector = None
            asset.listed_for_sale = True
            self._advance_asset(asset, target, actor.account, notes)
            stored = self.assets.compare_and_set(asset_id, version, asset)

        log.info("Asset verified", asset_id=asset_id, actor=actor.account)
        return stored

    @timed_operation(log, "reject")
    def reject(self, credentials: Credentials, asset_id: int, reason: str) -> LandAsset:
        target = AssetStatus.REJECTED
        with self._guard("reject", "asset", asset_id, credentials):
            actor = self._authenticate(credentials)
            asset = self.assets.load(asset_id)
            version = asset.version
            self._check_verifier(actor, asset, target)
            require_asset_transition(asset.verification_status, target)
            if not reason or not reason.strip():
                raise PreconditionFailed("A rejection reason is required", requested_state=target.value)

            self._notify(
                asset,
                f"Property verification rejected for {asset.survey_id}. Reason: {reason.strip()}",
                Severity.ERROR,
            )
            asset.assigned_inspector = None
            asset.listed_for_sale = False
            asset.rejection_reason = reason.strip()
            self._advance_asset(asset, target, actor.account, reason.strip())
            stored = self.assets.compare_and_set(asset_id, version, asset)

        log.info("Asset rejected", asset_id=asset_id, actor=actor.account)
        return stored

    @timed_operation(log, "set_listing")
    def set_listing(
        self,
        credentials: Credentials,
        asset_id: int,
        listed: bool,
        price: Optional[Union[int, str]] = None,
    ) -> LandAsset:
        """Owner lists or withdraws a verified asset that has no open transfer case."""
        with self._guard("set_listing", "asset", asset_id, credentials):
            actor = self._authenticate(credentials)
            asset = self.assets.load(asset_id)
            version = asset.version
            if actor.account != asset.owner:
                raise AuthorizationDenied(f"Only the owner may change the listing of asset {asset_id}")
            if asset.verification_status != AssetStatus.VERIFIED:
                raise PreconditionFailed(f"Asset {asset_id} is not verified")
            if asset.active_case_id is not None:
                raise PreconditionFailed(f"Asset {asset_id} has open transfer case {asset.active_case_id}")
            if asset.listed_for_sale == listed and price is None:
                raise InvalidTransition(
                    "listed" if listed else "unlisted",
                    "listed" if listed else "unlisted",
                )
            if price is not None:
                asset.declared_price = _parse_decimal(price, "price")

            asset.listed_for_sale = listed
            self._notify(
                asset,
                f"Property {asset.survey_id} {'listed for sale' if listed else 'withdrawn from sale'}.",
            )
            stored = self.assets.compare_and_set(asset_id, version, asset)
        return stored

    # ------------------------------------------------------------------
    # Transfer cases
    # ------------------------------------------------------------------

    @timed_operation(log, "create_transfer_request")
    def create_transfer_request(
        self,
        credentials: Credentials,
        request: Dict[str, Any],
        documents: Sequence[DocumentUpload] = (),
    ) -> TransferCase:
        """
        Open a transfer case for a listed asset and take the asset off the market.

        The asset write (unlist + claim ``active_case_id``) is the
        compare-and-set that serializes competing requests. The case id is
        drawn inside that write, so a request that loses the race consumes
        no id; the case record is inserted only after it succeeds.
        """
        asset_id = request.get("asset_id") if isinstance(request, dict) else None
        with self._guard("create_transfer_request", "asset", asset_id, credentials):
            actor = self._authenticate(credentials)
            schema.require_valid(request, schema.TRANSFER_REQUEST)
            to_account = request["to_account"].lower()

            asset = self.assets.load(asset_id)
            version = asset.version
            if actor.account != asset.owner:
                raise AuthorizationDenied(
                    f"Only the owner may transfer asset {asset_id}",
                    requested_state=CaseStatus.PENDING.value,
                )
            if not asset.listed_for_sale:
                raise PreconditionFailed(f"Asset {asset_id} is not listed for sale")
            if asset.active_case_id is not None:
                raise PreconditionFailed(f"Asset {asset_id} already has open transfer case {asset.active_case_id}")
            if to_account == asset.owner:
                raise PreconditionFailed("Transfer recipient must differ from the current owner")
            if not self.directory.is_registered(to_account):
                raise PreconditionFailed(f"Recipient {to_account} is not a registered account")
            self._check_document_count(documents, minimum=1)

            evidence = self.evidence.resolve(documents)

            def claim_case_id(claimed: LandAsset) -> None:
                claimed.active_case_id = self.cases.next_id()
                self._notify(
                    claimed,
                    f"Property {claimed.survey_id} withdrawn from sale "
                    f"for transfer case {claimed.active_case_id}.",
                )

            asset.listed_for_sale = False
            claimed = self.assets.compare_and_set(asset_id, version, asset, on_commit=claim_case_id)

            case = TransferCase(
                case_id=claimed.active_case_id,
                asset_id=asset_id,
                from_account=asset.owner,
                to_account=to_account,
                evidence=evidence,
            )
            self._record_transition(case, None, CaseStatus.PENDING.value, actor.account, "requested")
            self._notify(case, f"New land transfer request created for Land ID: {asset.survey_id}")
            stored = self.cases.insert(case)

        log.info("Transfer case opened", case_id=stored.case_id, asset_id=asset_id, to_account=to_account)
        return stored

    @timed_operation(log, "assign_case_inspector")
    def assign_case_inspector(self, credentials: Credentials, case_id: int, inspector: str) -> TransferCase:
        target = CaseStatus.INSPECTION_SCHEDULED
        with self._guard("assign_case_inspector", "case", case_id, credentials):
            actor = self._authenticate(credentials)
            case = self.cases.load(case_id)
            version = case.version
            self._require_role(actor, roles_for_case_target(target), target.value)
            require_case_transition(case.status, target)
            inspector = self._require_inspector_role(inspector)
            if inspector in (case.from_account, case.to_account):
                raise PreconditionFailed(
                    f"Inspector {inspector} is a party to case {case_id} and may not inspect it",
                    requested_state=target.value,
                )

            case.assigned_inspector = inspector
            self._advance_case(case, target, actor.account)
            self._notify(case, f"Inspector {inspector} assigned to transfer case {case_id}; inspection scheduled.")
            stored = self.cases.compare_and_set(case_id, version, case)
        return stored

    @timed_operation(log, "submit_case_inspection_report")
    def submit_case_inspection_report(
        self,
        credentials: Credentials,
        case_id: int,
        report: Dict[str, Any],
        report_document: DocumentUpload,
    ) -> TransferCase:
        target = CaseStatus.INSPECTED
        with self._guard("submit_case_inspection_report", "case", case_id, credentials):
            actor = self._authenticate(credentials)
            case = self.cases.load(case_id)
            version = case.version
            self._require_role(actor, roles_for_case_target(target), target.value)
            if actor.account != case.assigned_inspector:
                raise AuthorizationDenied(
                    f"Only the assigned inspector may report on case {case_id}",
                    requested_state=target.value,
                )
            require_case_transition(case.status, target)
            outcome = self._outcome_from_report(report, report_document)

            case.inspection_outcome = outcome
            self._advance_case(case, target, actor.account)
            approve = outcome.recommendation == Recommendation.APPROVE
            self._notify(
                case,
                f"Inspection report submitted for transfer case {case_id}. "
                f"Recommendation: {outcome.recommendation.value}.",
                Severity.SUCCESS if approve else Severity.WARNING,
            )
            stored = self.cases.compare_and_set(case_id, version, case)
        return stored

    @timed_operation(log, "approve")
    def approve(self, credentials: Credentials, case_id: int) -> TransferCase:
        """
        Approve an inspected case and finalize the ownership change.

        If finalization fails the error propagates with the case left
        APPROVED (``finalize_pending`` set); ``finalize_transfer`` completes it.
        """
        target = CaseStatus.APPROVED
        with self._guard("approve", "case", case_id, credentials):
            actor = self._authenticate(credentials)
            case = self.cases.load(case_id)
            version = case.version
            self._require_role(actor, roles_for_case_target(target), target.value)
            require_case_transition(case.status, target)

            case.finalize_pending = True
            self._advance_case(case, target, actor.account)
            self._notify(case, f"Transfer case {case_id} approved. Finalizing ownership change.", Severity.SUCCESS)
            self.cases.compare_and_set(case_id, version, case)

        return self.finalize_transfer(case_id)

    @timed_operation(log, "finalize_transfer")
    def finalize_transfer(self, case_id: int, credentials: Optional[Credentials] = None) -> TransferCase:
        """
        Complete the side effects of an approved or rejected case.

        APPROVED: move ownership (if not yet moved), then complete the case.
        REJECTED: release the asset if it is still held by this case.
        COMPLETED: nothing left to do; returns the case unchanged.

        Safe to call any number of times. Without credentials the call is a
        system recovery step; with credentials the caller must be an admin.
        """
        with self._guard("finalize_transfer", "case", case_id, credentials):
            actor_account = "system"
            if credentials is not None:
                actor = self._authenticate(credentials)
                self._require_role(actor, frozenset({Role.ADMIN}), CaseStatus.COMPLETED.value)
                actor_account = actor.account

            case = self.cases.load(case_id)
            if case.status == CaseStatus.COMPLETED:
                return case
            if case.status == CaseStatus.REJECTED:
                self._release_asset(case, actor_account)
                return self.cases.load(case_id)
            require_case_transition(case.status, CaseStatus.COMPLETED)
            if not case.finalize_pending:
                raise PreconditionFailed(f"Case {case_id} is approved but not marked for finalization")

            self._move_ownership(case, actor_account)

            version = case.version
            completed_at = utc_now()
            case.status = CaseStatus.COMPLETED
            case.finalize_pending = False
            case.completed_at = completed_at
            self._record_transition(
                case, CaseStatus.APPROVED.value, CaseStatus.COMPLETED.value, actor_account, "ownership transferred"
            )
            self._notify(
                case,
                f"Ownership transfer for case {case_id} completed. New owner: {case.to_account}.",
                Severity.SUCCESS,
            )
            stored = self.cases.compare_and_set(case_id, version, case)

        log.info("Transfer completed", case_id=case_id, asset_id=stored.asset_id, new_owner=stored.to_account)
        if self.synchronizer is not None:
            self.synchronizer.submit(TransferAnchor(
                case_id=stored.case_id,
                asset_id=stored.asset_id,
                new_owner=stored.to_account,
                completed_at=completed_at,
            ))
        return stored

    def _move_ownership(self, case: TransferCase, actor_account: str) -> None:
        asset = self.assets.load(case.asset_id)
        if asset.active_case_id != case.case_id:
            if asset.owner == case.to_account:
                return  # already moved by an earlier finalize
            raise PreconditionFailed(
                f"Asset {asset.asset_id} is not held by case {case.case_id}",
                current_state=case.state,
            )

        version = asset.version
        previous_owner = asset.owner
        asset.owner = case.to_account
        asset.listed_for_sale = False
        asset.active_case_id = None
        self._record_transition(
            asset, asset.state, asset.state, actor_account,
            f"ownership transferred from {previous_owner} to {case.to_account} (case {case.case_id})",
        )
        asset.notifications.append(Notification(
            message=f"Ownership of property {asset.survey_id} transferred to {case.to_account}.",
            sent_at=utc_now(),
            recipients=(previous_owner, case.to_account),
            severity=Severity.SUCCESS,
        ))
        self.assets.compare_and_set(asset.asset_id, version, asset)

    def _release_asset(self, case: TransferCase, actor_account: str) -> None:
        """Relist the asset held by a rejected case and clear its active case."""
        for attempt in range(1, FOLLOW_UP_ATTEMPTS + 1):
            asset = self.assets.load(case.asset_id)
            if asset.active_case_id != case.case_id:
                return
            version = asset.version
            asset.active_case_id = None
            asset.listed_for_sale = asset.verification_status == AssetStatus.VERIFIED
            self._notify(asset, f"Transfer case {case.case_id} rejected. Property {asset.survey_id} relisted for sale.")
            try:
                self.assets.compare_and_set(asset.asset_id, version, asset)
                return
            except ConcurrentModification:
                if attempt == FOLLOW_UP_ATTEMPTS:
                    raise
                log.info("Retrying asset release", case_id=case.case_id, attempt=attempt)

    @timed_operation(log, "reject_case")
    def reject_case(self, credentials: Credentials, case_id: int, reason: str) -> TransferCase:
        target = CaseStatus.REJECTED
        with self._guard("reject_case", "case", case_id, credentials):
            actor = self._authenticate(credentials)
            case = self.cases.load(case_id)
            version = case.version
            self._require_role(actor, roles_for_case_target(target), target.value)
            require_case_transition(case.status, target)
            if not reason or not reason.strip():
                raise PreconditionFailed("A rejection reason is required", requested_state=target.value)

            case.rejection_reason = reason.strip()
            self._advance_case(case, target, actor.account, reason.strip())
            self._notify(case, f"Transfer case {case_id} rejected. Reason: {reason.strip()}", Severity.ERROR)
            stored = self.cases.compare_and_set(case_id, version, case)

        # The rejection is committed; finalize_transfer releases the asset if
        # every attempt here loses its race.
        try:
            self._release_asset(stored, actor.account)
        except ConcurrentModification as e:
            log.error(
                "Asset release deferred to finalize_transfer",
                error_code="asset_release_deferred",
                case_id=case_id,
                asset_id=stored.asset_id,
                error=e.message,
            )

        log.info("Transfer case rejected", case_id=case_id, actor=actor.account)
        return stored

    def _record_ledger_receipt(self, anchor: TransferAnchor, receipt: str) -> None:
        for attempt in range(1, FOLLOW_UP_ATTEMPTS + 1):
            case = self.cases.load(anchor.case_id)
            if case.ledger_receipt is not None:
                return
            version = case.version
            case.ledger_receipt = receipt
            try:
                self.cases.compare_and_set(case.case_id, version, case)
                return
            except ConcurrentModification:
                if attempt == FOLLOW_UP_ATTEMPTS:
                    raise

    # ------------------------------------------------------------------
    # Queries (read the registries directly)
    # ------------------------------------------------------------------

    def get_asset(self, asset_id: int) -> LandAsset:
        return self.assets.load(asset_id)

    def get_case(self, case_id: int) -> TransferCase:
        return self.cases.load(case_id)

    def find_asset_by_survey_id(self, survey_id: str) -> Optional[LandAsset]:
        return self.assets.find_by_survey_id(survey_id)

    def list_assets(
        self,
        status: Optional[AssetStatus] = None,
        listed_for_sale: Optional[bool] = None,
        owner: Optional[str] = None,
    ) -> List[LandAsset]:
        return self.assets.list(status=status, listed_for_sale=listed_for_sale, owner=owner)

    def list_cases_for_account(self, account: str) -> List[TransferCase]:
        return self.cases.list_for_account(account)

    def list_notifications(self, account: str) -> List[NotificationView]:
        """Every notification addressed to ``account``, oldest first."""
        views: List[NotificationView] = []
        for asset in self.assets.all():
            views.extend(
                NotificationView("asset", asset.asset_id, n)
                for n in asset.notifications if n.addressed_to(account)
            )
        for case in self.cases.all():
            views.extend(
                NotificationView("case", case.case_id, n)
                for n in case.notifications if n.addressed_to(account)
            )
        views.sort(key=lambda v: v.notification.sent_at)
        return views

    def list_inspector_assignments(self, account: str) -> InspectorAssignments:
        acct = account.lower()
        return InspectorAssignments(
            assets=self.assets.select(lambda a: a.assigned_inspector == acct),
            cases=[c for c in self.cases.list_for_inspector(acct) if c.is_open],
        )

    def pending_case_counts(self) -> Dict[str, Dict[str, int]]:
        """Counts of records still awaiting a decision, by status."""
        asset_counts = {
            s.value: len(self.assets.list(status=s)) for s in AssetStatus if not s.is_terminal()
        }
        case_counts = {
            s.value: n for s, n in self.cases.count_by_status().items() if not s.is_terminal()
        }
        return {"assets": asset_counts, "cases": case_counts}

    def available_inspectors(self) -> List[Dict[str, Any]]:
        """Inspectors ordered by open workload (fewest first), then account."""
        workload = []
        for account in self.directory.accounts_with_role(Role.INSPECTOR):
            assignments = self.list_inspector_assignments(account)
            workload.append({
                "account": account,
                "open_assignments": len(assignments.assets) + len(assignments.cases),
            })
        workload.sort(key=lambda w: (w["open_assignments"], w["account"]))
        return workload
