"""In-memory walkthrough: verify a parcel, then transfer it to a buyer."""

from __future__ import annotations

import itertools
from typing import Any, Dict

from landreg.config import get_config
from landreg.evidence import DocumentUpload, InMemoryEvidenceStore
from landreg.identity import Credentials, Wallet
from landreg.ledger import InMemoryLedgerAdapter
from landreg.models import EvidenceType, Role
from landreg.orchestrator import WorkflowEngine
from landreg.registry import InMemoryAccountDirectory

_nonce = itertools.count(1)


def signed(wallet: Wallet, action: str) -> Credentials:
    return wallet.credentials(f"landreg:{action}:{next(_nonce)}")


def run_demo() -> Dict[str, Any]:
    owner, buyer, inspector, admin = (Wallet.generate() for _ in range(4))
    directory = InMemoryAccountDirectory({
        owner.account: Role.OWNER,
        buyer.account: Role.OWNER,
        inspector.account: Role.INSPECTOR,
        admin.account: Role.ADMIN,
    })
    ledger = InMemoryLedgerAdapter()

    with WorkflowEngine(InMemoryEvidenceStore(), directory, ledger=ledger, config=get_config()) as engine:
        asset = engine.submit_for_verification(
            signed(owner, "submit"),
            {
                "survey_id": "SV-DEMO-001",
                "location": "Plot 14, Riverside",
                "category": "Residential",
                "area": "1200",
                "area_unit": "sq ft",
                "declared_price": "250000",
            },
            [DocumentUpload(EvidenceType.PROPERTY_DEED, data=b"demo deed", filename="deed.pdf")],
        )
        engine.assign_inspector(signed(admin, "assign"), asset.asset_id, inspector.account)
        engine.schedule_inspection(signed(inspector, "schedule"), asset.asset_id)
        engine.submit_inspection_report(
            signed(inspector, "report"),
            asset.asset_id,
            {
                "recommendation": "approve",
                "notes": "Boundaries match the survey",
                "checklist": {"property_visited": True, "boundaries_checked": True},
            },
            DocumentUpload(EvidenceType.INSPECTION_REPORT, data=b"demo report", filename="report.pdf"),
        )
        engine.verify(signed(admin, "verify"), asset.asset_id)

        case = engine.create_transfer_request(
            signed(owner, "transfer"),
            {"asset_id": asset.asset_id, "to_account": buyer.account},
            [DocumentUpload(EvidenceType.PROPERTY_DEED, data=b"demo sale agreement", filename="agreement.pdf")],
        )
        engine.assign_case_inspector(signed(admin, "case-assign"), case.case_id, inspector.account)
        engine.submit_case_inspection_report(
            signed(inspector, "case-report"),
            case.case_id,
            {"recommendation": "approve", "notes": "Parties confirmed"},
            DocumentUpload(EvidenceType.INSPECTION_REPORT, data=b"demo case report", filename="case.pdf"),
        )
        engine.approve(signed(admin, "approve"), case.case_id)

        if engine.synchronizer is not None:
            engine.synchronizer.drain(timeout=10.0)

        return {
            "asset": engine.get_asset(asset.asset_id).to_dict(),
            "case": engine.get_case(case.case_id).to_dict(),
            "ledger": engine.synchronizer.metrics.to_dict() if engine.synchronizer else None,
            "audit_events": len(engine.audit.events),
            "audit_chain_intact": engine.audit.verify_chain() is None,
        }
