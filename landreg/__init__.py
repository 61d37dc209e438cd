"""
Land Registry Workflow Engine

Governs verification of newly submitted land parcels and ownership transfer
cases between parties, mediated by an inspection step and an administrative
approval gate.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                         WORKFLOW ORCHESTRATOR                            │
    │    orchestrator.py   Role/state checks, CAS writes, approve saga        │
    │    transitions.py    Transition and role tables                         │
    │                                                                          │
    │  RECORDS                          COLLABORATORS                          │
    │    models.py     Assets, cases      identity.py   Signature recovery    │
    │    registry.py   Versioned stores   evidence.py   Content-addressed docs│
    │                                     ledger.py     Advisory anchoring    │
    │                                                                          │
    │  AMBIENT                                                                 │
    │    config.py  observability.py  resilience.py  schema.py  cli.py        │
    └─────────────────────────────────────────────────────────────────────────┘

Copyright (c) 2026 Momentum. All rights reserved.
"""

__version__ = "0.3.0"


# Lazy imports on first attribute access
def __getattr__(name):
    """Lazy import engine classes on first access."""

    if name in ("WorkflowEngine", "Actor", "NotificationView", "InspectorAssignments"):
        from landreg import orchestrator
        return getattr(orchestrator, name)

    if name in ("Wallet", "Credentials", "IdentityVerifier"):
        from landreg import identity
        return getattr(identity, name)

    if name in ("InMemoryEvidenceStore", "FileSystemEvidenceStore", "DocumentUpload", "content_hash"):
        from landreg import evidence
        return getattr(evidence, name)

    if name in ("InMemoryAccountDirectory", "AssetRegistry", "CaseRegistry"):
        from landreg import registry
        return getattr(registry, name)

    if name in ("InMemoryLedgerAdapter", "LedgerSynchronizer", "TransferAnchor"):
        from landreg import ledger
        return getattr(ledger, name)

    if name in ("AssetStatus", "CaseStatus", "Role", "EvidenceType", "LandAsset", "TransferCase"):
        from landreg import models
        return getattr(models, name)

    if name in ("WorkflowError", "AuthenticationFailed", "AuthorizationDenied", "InvalidTransition",
                "PreconditionFailed", "ConcurrentModification", "CollaboratorUnavailable",
                "RecordNotFound"):
        from landreg import errors
        return getattr(errors, name)

    raise AttributeError(f"module 'landreg' has no attribute '{name}'")


__all__ = [
    "__version__",
    # Orchestrator
    "WorkflowEngine",
    "Actor",
    "NotificationView",
    "InspectorAssignments",
    # Identity
    "Wallet",
    "Credentials",
    "IdentityVerifier",
    # Evidence
    "InMemoryEvidenceStore",
    "FileSystemEvidenceStore",
    "DocumentUpload",
    "content_hash",
    # Registries
    "InMemoryAccountDirectory",
    "AssetRegistry",
    "CaseRegistry",
    # Ledger
    "InMemoryLedgerAdapter",
    "LedgerSynchronizer",
    "TransferAnchor",
    # Records
    "AssetStatus",
    "CaseStatus",
    "Role",
    "EvidenceType",
    "LandAsset",
    "TransferCase",
    # Errors
    "WorkflowError",
    "AuthenticationFailed",
    "AuthorizationDenied",
    "InvalidTransition",
    "PreconditionFailed",
    "ConcurrentModification",
    "CollaboratorUnavailable",
    "RecordNotFound",
]
