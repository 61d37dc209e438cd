import itertools
import os
import pathlib
import sys
from dataclasses import dataclass
from typing import Optional

import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import landreg`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from landreg.config import LandregConfig  # noqa: E402
from landreg.evidence import DocumentUpload, InMemoryEvidenceStore  # noqa: E402
from landreg.identity import Credentials, Wallet  # noqa: E402
from landreg.ledger import InMemoryLedgerAdapter, LedgerSynchronizer  # noqa: E402
from landreg.models import EvidenceType, Role  # noqa: E402
from landreg.orchestrator import WorkflowEngine  # noqa: E402
from landreg.registry import InMemoryAccountDirectory  # noqa: E402


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: slow correctness tests (skipped unless LANDREG_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_slow = _env_flag('LANDREG_RUN_SLOW')
    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set LANDREG_RUN_SLOW=1 to enable'))


_nonce = itertools.count(1)


def signed(wallet: Wallet, action: str = "op") -> Credentials:
    """Fresh credentials for one call."""
    return wallet.credentials(f"landreg:{action}:{next(_nonce)}")


@dataclass
class Party:
    owner: Wallet
    buyer: Wallet
    inspector: Wallet
    inspector2: Wallet
    admin: Wallet
    outsider: Wallet


@pytest.fixture
def party() -> Party:
    return Party(*(Wallet.generate() for _ in range(6)))


@pytest.fixture
def directory(party: Party) -> InMemoryAccountDirectory:
    return InMemoryAccountDirectory({
        party.owner.account: Role.OWNER,
        party.buyer.account: Role.OWNER,
        party.inspector.account: Role.INSPECTOR,
        party.inspector2.account: Role.INSPECTOR,
        party.admin.account: Role.ADMIN,
    })


@pytest.fixture
def store() -> InMemoryEvidenceStore:
    return InMemoryEvidenceStore()


@pytest.fixture
def ledger() -> InMemoryLedgerAdapter:
    return InMemoryLedgerAdapter()


@pytest.fixture
def config() -> LandregConfig:
    cfg = LandregConfig()
    cfg.evidence.timeout_seconds.set(5.0)
    cfg.directory.timeout_seconds.set(5.0)
    cfg.ledger.base_delay_seconds.set(0.0)
    cfg.ledger.timeout_seconds.set(2.0)
    return cfg


@pytest.fixture
def engine(store, directory, ledger, config):
    eng = WorkflowEngine(store, directory, ledger=ledger, config=config)
    yield eng
    eng.close()


def submission(survey_id: str = "SV-1001", **overrides) -> dict:
    payload = {
        "survey_id": survey_id,
        "location": "Plot 7, North Ridge",
        "category": "Agricultural",
        "area": "2.5",
        "area_unit": "acre",
        "declared_price": "120000",
    }
    payload.update(overrides)
    return payload


def deed(content: bytes = b"deed of sale") -> DocumentUpload:
    return DocumentUpload(EvidenceType.PROPERTY_DEED, data=content, filename="deed.pdf")


def report_doc(content: bytes = b"inspection report") -> DocumentUpload:
    return DocumentUpload(EvidenceType.INSPECTION_REPORT, data=content, filename="report.pdf")


def agreement(content: bytes = b"sale agreement") -> DocumentUpload:
    return DocumentUpload(EvidenceType.PROPERTY_DEED, data=content, filename="agreement.pdf")


class Flows:
    """Drives records to a given state through the public engine API."""

    def __init__(self, engine: WorkflowEngine, party: Party):
        self.engine = engine
        self.party = party
        self._surveys = itertools.count(1)

    def submitted(self, survey_id: Optional[str] = None, owner: Optional[Wallet] = None):
        owner = owner or self.party.owner
        survey_id = survey_id or f"SV-{next(self._surveys):04d}"
        return self.engine.submit_for_verification(signed(owner, "submit"), submission(survey_id), [deed()])

    def inspected(self, recommendation: str = "approve"):
        p = self.party
        asset = self.submitted()
        self.engine.assign_inspector(signed(p.admin), asset.asset_id, p.inspector.account)
        self.engine.schedule_inspection(signed(p.inspector), asset.asset_id)
        return self.engine.submit_inspection_report(
            signed(p.inspector), asset.asset_id,
            {"recommendation": recommendation, "notes": "site visited"}, report_doc(),
        )

    def verified(self):
        asset = self.inspected()
        return self.engine.verify(signed(self.party.admin), asset.asset_id)

    def open_case(self, asset=None):
        asset = asset or self.verified()
        return self.engine.create_transfer_request(
            signed(self.party.owner, "transfer"),
            {"asset_id": asset.asset_id, "to_account": self.party.buyer.account},
            [agreement()],
        )

    def inspected_case(self, recommendation: str = "approve"):
        p = self.party
        case = self.open_case()
        self.engine.assign_case_inspector(signed(p.admin), case.case_id, p.inspector.account)
        return self.engine.submit_case_inspection_report(
            signed(p.inspector), case.case_id,
            {"recommendation": recommendation, "notes": "parties met"}, report_doc(b"case report"),
        )


@pytest.fixture
def flows(engine, party) -> Flows:
    return Flows(engine, party)


@pytest.fixture
def fast_sync(ledger):
    """A synchronizer that never sleeps between retries."""
    sync = LedgerSynchronizer(ledger, timeout_seconds=2.0, max_attempts=3, base_delay_seconds=0.0, sleep=lambda s: None)
    yield sync
    sync.stop()
