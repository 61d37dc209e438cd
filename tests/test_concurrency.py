"""
Concurrent transitions on the same record: both callers read the same
version, exactly one compare-and-set wins and the other gets
ConcurrentModification carrying the winner's record.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import Flows, agreement, deed, signed, submission
from landreg.errors import ConcurrentModification
from landreg.models import AssetStatus
from landreg.orchestrator import WorkflowEngine
from landreg.registry import AssetRegistry


class LockstepAssetRegistry(AssetRegistry):
    """Holds every ``load`` at a barrier so two callers observe the same version."""

    def __init__(self):
        super().__init__()
        self.barrier = None

    def load(self, record_id):
        record = super().load(record_id)
        if self.barrier is not None:
            self.barrier.wait(timeout=5)
        return record


@pytest.fixture
def lockstep(store, directory, ledger, config):
    registry = LockstepAssetRegistry()
    eng = WorkflowEngine(store, directory, ledger=ledger, config=config, assets=registry)
    yield eng, registry
    eng.close()


def race(*calls):
    """Run ``calls`` in parallel; return (results, errors) in call order."""
    outcomes = [None] * len(calls)

    def run(i, call):
        try:
            outcomes[i] = ("ok", call())
        except Exception as e:  # collected for assertions
            outcomes[i] = ("err", e)

    threads = [threading.Thread(target=run, args=(i, c)) for i, c in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)
    return outcomes


class TestConcurrentTransitions:

    def test_two_admins_assign_different_inspectors(self, lockstep, party):
        engine, registry = lockstep
        asset = engine.submit_for_verification(signed(party.owner), submission("SV-RACE"), [deed()])

        registry.barrier = threading.Barrier(2)
        outcomes = race(
            lambda: engine.assign_inspector(signed(party.admin), asset.asset_id, party.inspector.account),
            lambda: engine.assign_inspector(signed(party.admin), asset.asset_id, party.inspector2.account),
        )
        registry.barrier = None

        winners = [v for kind, v in outcomes if kind == "ok"]
        losers = [v for kind, v in outcomes if kind == "err"]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], ConcurrentModification)
        assert losers[0].retryable

        stored = engine.get_asset(asset.asset_id)
        assert stored.assigned_inspector == winners[0].assigned_inspector
        assert losers[0].record["assigned_inspector"] == stored.assigned_inspector
        assert losers[0].current_state == "assigned"
        assert sum(1 for n in stored.notifications if "assigned to property" in n.message) == 1

    def test_verify_races_reject(self, lockstep, party):
        engine, registry = lockstep
        asset = engine.submit_for_verification(signed(party.owner), submission("SV-RACE-2"), [deed()])

        registry.barrier = threading.Barrier(2)
        outcomes = race(
            lambda: engine.verify(signed(party.admin), asset.asset_id),
            lambda: engine.reject(signed(party.inspector), asset.asset_id, "forged deed"),
        )
        registry.barrier = None

        kinds = sorted(kind for kind, _ in outcomes)
        assert kinds == ["err", "ok"]
        stored = engine.get_asset(asset.asset_id)
        assert stored.verification_status in (AssetStatus.VERIFIED, AssetStatus.REJECTED)
        assert stored.invariant_violations() == []

    def test_competing_transfer_requests_open_one_case(self, lockstep, party):
        engine, registry = lockstep
        asset = Flows(engine, party).verified()

        registry.barrier = threading.Barrier(2)
        request = {"asset_id": asset.asset_id, "to_account": party.buyer.account}
        outcomes = race(
            lambda: engine.create_transfer_request(signed(party.owner), request, [agreement()]),
            lambda: engine.create_transfer_request(signed(party.owner), request, [agreement()]),
        )
        registry.barrier = None

        assert sorted(kind for kind, _ in outcomes) == ["err", "ok"]
        assert len(engine.cases.open_cases_for_asset(asset.asset_id)) == 1
        assert engine.cases.open_cases_for_asset(asset.asset_id)[0].case_id == 1
        assert engine.get_asset(asset.asset_id).active_case_id is not None


class TestCompareAndSet:

    def test_on_commit_runs_only_for_a_current_version(self, engine, flows):
        asset = flows.submitted()
        calls = []

        with pytest.raises(ConcurrentModification):
            engine.assets.compare_and_set(
                asset.asset_id, asset.version - 1, asset, on_commit=lambda r: calls.append(r.asset_id),
            )
        assert calls == []

        stored = engine.assets.compare_and_set(
            asset.asset_id, asset.version, asset, on_commit=lambda r: calls.append(r.asset_id),
        )
        assert calls == [asset.asset_id]
        assert stored.version == asset.version + 1


class TestParallelSubmissions:

    def test_ids_are_unique(self, engine, party):
        def submit(i):
            return engine.submit_for_verification(
                signed(party.owner), submission(f"SV-PAR-{i:03d}"), [deed(f"deed {i}".encode())],
            ).asset_id

        with ThreadPoolExecutor(max_workers=8) as pool:
            ids = list(pool.map(submit, range(40)))
        assert len(set(ids)) == 40
        assert len(engine.list_assets(status=AssetStatus.PENDING)) == 40

    def test_same_survey_id_registered_once(self, engine, party):
        def submit(_):
            try:
                return engine.submit_for_verification(signed(party.owner), submission("SV-ONCE"), [deed()])
            except Exception as e:  # collected for assertions
                return e

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(submit, range(8)))
        created = [r for r in results if not isinstance(r, Exception)]
        assert len(created) == 1
