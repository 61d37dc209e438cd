"""
Randomized operation sequences. Whatever mix of legal and illegal calls is
made, by whichever actor, the registries never leave their invariants.
"""

import random

import pytest

from conftest import deed, report_doc, signed, submission
from landreg.errors import WorkflowError
from landreg.models import AssetStatus


def check_invariants(engine):
    assets = engine.assets.all()
    cases = engine.cases.all()
    open_cases = [c for c in cases if c.is_open]

    for asset in assets:
        assert asset.invariant_violations() == [], asset.to_dict()
        held_by = [c for c in open_cases if c.asset_id == asset.asset_id]
        assert len(held_by) <= 1
        if held_by:
            assert asset.active_case_id == held_by[0].case_id
            assert not asset.listed_for_sale
        if asset.verification_status == AssetStatus.REJECTED:
            assert asset.rejection_reason

    for case in cases:
        assert case.from_account != case.to_account
        if case.status.value == "rejected":
            assert case.rejection_reason

    live_surveys = [a.survey_id for a in assets if a.verification_status != AssetStatus.REJECTED]
    assert len(live_surveys) == len(set(live_surveys))


class RandomDriver:

    def __init__(self, engine, party, seed):
        self.engine = engine
        self.party = party
        self.rng = random.Random(seed)
        self.actors = [party.owner, party.buyer, party.inspector, party.inspector2, party.admin, party.outsider]
        self.inspectors = [party.inspector.account, party.inspector2.account, party.buyer.account]

    def _asset_id(self):
        n = len(self.engine.assets)
        return self.rng.randint(1, n + 1) if n else 1

    def _case_id(self):
        n = len(self.engine.cases)
        return self.rng.randint(1, n + 1) if n else 1

    def _actor(self):
        return self.rng.choice(self.actors)

    def step(self):
        e, rng = self.engine, self.rng
        op = rng.choice([
            "submit", "assign", "schedule", "report", "verify", "reject", "listing",
            "transfer", "case_assign", "case_report", "approve", "case_reject", "finalize",
        ])
        who = self._actor()
        creds = signed(who, op)
        recommendation = rng.choice(["approve", "reject"])
        if op == "submit":
            e.submit_for_verification(creds, submission(f"SV-{rng.randint(1, 6)}"), [deed()])
        elif op == "assign":
            e.assign_inspector(creds, self._asset_id(), rng.choice(self.inspectors))
        elif op == "schedule":
            e.schedule_inspection(creds, self._asset_id())
        elif op == "report":
            e.submit_inspection_report(creds, self._asset_id(), {"recommendation": recommendation}, report_doc())
        elif op == "verify":
            e.verify(creds, self._asset_id())
        elif op == "reject":
            e.reject(creds, self._asset_id(), rng.choice(["", "boundary mismatch"]))
        elif op == "listing":
            e.set_listing(creds, self._asset_id(), rng.choice([True, False]))
        elif op == "transfer":
            to = rng.choice([self.party.owner, self.party.buyer, self.party.outsider]).account
            e.create_transfer_request(creds, {"asset_id": self._asset_id(), "to_account": to}, [deed()])
        elif op == "case_assign":
            e.assign_case_inspector(creds, self._case_id(), rng.choice(self.inspectors))
        elif op == "case_report":
            e.submit_case_inspection_report(creds, self._case_id(), {"recommendation": recommendation}, report_doc())
        elif op == "approve":
            e.approve(creds, self._case_id())
        elif op == "case_reject":
            e.reject_case(creds, self._case_id(), rng.choice(["", "title dispute"]))
        elif op == "finalize":
            e.finalize_transfer(self._case_id())


class TestInvariantsHold:

    @pytest.mark.parametrize("seed", [7, 19, 2026])
    def test_random_sequences(self, engine, party, seed):
        driver = RandomDriver(engine, party, seed)
        rejected = 0
        for _ in range(150):
            try:
                driver.step()
            except WorkflowError:
                rejected += 1
            check_invariants(engine)
        assert rejected > 0
        assert engine.audit.verify_chain() is None

    @pytest.mark.slow
    @pytest.mark.parametrize("seed", range(20))
    def test_long_random_sequences(self, engine, party, seed):
        driver = RandomDriver(engine, party, 1000 + seed)
        for _ in range(1000):
            try:
                driver.step()
            except WorkflowError:
                pass
            check_invariants(engine)
