"""
Transition tables, error payloads and package-level exports.
"""

import pytest

import landreg
from landreg import transitions
from landreg.errors import ConcurrentModification, InvalidTransition, PreconditionFailed, WorkflowError
from landreg.models import AssetStatus, CaseStatus, Role


class TestAssetTable:

    @pytest.mark.parametrize("current,target", [
        (AssetStatus.PENDING, AssetStatus.ASSIGNED),
        (AssetStatus.PENDING, AssetStatus.VERIFIED),
        (AssetStatus.ASSIGNED, AssetStatus.INSPECTION_SCHEDULED),
        (AssetStatus.INSPECTION_SCHEDULED, AssetStatus.INSPECTED),
        (AssetStatus.INSPECTED, AssetStatus.REJECTED),
    ])
    def test_allowed(self, current, target):
        assert transitions.can_advance_asset(current, target)
        transitions.require_asset_transition(current, target)

    @pytest.mark.parametrize("current,target", [
        (AssetStatus.VERIFIED, AssetStatus.VERIFIED),
        (AssetStatus.REJECTED, AssetStatus.PENDING),
        (AssetStatus.INSPECTION_SCHEDULED, AssetStatus.VERIFIED),
        (AssetStatus.PENDING, AssetStatus.INSPECTED),
    ])
    def test_refused(self, current, target):
        with pytest.raises(InvalidTransition) as exc_info:
            transitions.require_asset_transition(current, target)
        assert exc_info.value.current_state == current.value
        assert exc_info.value.requested_state == target.value

    def test_terminal_states_have_no_exits(self):
        for status in AssetStatus:
            if status.is_terminal():
                assert transitions.ASSET_TRANSITIONS[status] == frozenset()

    def test_only_inspectors_report(self):
        assert transitions.roles_for_asset_target(AssetStatus.INSPECTED) == frozenset({Role.INSPECTOR})
        assert Role.OWNER not in transitions.roles_for_asset_target(AssetStatus.VERIFIED)
        assert transitions.roles_for_asset_target(AssetStatus.PENDING) == frozenset()


class TestCaseTable:

    def test_linear_path(self):
        path = [
            CaseStatus.PENDING,
            CaseStatus.INSPECTION_SCHEDULED,
            CaseStatus.INSPECTED,
            CaseStatus.APPROVED,
            CaseStatus.COMPLETED,
        ]
        for current, target in zip(path, path[1:]):
            transitions.require_case_transition(current, target)

    def test_reject_only_after_inspection(self):
        assert not transitions.can_advance_case(CaseStatus.PENDING, CaseStatus.REJECTED)
        assert transitions.can_advance_case(CaseStatus.INSPECTED, CaseStatus.REJECTED)
        with pytest.raises(InvalidTransition):
            transitions.require_case_transition(CaseStatus.APPROVED, CaseStatus.REJECTED)

    def test_completion_is_system_driven(self):
        assert transitions.roles_for_case_target(CaseStatus.COMPLETED) is None
        assert transitions.roles_for_case_target(CaseStatus.APPROVED) == frozenset({Role.ADMIN})


class TestErrors:

    def test_to_dict(self):
        err = PreconditionFailed("area must be greater than zero", requested_state="pending")
        assert err.to_dict() == {
            "error": "precondition_failed",
            "message": "area must be greater than zero",
            "retryable": False,
            "current_state": None,
            "requested_state": "pending",
            "record": None,
        }

    def test_attach_record_keeps_first(self):
        err = ConcurrentModification("lost race", record={"version": 3}, current_state="assigned")
        err.attach_record({"version": 4}, "verified")
        assert err.record == {"version": 3}
        assert err.current_state == "assigned"
        assert err.retryable is True
        assert isinstance(err, WorkflowError)


class TestPackageExports:

    def test_lazy_exports(self):
        from landreg.orchestrator import WorkflowEngine

        assert landreg.WorkflowEngine is WorkflowEngine
        assert landreg.AssetStatus is AssetStatus
        assert landreg.__version__ == "0.3.0"

    def test_every_listed_name_resolves(self):
        for name in landreg.__all__:
            assert getattr(landreg, name) is not None

    def test_unknown_attribute(self):
        with pytest.raises(AttributeError):
            landreg.NoSuchThing
