"""
Record registries and the account directory.

The registries are the only owners of canonical ``LandAsset`` and
``TransferCase`` records. Every write is a compare-and-set on the record
version observed when the transition started; a mismatch means another
writer committed first and raises ``ConcurrentModification`` carrying the
authoritative record. Reads return private copies, so callers can mutate
what they loaded without touching stored state.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import copy
import threading
from typing import Callable, Dict, Generic, Iterable, List, Optional, Protocol, TypeVar, Union, runtime_checkable

from landreg.core import AtomicCounter, utc_now
from landreg.errors import CollaboratorUnavailable, ConcurrentModification, PreconditionFailed, RecordNotFound
from landreg.models import AssetStatus, CaseStatus, LandAsset, Role, TransferCase
from landreg.observability import EngineLayer, get_logger
from landreg.resilience import Timeout, TimeoutExceeded

log = get_logger("registry", EngineLayer.REGISTRY)

R = TypeVar("R", LandAsset, TransferCase)


class VersionedRegistry(Generic[R]):
    """Thread-safe versioned record store keyed by sequential integer ids."""

    kind = "record"

    def __init__(self):
        self._records: Dict[int, R] = {}
        self._lock = threading.RLock()
        self._ids = AtomicCounter(0)

    def _key(self, record: R) -> int:
        raise NotImplementedError

    def next_id(self) -> int:
        return self._ids.increment()

    def insert(self, record: R) -> R:
        with self._lock:
            key = self._key(record)
            if key in self._records:
                raise ConcurrentModification(
                    f"{self.kind} {key} already exists",
                    current_state=self._records[key].state,
                    record=self._records[key].to_dict(),
                )
            stored = copy.deepcopy(record)
            stored.version = 1
            self._records[key] = stored
            log.debug(f"Inserted {self.kind}", record_id=key, state=stored.state)
            return copy.deepcopy(stored)

    def load(self, record_id: int) -> R:
        with self._lock:
            try:
                return copy.deepcopy(self._records[record_id])
            except KeyError:
                raise RecordNotFound(f"No {self.kind} with id {record_id}") from None

    def find(self, record_id: int) -> Optional[R]:
        with self._lock:
            record = self._records.get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def compare_and_set(
        self,
        record_id: int,
        expected_version: int,
        new_record: R,
        on_commit: Optional[Callable[[R], None]] = None,
    ) -> R:
        """
        Store ``new_record`` iff the stored version still equals ``expected_version``.

        ``on_commit`` runs on the record about to be stored, under the
        registry lock and only once the version check has passed; it may
        still mutate the record. Returns a copy of the stored record with
        its new version.
        """
        with self._lock:
            current = self._records.get(record_id)
            if current is None:
                raise RecordNotFound(f"No {self.kind} with id {record_id}")
            if current.version != expected_version:
                log.info(
                    f"Lost compare-and-set on {self.kind}",
                    record_id=record_id,
                    expected_version=expected_version,
                    actual_version=current.version,
                )
                raise ConcurrentModification(
                    f"{self.kind} {record_id} was modified concurrently "
                    f"(expected version {expected_version}, found {current.version})",
                    current_state=current.state,
                    record=current.to_dict(),
                )
            stored = copy.deepcopy(new_record)
            if on_commit is not None:
                on_commit(stored)
            stored.version = expected_version + 1
            stored.updated_at = utc_now()
            self._records[record_id] = stored
            return copy.deepcopy(stored)

    def select(self, predicate: Callable[[R], bool]) -> List[R]:
        with self._lock:
            return [copy.deepcopy(r) for _, r in sorted(self._records.items()) if predicate(r)]

    def all(self) -> List[R]:
        return self.select(lambda r: True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class AssetRegistry(VersionedRegistry[LandAsset]):
    kind = "asset"

    def _key(self, record: LandAsset) -> int:
        return record.asset_id

    def insert(self, record: LandAsset) -> LandAsset:
        """Insert a new asset; its survey id must be free among non-rejected assets."""
        with self._lock:
            clash = self._find_live_survey(record.survey_id)
            if clash is not None:
                raise PreconditionFailed(
                    f"Survey id {record.survey_id!r} is already registered as asset {clash.asset_id}",
                    current_state=clash.state,
                    record=clash.to_dict(),
                )
            return super().insert(record)

    def _find_live_survey(self, survey_id: str) -> Optional[LandAsset]:
        for asset in self._records.values():
            if asset.survey_id == survey_id and asset.verification_status != AssetStatus.REJECTED:
                return asset
        return None

    def find_by_survey_id(self, survey_id: str) -> Optional[LandAsset]:
        """The live record for ``survey_id``, else the most recent rejected one."""
        with self._lock:
            live = self._find_live_survey(survey_id)
            if live is not None:
                return copy.deepcopy(live)
            matches = [a for a in self._records.values() if a.survey_id == survey_id]
            return copy.deepcopy(max(matches, key=lambda a: a.asset_id)) if matches else None

    def list(
        self,
        status: Optional[AssetStatus] = None,
        listed_for_sale: Optional[bool] = None,
        owner: Optional[str] = None,
    ) -> List[LandAsset]:
        owner_lc = owner.lower() if owner else None
        return self.select(lambda a: (
            (status is None or a.verification_status == status)
            and (listed_for_sale is None or a.listed_for_sale == listed_for_sale)
            and (owner_lc is None or a.owner == owner_lc)
        ))


class CaseRegistry(VersionedRegistry[TransferCase]):
    kind = "case"

    def _key(self, record: TransferCase) -> int:
        return record.case_id

    def open_cases_for_asset(self, asset_id: int) -> List[TransferCase]:
        return self.select(lambda c: c.asset_id == asset_id and c.is_open)

    def list_for_account(self, account: str) -> List[TransferCase]:
        acct = account.lower()
        return self.select(lambda c: acct in (c.from_account, c.to_account))

    def list_for_inspector(self, account: str) -> List[TransferCase]:
        acct = account.lower()
        return self.select(lambda c: c.assigned_inspector == acct)

    def count_by_status(self) -> Dict[CaseStatus, int]:
        counts = {status: 0 for status in CaseStatus}
        for case in self.all():
            counts[case.status] += 1
        return counts


# =============================================================================
# ACCOUNT DIRECTORY
# =============================================================================

@runtime_checkable
class AccountDirectory(Protocol):
    """Maps accounts to global roles."""

    def role_of(self, account: str) -> Optional[Role]:
        ...

    def is_registered(self, account: str) -> bool:
        ...

    def accounts_with_role(self, role: Role) -> List[str]:
        ...


class InMemoryAccountDirectory:
    """Account directory backed by a dict; accounts are stored lowercase."""

    def __init__(self, entries: Optional[Dict[str, Union[Role, str]]] = None):
        self._roles: Dict[str, Role] = {}
        self._lock = threading.Lock()
        for account, role in (entries or {}).items():
            self.register(account, role)

    def register(self, account: str, role: Union[Role, str] = Role.OWNER) -> None:
        with self._lock:
            self._roles[account.lower()] = role if isinstance(role, Role) else Role(role)

    def role_of(self, account: str) -> Optional[Role]:
        with self._lock:
            return self._roles.get(account.lower())

    def is_registered(self, account: str) -> bool:
        with self._lock:
            return account.lower() in self._roles

    def accounts_with_role(self, role: Role) -> List[str]:
        with self._lock:
            return sorted(a for a, r in self._roles.items() if r == role)


class DirectoryGateway:
    """Bounds account directory lookups with a timeout."""

    def __init__(self, directory: AccountDirectory, timeout_seconds: float = 5.0):
        self.directory = directory
        self._timeout = Timeout(seconds=timeout_seconds, name="account-directory")

    def _call(self, func, what: str):
        try:
            return self._timeout.execute(func)
        except TimeoutExceeded as e:
            log.error("Account directory timed out", error_code="directory_timeout", call=what)
            raise CollaboratorUnavailable("account directory", cause=e) from e
        except Exception as e:
            log.error("Account directory call failed", error_code="directory_error", call=what, error=str(e))
            raise CollaboratorUnavailable("account directory", cause=e) from e

    def role_of(self, account: str) -> Optional[Role]:
        return self._call(lambda: self.directory.role_of(account), "role_of")

    def is_registered(self, account: str) -> bool:
        return bool(self._call(lambda: self.directory.is_registered(account), "is_registered"))

    def accounts_with_role(self, role: Role) -> Iterable[str]:
        return self._call(lambda: self.directory.accounts_with_role(role), "accounts_with_role")
