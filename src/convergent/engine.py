"""Reconciliation engine: converge stored state toward desired configuration."""

from __future__ import annotations

import logging
from collections.abc import Callable, Hashable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from .adapter import ResourceAdapter, build_adapters
from .context import Context
from .errors import ConvergentError, ReconcileError, ResourceError
from .plan import Action, Change, Plan, diff
from .schema import AttributeSet
from .state import StateRecord, StateStore

if TYPE_CHECKING:
    from .workspace import DesiredResource, Workspace

logger = logging.getLogger(__name__)


class Status(StrEnum):
    OK = "ok"
    FAILED = "failed"
    PLANNED = "planned"
    CANCELLED = "cancelled"


@dataclass
class Result:
    """Outcome of reconciling one resource instance."""

    address: str
    action: Action
    status: Status = Status.OK
    error: Exception | None = None
    drifted: bool = False


@dataclass
class Report:
    """Outcomes of one apply pass, in address order."""

    results: list[Result] = field(default_factory=list)

    def __getitem__(self, address: str) -> Result:
        for result in self.results:
            if result.address == address:
                return result
        raise KeyError(address)

    @property
    def failed(self) -> list[Result]:
        return [r for r in self.results if r.status is Status.FAILED]

    @property
    def cancelled(self) -> list[Result]:
        return [r for r in self.results if r.status is Status.CANCELLED]

    @property
    def drifted(self) -> list[str]:
        return [r.address for r in self.results if r.drifted]

    @property
    def ok(self) -> bool:
        return not self.failed and not self.cancelled

    def raise_for_errors(self) -> None:
        if self.failed:
            raise ReconcileError(self)


def _record(address: str, kind: str, ident: str, attrs: Mapping[str, Any]) -> StateRecord:
    return StateRecord(address=address, kind=kind, id=ident, attributes=dict(attrs))


class Reconciler:
    """Drives resource adapters to converge stored state on desired configuration.

    Instances that share no identifier run concurrently on a bounded worker
    pool. Instances that do are reconciled together, under their address and
    identity locks, with deletes issued before creates.
    """

    def __init__(
        self,
        adapters: Mapping[str, ResourceAdapter[Any]],
        store: StateStore,
        *,
        parallelism: int = 4,
    ) -> None:
        if parallelism < 1:
            raise ValueError(f"parallelism must be at least 1, got {parallelism}")
        self.adapters = dict(adapters)
        self.store = store
        self.parallelism = parallelism

    @classmethod
    def from_workspace(cls, workspace: Workspace, transport: Any) -> Reconciler:
        """Build a reconciler from workspace settings and a shared transport."""
        settings = workspace.settings
        store = StateStore(settings.state) if settings.state else StateStore()
        return cls(build_adapters(transport), store, parallelism=settings.parallelism)

    def _adapter(self, kind: str) -> ResourceAdapter[Any]:
        if kind not in self.adapters:
            raise ValueError(f"No adapter configured for resource kind: '{kind}'")
        return self.adapters[kind]

    def status(self, address: str) -> StateRecord | None:
        """Return the last committed record for an address."""
        return self.store.get(address)

    # -- Validation --

    def _validate(self, desired: Mapping[str, DesiredResource]) -> dict[str, AttributeSet]:
        """Validate every desired resource before any remote call is made."""
        validated: dict[str, AttributeSet] = {}
        owners: dict[tuple[str, str], str] = {}

        for address, res in desired.items():
            attrs = self._adapter(res.kind).schema.validate(res.attributes)
            ident = attrs.ident
            if ident is not None:
                key = (res.kind, ident)
                if key in owners:
                    raise ValueError(
                        f"{address} and {owners[key]} both manage {res.kind} '{ident}'"
                    )
                owners[key] = address
            validated[address] = attrs

        for address in self.store.addresses():
            record = self.store.get(address)
            if record is not None:
                self._adapter(record.kind)

        return validated

    def _adopt_moves(
        self,
        desired: Mapping[str, DesiredResource],
        validated: dict[str, AttributeSet],
    ) -> None:
        """Re-key stored records whose identity now lives under a new address."""
        for address, attrs in validated.items():
            ident = attrs.ident
            if ident is None or address in self.store:
                continue
            kind = desired[address].kind
            record = self.store.find(kind, ident)
            if record is None or record.address in desired:
                continue
            logger.info("Moving %s to %s", record.address, address)
            with self.store.lock(record.address, address, (kind, ident)):
                self.store.remove(record.address)
                self.store.put(record.model_copy(update={"address": address}))

    # -- Refresh --

    def _refresh_record(self, record: StateRecord, ctx: Context) -> StateRecord | None:
        """Read remote state for a record; None means the object is gone."""
        adapter = self._adapter(record.kind)
        attrs = adapter.read(record.id)
        if attrs is None:
            logger.warning("%s no longer exists remotely; removing from state", record.address)
            if not ctx.dry_run:
                self.store.remove(record.address)
            return None
        refreshed = record.model_copy(
            update={"attributes": attrs.to_dict(), "updated_at": datetime.now(UTC)}
        )
        if not ctx.dry_run:
            self.store.put(refreshed)
        return refreshed

    def refresh(self, ctx: Context | None = None) -> Report:
        """Read every stored instance and drop records for vanished objects."""
        ctx = ctx or Context()

        def _one(group: list[str]) -> list[Result]:
            (address,) = group
            if ctx.cancelled:
                return [Result(address, Action.NOOP, Status.CANCELLED)]
            record = self.store.get(address)
            if record is None:
                return [Result(address, Action.NOOP)]
            with self.store.lock(address, (record.kind, record.id)):
                record = self.store.get(address)
                if record is None:
                    return [Result(address, Action.NOOP)]
                try:
                    refreshed = self._refresh_record(record, ctx)
                except (ConvergentError, OSError) as exc:
                    logger.error("Failed to refresh %s: %s", address, exc)
                    return [Result(address, Action.NOOP, Status.FAILED, error=exc)]
                return [Result(address, Action.NOOP, drifted=refreshed is None)]

        return self._run(_one, [[address] for address in self.store.addresses()])

    # -- Planning --

    def plan(
        self,
        desired: Mapping[str, DesiredResource],
        *,
        refresh: bool = False,
    ) -> Plan:
        """Compute changes against stored state without modifying anything.

        With refresh, remote state is read first (in memory only).
        """
        validated = self._validate(desired)
        dry = Context(dry_run=True)
        changes: list[Change] = []

        for address in sorted(set(validated) | set(self.store.addresses())):
            prior = self.store.get(address)
            kind = desired[address].kind if address in desired else prior.kind  # type: ignore[union-attr]
            if prior is not None and refresh:
                prior = self._refresh_record(prior, dry)
            changes.append(diff(address, kind, validated.get(address), prior))

        return Plan(changes)

    # -- Apply --

    def _identities(
        self,
        address: str,
        kinds: Mapping[str, str],
        validated: Mapping[str, AttributeSet],
    ) -> set[tuple[str, str]]:
        """(kind, identifier) pairs an address holds in state or claims in config."""
        keys: set[tuple[str, str]] = set()
        if (record := self.store.get(address)) is not None:
            keys.add((record.kind, record.id))
        attrs = validated.get(address)
        if attrs is not None and attrs.ident is not None:
            keys.add((kinds[address], attrs.ident))
        return keys

    def _group(
        self,
        addresses: list[str],
        kinds: Mapping[str, str],
        validated: Mapping[str, AttributeSet],
    ) -> list[list[str]]:
        """Partition addresses so instances touching a common identifier share a group."""
        parent = {address: address for address in addresses}

        def root(address: str) -> str:
            while parent[address] != address:
                parent[address] = parent[parent[address]]
                address = parent[address]
            return address

        owner: dict[tuple[str, str], str] = {}
        for address in addresses:
            for key in self._identities(address, kinds, validated):
                if key in owner:
                    parent[root(address)] = root(owner[key])
                else:
                    owner[key] = address

        groups: dict[str, list[str]] = {}
        for address in addresses:
            groups.setdefault(root(address), []).append(address)
        return sorted(groups.values())

    def apply(self, desired: Mapping[str, DesiredResource], ctx: Context | None = None) -> Report:
        """Refresh, plan and execute changes for every known instance."""
        ctx = ctx or Context()
        validated = self._validate(desired)
        if not ctx.dry_run:
            self._adopt_moves(desired, validated)

        kinds = {address: res.kind for address, res in desired.items()}
        addresses = sorted(set(validated) | set(self.store.addresses()))
        groups = self._group(addresses, kinds, validated)
        logger.info("Reconciling %d resource(s) in %d group(s)", len(addresses), len(groups))

        def _one(group: list[str]) -> list[Result]:
            if ctx.cancelled:
                logger.debug("Skipping %s; pass cancelled", ", ".join(group))
                return [Result(address, Action.NOOP, Status.CANCELLED) for address in group]
            keys: list[Hashable] = list(group)
            for address in group:
                keys.extend(self._identities(address, kinds, validated))
            with self.store.lock(*keys):
                return self._reconcile(group, kinds, validated, ctx)

        return self._run(_one, groups)

    def _run(self, func: Callable[[list[str]], list[Result]], groups: list[list[str]]) -> Report:
        if not groups:
            return Report()
        workers = min(self.parallelism, len(groups))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="convergent") as pool:
            results = [r for batch in pool.map(func, groups) for r in batch]
        return Report(sorted(results, key=lambda r: r.address))

    def _prepare(
        self,
        address: str,
        kind: str | None,
        desired: AttributeSet | None,
        ctx: Context,
    ) -> Result | tuple[Change, bool]:
        """Refresh one instance and diff it; a Result means nothing is left to run."""
        drifted = False
        prior = self.store.get(address)
        try:
            if prior is not None:
                kind = prior.kind if kind is None else kind
                refreshed = self._refresh_record(prior, ctx)
                drifted = refreshed is None
                prior = refreshed
        except (ConvergentError, OSError) as exc:
            logger.error("Failed to refresh %s: %s", address, exc)
            return Result(address, Action.NOOP, Status.FAILED, error=exc)

        if kind is None:
            return Result(address, Action.NOOP)
        change = diff(address, kind, desired, prior)
        if change.action is Action.NOOP:
            logger.debug("Skipping %s; up to date", address)
            return Result(address, Action.NOOP, drifted=drifted)
        if ctx.dry_run:
            logger.info("[DRY RUN] Would %s", change.describe())
            return Result(address, change.action, Status.PLANNED, drifted=drifted)
        return change, drifted

    def _reconcile(
        self,
        group: list[str],
        kinds: Mapping[str, str],
        validated: Mapping[str, AttributeSet],
        ctx: Context,
    ) -> list[Result]:
        """Run one identity group: every release happens before any claim."""
        results: dict[str, Result] = {}
        pending: list[tuple[Change, bool]] = []
        for address in group:
            outcome = self._prepare(address, kinds.get(address), validated.get(address), ctx)
            if isinstance(outcome, Result):
                results[address] = outcome
            else:
                logger.info("Applying %s", outcome[0].describe())
                pending.append(outcome)

        def _attempt(change: Change, drifted: bool, step: Callable[[Change], None]) -> None:
            try:
                step(change)
            except (ConvergentError, OSError) as exc:
                logger.error("Failed to %s %s: %s", change.action, change.address, exc)
                results[change.address] = Result(
                    change.address, change.action, Status.FAILED, error=exc, drifted=drifted
                )

        for change, drifted in pending:
            if change.action in (Action.DELETE, Action.REPLACE):
                _attempt(change, drifted, self._delete)

        for change, drifted in pending:
            if change.address in results:
                continue
            if change.action in (Action.CREATE, Action.REPLACE):
                _attempt(change, drifted, self._create)
            elif change.action is Action.UPDATE:
                _attempt(change, drifted, self._update)
            results.setdefault(change.address, Result(change.address, change.action, drifted=drifted))

        return [results[address] for address in group]

    def _create(self, change: Change) -> None:
        assert change.desired is not None
        adapter = self._adapter(change.kind)
        ident = adapter.create(change.desired)
        try:
            attrs = adapter.read(ident)
        except ResourceError:
            # the object exists remotely; track it even though the read failed
            self.store.put(_record(change.address, change.kind, ident, change.desired))
            raise
        if attrs is None:
            logger.warning("%s not readable right after create", change.address)
            attrs = change.desired
        self.store.put(_record(change.address, change.kind, ident, attrs))

    def _update(self, change: Change) -> None:
        assert change.prior is not None
        adapter = self._adapter(change.kind)
        ident = change.prior.id
        adapter.update(ident, change.changes)
        attrs = adapter.read(ident)
        if attrs is None:
            logger.warning("%s vanished after update; removing from state", change.address)
            self.store.remove(change.address)
            return
        self.store.put(_record(change.address, change.kind, ident, attrs))

    def _delete(self, change: Change) -> None:
        assert change.prior is not None
        self._adapter(change.kind).delete(change.prior.id)
        self.store.remove(change.address)

    # -- Import --

    def import_state(self, kind: str, name: str, external_id: str) -> StateRecord:
        """Adopt an existing remote object under the address kind.name."""
        address = f"{kind}.{name}"
        adapter = self._adapter(kind)
        with self.store.lock(address, (kind, external_id)):
            if address in self.store:
                raise ValueError(f"Resource already managed: '{address}'")
            if (owner := self.store.find(kind, external_id)) is not None:
                raise ValueError(f"{kind} '{external_id}' already managed by '{owner.address}'")
            attrs = adapter.import_state(external_id)
            if attrs is None:
                raise ValueError(f"Cannot import {kind} '{external_id}': not found")
            record = _record(address, kind, external_id, attrs)
            self.store.put(record)
        logger.info("Imported %s as %s", external_id, address)
        return record
