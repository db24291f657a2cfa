"""Run the diagnostic pipeline: load, detect duplicates, merge, probe each context."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import httpx

from kubeconfig_doctor.client import ClientConfig, ClientConfigError
from kubeconfig_doctor.kubeconfig import (
    Duplicate,
    Kubeconfig,
    KubeconfigError,
    MergeError,
    ResolvedContext,
    find_duplicates,
    merge_kubeconfigs,
    read_from,
    resolve_context,
)
from kubeconfig_doctor.probes import (
    IdentityResult,
    IdentityStatus,
    Reachability,
    ReachabilityStatus,
    probe_anonymous,
    probe_identity,
    probe_reachable,
)
from kubeconfig_doctor.settings import DoctorSettings

logger = logging.getLogger(__name__)


@dataclass
class LoadOutcome:
    path: Path
    config: Kubeconfig | None = None
    error: KubeconfigError | None = None


@dataclass
class DiagnosticResult:
    """Outcome of every check run against one context."""

    resolved: ResolvedContext
    proxy: Reachability
    server: Reachability
    anonymous: IdentityResult
    identity: IdentityResult
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return (
            not self.errors
            and self.proxy.ok
            and self.server.status is ReachabilityStatus.REACHABLE
            and self.anonymous.server_up
            and self.identity.status is IdentityStatus.CONNECTED
        )


@dataclass
class DoctorReport:
    settings: DoctorSettings
    loads: list[LoadOutcome] = field(default_factory=list)
    duplicates: list[Duplicate] = field(default_factory=list)
    merged: Kubeconfig | None = None
    merge_error: MergeError | None = None
    results: list[DiagnosticResult] = field(default_factory=list)

    @property
    def configs(self) -> list[Kubeconfig]:
        return [load.config for load in self.loads if load.config is not None]

    @property
    def healthy(self) -> bool:
        return (
            all(load.error is None for load in self.loads)
            and not self.duplicates
            and self.merge_error is None
            and all(result.ok for result in self.results)
        )


class DoctorListener(Protocol):
    """Receives pipeline stages as they complete, in order."""

    def on_files(self, loads: Sequence[LoadOutcome]) -> None: ...

    def on_duplicates(self, duplicates: Sequence[Duplicate]) -> None: ...

    def on_merge_error(self, error: MergeError) -> None: ...

    def on_context(self, result: DiagnosticResult, current: bool) -> None: ...


def load_sources(paths: Sequence[Path]) -> list[LoadOutcome]:
    """Load every path; a failing file is recorded and contributes nothing."""
    outcomes: list[LoadOutcome] = []
    for path in paths:
        try:
            outcomes.append(LoadOutcome(path=path, config=read_from(path)))
        except KubeconfigError as exc:
            logger.warning(f"Skipping {path}: {exc}")
            outcomes.append(LoadOutcome(path=path, error=exc))
    return outcomes


def resolution_errors(resolved: ResolvedContext) -> list[str]:
    errors: list[str] = []
    if not resolved.found:
        errors.append(f"Context {resolved.context_name} not found")
    if resolved.cluster is None:
        errors.append(f"Cluster {resolved.cluster_name} not found")
    elif not resolved.cluster.server:
        errors.append(f"Cluster {resolved.cluster_name} has no server URL")
    if resolved.user is None:
        errors.append(f"User {resolved.user_name} not found")
    return errors


async def diagnose_context(
    config: Kubeconfig,
    context_name: str,
    settings: DoctorSettings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> DiagnosticResult:
    """Run every check for one context in a fixed order.

    A failing step never skips the ones after it.
    """
    resolved = resolve_context(config, context_name)
    errors = resolution_errors(resolved)
    cluster = resolved.cluster

    proxy = await probe_reachable(cluster.proxy_url if cluster else None, settings.proxy_timeout)
    server = await probe_reachable(cluster.server if cluster else None, settings.server_timeout)

    try:
        client_config = ClientConfig.from_resolved(resolved)
    except ClientConfigError as exc:
        anonymous = identity = IdentityResult(IdentityStatus.MISCONFIGURED, error=exc)
    else:
        anonymous = await probe_anonymous(client_config, settings.server_timeout, transport=transport)
        identity = await probe_identity(client_config, settings.server_timeout, transport=transport)

    logger.info(
        f"{context_name}: proxy={proxy.status.value} server={server.status.value} "
        f"anonymous={anonymous.status.value} identity={identity.status.value}"
    )
    return DiagnosticResult(
        resolved=resolved,
        proxy=proxy,
        server=server,
        anonymous=anonymous,
        identity=identity,
        errors=errors,
    )


async def run_diagnostics(
    settings: DoctorSettings,
    listener: DoctorListener | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> DoctorReport:
    report = DoctorReport(settings=settings)

    report.loads = load_sources(settings.kubeconfig_paths)
    if listener:
        listener.on_files(report.loads)

    configs = report.configs
    report.duplicates = find_duplicates(configs)
    if listener:
        listener.on_duplicates(report.duplicates)

    try:
        report.merged = merge_kubeconfigs(configs)
    except MergeError as exc:
        logger.error(f"Merge failed: {exc}")
        report.merge_error = exc
        if listener:
            listener.on_merge_error(exc)
        return report

    names = settings.contexts or list(report.merged.contexts)
    for name in names:
        result = await diagnose_context(report.merged, name, settings, transport=transport)
        report.results.append(result)
        if listener:
            listener.on_context(result, current=name == report.merged.current_context)

    return report
