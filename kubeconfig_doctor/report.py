"""Console rendering of doctor results.

Secrets are redacted here, at the display boundary only; the records handed
in keep their real values.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit

from rich.console import Console
from rich.markup import escape

from kubeconfig_doctor.doctor import DiagnosticResult, LoadOutcome
from kubeconfig_doctor.kubeconfig import AuthInfo, Cluster, Duplicate, MergeError
from kubeconfig_doctor.probes import IdentityResult, IdentityStatus, Reachability, ReachabilityStatus
from kubeconfig_doctor.settings import DoctorSettings

CHECK = "[green]✓[/green]"
CROSS = "[red]✖[/red]"
NOT_SET = "[bright_black]<not set>[/bright_black]"


@dataclass(frozen=True)
class Finding:
    ok: bool
    label: str
    value: str


def redact(value: str | None) -> str:
    """Only the byte length of a secret is ever shown."""
    length = len(value.encode()) if value else 0
    return f"<REDACTED len={length}>"


def mask_url(url: str) -> str:
    """Hide the password of a ``user:password@host`` URL."""
    try:
        parts = urlsplit(url)
        if parts.password is None:
            return url
        host = parts.hostname or ""
        if parts.port is not None:
            host = f"{host}:{parts.port}"
    except ValueError:
        # bad port or IPv6 host: hide the whole authority
        scheme, sep, rest = url.partition("://")
        if not sep:
            return redact(url)
        netloc, slash, path = rest.partition("/")
        return f"{scheme}{sep}{redact(netloc)}{slash}{path}"
    netloc = f"{parts.username}:{redact(parts.password)}@{host}"
    return urlunsplit(parts._replace(netloc=netloc))


def expand_error(error: BaseException) -> str:
    """Join the messages of an exception and all of its causes with ': '."""
    messages: list[str] = []
    current: BaseException | None = error
    seen: set[int] = set()
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        message = str(current) or type(current).__name__
        if message not in messages:
            messages.append(message)
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None
    return ": ".join(messages)


def _file_finding(label: str, path: str) -> Finding:
    exists = Path(path).exists()
    return Finding(exists, label, f"{path} - {'exists' if exists else 'file not found'}")


def inspect_cluster(cluster: Cluster) -> list[Finding]:
    findings: list[Finding] = []
    if cluster.certificate_authority:
        findings.append(_file_finding("Cluster Certificate:", cluster.certificate_authority))
    if cluster.certificate_authority_data:
        findings.append(
            Finding(True, "Cluster Certificate Data:", redact(cluster.certificate_authority_data))
        )
    if not cluster.certificate_authority and not cluster.certificate_authority_data:
        findings.append(Finding(False, "Cluster Certificate:", "<not set>"))
    if cluster.insecure_skip_tls_verify:
        findings.append(Finding(False, "TLS Verification:", "disabled"))
    return findings


def inspect_user(user: AuthInfo) -> list[Finding]:
    """Report every credential shape present on the user, each on its own."""
    findings: list[Finding] = []
    if user.exec is not None:
        command = " ".join([user.exec.command or "", *user.exec.args]).strip()
        findings.append(Finding(bool(user.exec.command), "Auth Exec:", command or "<no command>"))
    if user.token is not None:
        findings.append(Finding(True, "Auth Token:", redact(user.token)))
    if user.token_file:
        findings.append(_file_finding("Auth Token File:", user.token_file))
    if user.username is not None:
        findings.append(Finding(True, "Auth Username:", user.username))
        findings.append(Finding(True, "Auth Password:", redact(user.password)))
    if user.client_certificate:
        findings.append(_file_finding("Auth Client Certificate:", user.client_certificate))
    if user.client_certificate_data:
        findings.append(
            Finding(True, "Auth Client Certificate Data:", redact(user.client_certificate_data))
        )
    if user.client_key:
        findings.append(_file_finding("Auth Client Key:", user.client_key))
    if user.client_key_data:
        findings.append(Finding(True, "Auth Client Key Data:", redact(user.client_key_data)))
    if user.auth_provider:
        findings.append(Finding(False, "Auth Provider:", f"{user.auth_provider} (not supported)"))
    if not findings:
        findings.append(Finding(False, "Auth:", "no credentials configured"))
    return findings


class ConsoleReporter:
    """Prints each pipeline stage as soon as it is available."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console(highlight=False)

    def _print(self, text: str) -> None:
        self.console.print(text, highlight=False)

    def _mark(self, ok: bool) -> str:
        return CHECK if ok else CROSS

    def title(self, text: str) -> None:
        self._print(f"[bold]{escape(text)}[/bold]")

    def banner(self, version: str) -> None:
        self._print("")
        self._print(f"🏥 kubeconfig-doctor v{version}")
        self._print("")

    def on_environment(self, settings: DoctorSettings) -> None:
        self.title("1. Environment Variables")
        for name, value in settings.env_vars.items():
            shown = escape(mask_url(value)) if value is not None else NOT_SET
            self._print(f"- [cyan]{name}[/cyan]: {shown}")
        self._print("")

    def on_files(self, loads: Sequence[LoadOutcome]) -> None:
        self.title("2. Kubeconfig Files")
        if not loads:
            self._print(f"{CROSS} [red]No kubeconfig files configured[/red]")
            self._print("")
        for load in loads:
            path = escape(str(load.path))
            if load.config is None:
                message = escape(expand_error(load.error)) if load.error else "not loaded"
                self._print(f"{CROSS} {path} - [red]{message}[/red]")
            else:
                cfg = load.config
                self._print(f"{CHECK} [cyan]{path}[/cyan] - [green]exists[/green]")
                self._print(f" - [bright_black]Contexts:[/bright_black] {escape(', '.join(cfg.contexts))}")
                self._print(f" - [bright_black]Clusters:[/bright_black] {escape(', '.join(cfg.clusters))}")
                self._print(f" - [bright_black]Users:[/bright_black] {escape(', '.join(cfg.users))}")
            self._print("")

    def on_duplicates(self, duplicates: Sequence[Duplicate]) -> None:
        self.title("3. Looking for Duplicates")
        if not duplicates:
            self._print(f"{CHECK} [green]No duplicates found[/green]")
        for dup in duplicates:
            source = f" (overridden by {escape(str(dup.source))})" if dup.source else ""
            self._print(
                f"{CROSS} {dup.kind.value.capitalize()} [red]{escape(dup.name)}[/red] "
                f"is defined in two or more files{source}"
            )
        self._print("")
        self.title("4. Running Tests")

    def on_merge_error(self, error: MergeError) -> None:
        self._print(f"{CROSS} [red]{escape(expand_error(error))}[/red]")

    def _finding(self, finding: Finding) -> None:
        self._print(
            f"{self._mark(finding.ok)} [bright_black]{escape(finding.label)}[/bright_black] "
            f"{escape(finding.value)}"
        )

    def _reachability(self, label: str, result: Reachability, optional: bool = False) -> None:
        if result.status is ReachabilityStatus.NOT_CONFIGURED:
            self._print(f"{self._mark(optional)} [bright_black]{label}:[/bright_black] {NOT_SET}")
            return
        url = escape(mask_url(result.url or ""))
        if result.status is ReachabilityStatus.REACHABLE:
            self._print(f"{CHECK} [bright_black]{label}:[/bright_black] {url} - [green]reachable[/green]")
        else:
            detail = f" ({escape(result.error)})" if result.error else ""
            self._print(
                f"{CROSS} [bright_black]{label}:[/bright_black] {url} - [red]unreachable[/red]{detail}"
            )

    def _anonymous(self, result: IdentityResult) -> None:
        label = "[bright_black]API Server:[/bright_black]"
        if result.server_up:
            self._print(f"{CHECK} {label} [green]responding[/green] (HTTP {result.status_code})")
        elif result.status is IdentityStatus.MISCONFIGURED:
            self._print(f"{CROSS} {label} [red]not checked: {self._error(result)}[/red]")
        else:
            self._print(f"{CROSS} {label} [red]not responding: {self._error(result)}[/red]")

    def _identity(self, result: IdentityResult) -> None:
        label = "[bright_black]Server Version[/bright_black]"
        if result.status is IdentityStatus.CONNECTED:
            self._print(f"{CHECK} {label} {escape(str(result.version))} - [green]OK[/green]")
        elif result.status is IdentityStatus.REJECTED:
            self._print(
                f"{CROSS} {label} - [red]credentials rejected "
                f"(HTTP {result.status_code}): {self._error(result)}[/red]"
            )
        elif result.status is IdentityStatus.MISCONFIGURED:
            self._print(f"{CROSS} {label} - [red]invalid client configuration: {self._error(result)}[/red]")
        else:
            self._print(f"{CROSS} {label} - [red]unreachable: {self._error(result)}[/red]")

    def _error(self, result: IdentityResult) -> str:
        return escape(expand_error(result.error)) if result.error else "unknown error"

    def on_context(self, result: DiagnosticResult, current: bool = False) -> None:
        resolved = result.resolved
        marker = " [green]*[/green]" if current else ""
        self._print(
            f"[bold underline cyan]{escape(resolved.context_name)}[/bold underline cyan]{marker} "
            f"(Cluster: [bold]{escape(resolved.cluster_name)}[/bold], "
            f"User: [bold]{escape(resolved.user_name)}[/bold])"
        )
        if not resolved.found:
            self._print(f"{CROSS} [red]Context {escape(resolved.context_name)} not found[/red]")

        if resolved.cluster is None:
            self._print(f"{CROSS} [red]Cluster {escape(resolved.cluster_name)} not found[/red]")
        else:
            for finding in inspect_cluster(resolved.cluster):
                self._finding(finding)

        if resolved.user is None:
            self._print(f"{CROSS} [red]User {escape(resolved.user_name)} not found[/red]")
        else:
            for finding in inspect_user(resolved.user):
                self._finding(finding)

        self._reachability("Proxy", result.proxy, optional=True)
        self._reachability("Server URL", result.server)
        self._anonymous(result.anonymous)
        self._identity(result.identity)
        self._print("")
