from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)


class KubeconfigError(Exception):
    """Base class for kubeconfig errors."""


class KubeconfigLoadError(KubeconfigError):
    def __init__(self, path: Path, message: str) -> None:
        super().__init__(f"failed to load {path}: {message}")
        self.path = path


class MergeError(KubeconfigError):
    pass


class EntryKind(str, Enum):
    CONTEXT = "context"
    CLUSTER = "cluster"
    USER = "user"


@dataclass(frozen=True)
class Context:
    name: str
    cluster: str = ""
    user: str = ""
    namespace: str | None = None


@dataclass(frozen=True)
class Cluster:
    name: str
    server: str | None = None
    certificate_authority: str | None = None
    certificate_authority_data: str | None = None
    proxy_url: str | None = None
    insecure_skip_tls_verify: bool = False


@dataclass(frozen=True)
class ExecConfig:
    command: str | None = None
    args: tuple[str, ...] = ()
    env: tuple[tuple[str, str], ...] = ()
    api_version: str | None = None


@dataclass(frozen=True)
class AuthInfo:
    """Credentials for one user entry.

    The shapes are not exclusive: a user may carry a client certificate and a
    token at the same time, and each is inspected on its own.
    """

    name: str
    token: str | None = None
    token_file: str | None = None
    username: str | None = None
    password: str | None = None
    client_certificate: str | None = None
    client_certificate_data: str | None = None
    client_key: str | None = None
    client_key_data: str | None = None
    exec: ExecConfig | None = None
    auth_provider: str | None = None


@dataclass(frozen=True)
class Kubeconfig:
    contexts: dict[str, Context] = field(default_factory=dict)
    clusters: dict[str, Cluster] = field(default_factory=dict)
    users: dict[str, AuthInfo] = field(default_factory=dict)
    current_context: str | None = None
    api_version: str | None = None
    kind: str | None = None
    source: Path | None = None

    def merge(self, other: Kubeconfig) -> Kubeconfig:
        """Return a new config where entries of ``other`` replace ours by name."""
        if self.kind and other.kind and self.kind != other.kind:
            raise MergeError(
                f"cannot merge kubeconfig of kind {other.kind!r} into {self.kind!r}"
            )
        if self.api_version and other.api_version and self.api_version != other.api_version:
            raise MergeError(
                f"cannot merge apiVersion {other.api_version!r} into {self.api_version!r}"
            )

        return Kubeconfig(
            contexts={**self.contexts, **other.contexts},
            clusters={**self.clusters, **other.clusters},
            users={**self.users, **other.users},
            current_context=other.current_context or self.current_context,
            api_version=other.api_version or self.api_version,
            kind=other.kind or self.kind,
            source=None,
        )

    def names(self, kind: EntryKind) -> list[str]:
        if kind is EntryKind.CONTEXT:
            return list(self.contexts)
        if kind is EntryKind.CLUSTER:
            return list(self.clusters)
        return list(self.users)


@dataclass(frozen=True)
class Duplicate:
    kind: EntryKind
    name: str
    source: Path | None = None


@dataclass(frozen=True)
class ResolvedContext:
    context_name: str
    cluster_name: str
    cluster: Cluster | None
    user_name: str
    user: AuthInfo | None
    namespace: str | None = None
    found: bool = True


def _resolve_path(value: Any, base_dir: Path | None) -> str | None:
    if not isinstance(value, str) or not value:
        return None
    path = Path(value).expanduser()
    if base_dir is not None and not path.is_absolute():
        path = base_dir / path
    return str(path)


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _named_entries(items: Any, section: str, path: Path) -> Iterable[tuple[str, dict[str, Any]]]:
    if items is None:
        return []
    if not isinstance(items, list):
        raise KubeconfigLoadError(path, f"{section} must be a list")

    entries: list[tuple[str, dict[str, Any]]] = []
    for item in items:
        if not isinstance(item, dict):
            raise KubeconfigLoadError(path, f"{section} entries must be mappings")
        name = item.get("name")
        if not isinstance(name, str) or not name.strip():
            raise KubeconfigLoadError(path, f"{section} entry without a name")
        entries.append((name, item))
    return entries


def _body(item: Mapping[str, Any], key: str, path: Path) -> Mapping[str, Any]:
    body = item.get(key) or {}
    if not isinstance(body, dict):
        raise KubeconfigLoadError(path, f"{item.get('name')}: {key} must be a mapping")
    return body


def _flag(body: Mapping[str, Any], key: str, path: Path) -> bool:
    value = body.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise KubeconfigLoadError(path, f"{key} must be true or false, got {value!r}")
    return value


def _parse_exec(data: Any, path: Path) -> ExecConfig | None:
    if not data:
        return None
    if not isinstance(data, dict):
        raise KubeconfigLoadError(path, "exec must be a mapping")
    env = tuple(
        (str(entry.get("name", "")), str(entry.get("value", "")))
        for entry in data.get("env") or []
        if isinstance(entry, dict)
    )
    return ExecConfig(
        command=_optional_str(data.get("command")),
        args=tuple(str(arg) for arg in data.get("args") or []),
        env=env,
        api_version=_optional_str(data.get("apiVersion")),
    )


def parse_document(data: Any, path: Path) -> Kubeconfig:
    """Turn one decoded YAML document into a Kubeconfig."""
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise KubeconfigLoadError(path, "kubeconfig root must be a mapping (dict)")

    base_dir = path.parent

    contexts: dict[str, Context] = {}
    for name, item in _named_entries(data.get("contexts"), "contexts", path):
        body = _body(item, "context", path)
        contexts[name] = Context(
            name=name,
            cluster=str(body.get("cluster") or ""),
            user=str(body.get("user") or ""),
            namespace=_optional_str(body.get("namespace")),
        )

    clusters: dict[str, Cluster] = {}
    for name, item in _named_entries(data.get("clusters"), "clusters", path):
        body = _body(item, "cluster", path)
        clusters[name] = Cluster(
            name=name,
            server=_optional_str(body.get("server")),
            certificate_authority=_resolve_path(body.get("certificate-authority"), base_dir),
            certificate_authority_data=_optional_str(body.get("certificate-authority-data")),
            proxy_url=_optional_str(body.get("proxy-url")),
            insecure_skip_tls_verify=_flag(body, "insecure-skip-tls-verify", path),
        )

    users: dict[str, AuthInfo] = {}
    for name, item in _named_entries(data.get("users"), "users", path):
        body = _body(item, "user", path)
        provider = body.get("auth-provider")
        users[name] = AuthInfo(
            name=name,
            token=_optional_str(body.get("token")),
            token_file=_resolve_path(body.get("tokenFile"), base_dir),
            username=_optional_str(body.get("username")),
            password=_optional_str(body.get("password")),
            client_certificate=_resolve_path(body.get("client-certificate"), base_dir),
            client_certificate_data=_optional_str(body.get("client-certificate-data")),
            client_key=_resolve_path(body.get("client-key"), base_dir),
            client_key_data=_optional_str(body.get("client-key-data")),
            exec=_parse_exec(body.get("exec"), path),
            auth_provider=_optional_str(provider.get("name")) if isinstance(provider, dict) else None,
        )

    return Kubeconfig(
        contexts=contexts,
        clusters=clusters,
        users=users,
        current_context=_optional_str(data.get("current-context")) or None,
        api_version=_optional_str(data.get("apiVersion")),
        kind=_optional_str(data.get("kind")),
        source=path,
    )


def read_from(path: Path) -> Kubeconfig:
    """Load a kubeconfig file; every YAML document in it is merged in order."""
    try:
        with path.open("r", encoding="utf-8") as handle:
            documents = list(yaml.safe_load_all(handle))
    except OSError as exc:
        raise KubeconfigLoadError(path, exc.strerror or str(exc)) from exc
    except yaml.YAMLError as exc:
        raise KubeconfigLoadError(path, "invalid YAML") from exc

    config = Kubeconfig()
    for document in documents:
        try:
            config = config.merge(parse_document(document, path))
        except MergeError as exc:
            raise KubeconfigLoadError(path, "documents cannot be merged") from exc
    logger.info(
        f"Loaded {path}: {len(config.contexts)} contexts, "
        f"{len(config.clusters)} clusters, {len(config.users)} users"
    )
    return replace(config, source=path)


def merge_kubeconfigs(configs: Iterable[Kubeconfig]) -> Kubeconfig:
    """Fold configs from lowest to highest precedence; later names win."""
    merged = Kubeconfig()
    for cfg in configs:
        merged = merged.merge(cfg)
    return merged


def find_duplicates(configs: Iterable[Kubeconfig]) -> list[Duplicate]:
    """Report every name that was already defined by an earlier source.

    A name defined in k sources is reported k - 1 times, once per later
    occurrence. This runs on the unmerged list so that overrides the merge
    performs silently are visible.
    """
    seen: dict[EntryKind, set[str]] = {kind: set() for kind in EntryKind}
    duplicates: list[Duplicate] = []

    for cfg in configs:
        for kind in EntryKind:
            for name in cfg.names(kind):
                if name in seen[kind]:
                    duplicates.append(Duplicate(kind=kind, name=name, source=cfg.source))
                else:
                    seen[kind].add(name)

    return duplicates


def resolve_context(config: Kubeconfig, context_name: str) -> ResolvedContext:
    context = config.contexts.get(context_name)
    found = context is not None
    if context is None:
        context = Context(name=context_name)

    return ResolvedContext(
        context_name=context_name,
        cluster_name=context.cluster,
        cluster=config.clusters.get(context.cluster),
        user_name=context.user,
        user=config.users.get(context.user),
        namespace=context.namespace,
        found=found,
    )
