"""Runtime settings, captured from the environment once at startup."""

from __future__ import annotations

import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

PROXY_ENV_VARS = ("HTTP_PROXY", "HTTPS_PROXY", "NO_PROXY")

DEFAULT_PROXY_TIMEOUT = 3.0
DEFAULT_SERVER_TIMEOUT = 5.0
MAX_TIMEOUT = 60.0


@dataclass
class DoctorSettings:
    """Everything the diagnostic pipeline needs from the outside world."""

    kubeconfig_paths: list[Path] = field(default_factory=list)
    kubeconfig_env: str | None = None
    proxy_env: dict[str, str | None] = field(default_factory=dict)
    contexts: list[str] = field(default_factory=list)
    proxy_timeout: float = DEFAULT_PROXY_TIMEOUT
    server_timeout: float = DEFAULT_SERVER_TIMEOUT
    strict: bool = False

    def __post_init__(self):
        for name in ("proxy_timeout", "server_timeout"):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be > 0")
            if value > MAX_TIMEOUT:
                raise ValueError(f"{name} must be <= {MAX_TIMEOUT:g}")

    @property
    def env_vars(self) -> dict[str, str | None]:
        """Environment variables shown in the report, in display order."""
        return {"KUBECONFIG": self.kubeconfig_env, **self.proxy_env}


def split_kubeconfig_env(value: str) -> list[Path]:
    """Split a KUBECONFIG path list, dropping empty entries."""
    return [Path(part).expanduser() for part in value.split(os.pathsep) if part]


def default_kubeconfig_paths(home: Path | None = None) -> list[Path]:
    return [(home or Path.home()) / ".kube" / "config"]


def read_proxy_env(environ: Mapping[str, str]) -> dict[str, str | None]:
    """Proxy variables; the lowercase spelling is used when the uppercase one is unset."""
    result: dict[str, str | None] = {}
    for name in PROXY_ENV_VARS:
        result[name] = environ.get(name, environ.get(name.lower()))
    return result


def load_settings(
    environ: Mapping[str, str] | None = None,
    home: Path | None = None,
    kubeconfig: Sequence[str] | None = None,
    contexts: Sequence[str] | None = None,
    proxy_timeout: float = DEFAULT_PROXY_TIMEOUT,
    server_timeout: float = DEFAULT_SERVER_TIMEOUT,
    strict: bool = False,
) -> DoctorSettings:
    """Build settings from an environment mapping and CLI overrides.

    Precedence for the file list: explicit ``kubeconfig`` paths, then the
    KUBECONFIG variable, then ``~/.kube/config``.
    """
    if environ is None:
        environ = os.environ

    kubeconfig_env = environ.get("KUBECONFIG")
    if kubeconfig:
        paths = [Path(path).expanduser() for path in kubeconfig]
    elif kubeconfig_env is not None:
        paths = split_kubeconfig_env(kubeconfig_env)
    else:
        paths = default_kubeconfig_paths(home)

    return DoctorSettings(
        kubeconfig_paths=paths,
        kubeconfig_env=kubeconfig_env,
        proxy_env=read_proxy_env(environ),
        contexts=list(contexts or []),
        proxy_timeout=proxy_timeout,
        server_timeout=server_timeout,
        strict=strict,
    )
