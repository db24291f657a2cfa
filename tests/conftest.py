"""Shared fixtures for kubeconfig-doctor tests."""

from __future__ import annotations

import socket
from pathlib import Path
from typing import Any, Callable

import pytest
import yaml


def make_config(
    contexts: dict[str, tuple[str, str]] | None = None,
    clusters: dict[str, dict[str, Any]] | None = None,
    users: dict[str, dict[str, Any]] | None = None,
    current_context: str | None = None,
) -> dict[str, Any]:
    """Build a kubeconfig mapping from compact name -> body dicts."""
    data: dict[str, Any] = {"apiVersion": "v1", "kind": "Config"}
    data["contexts"] = [
        {"name": name, "context": {"cluster": cluster, "user": user}}
        for name, (cluster, user) in (contexts or {}).items()
    ]
    data["clusters"] = [
        {"name": name, "cluster": body} for name, body in (clusters or {}).items()
    ]
    data["users"] = [{"name": name, "user": body} for name, body in (users or {}).items()]
    if current_context:
        data["current-context"] = current_context
    return data


@pytest.fixture
def write_kubeconfig(tmp_path: Path) -> Callable[..., Path]:
    def _write(name: str, data: Any) -> Path:
        path = tmp_path / name
        if isinstance(data, str):
            path.write_text(data, encoding="utf-8")
        else:
            path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def closed_port() -> int:
    """A local port that nothing listens on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
