from __future__ import annotations

from pathlib import Path

import pytest

from conftest import make_config
from kubeconfig_doctor.kubeconfig import (
    EntryKind,
    Kubeconfig,
    KubeconfigLoadError,
    MergeError,
    find_duplicates,
    merge_kubeconfigs,
    parse_document,
    read_from,
    resolve_context,
)


def _cfg(source: str, **kwargs) -> Kubeconfig:
    return parse_document(make_config(**kwargs), Path(f"/kube/{source}"))


def test_merge_last_wins_on_duplicates():
    config_a = _cfg(
        "a",
        contexts={"ctx1": ("c1", "u1")},
        clusters={"c1": {"server": "https://a"}},
        users={"u1": {"token": "a"}},
    )
    config_b = _cfg(
        "b",
        contexts={"ctx1": ("c1", "u1")},
        clusters={"c1": {"server": "https://b"}},
        users={"u1": {"token": "b"}},
    )

    merged = merge_kubeconfigs([config_a, config_b])

    assert merged.clusters["c1"].server == "https://b"
    assert merged.users["u1"].token == "b"
    assert list(merged.contexts) == ["ctx1"]


def test_merge_is_order_sensitive():
    a = _cfg("a", clusters={"x": {"server": "https://a"}})
    b = _cfg("b", clusters={"x": {"server": "https://b"}})

    assert merge_kubeconfigs([a, b]).clusters["x"].server == "https://b"
    assert merge_kubeconfigs([b, a]).clusters["x"].server == "https://a"


def test_merge_replaces_whole_entry():
    a = _cfg("a", clusters={"x": {"server": "https://a", "proxy-url": "http://proxy:3128"}})
    b = _cfg("b", clusters={"x": {"server": "https://b"}})

    merged = merge_kubeconfigs([a, b])

    assert merged.clusters["x"].proxy_url is None


def test_merge_empty_list_is_valid():
    merged = merge_kubeconfigs([])

    assert merged.contexts == {}
    assert merged.clusters == {}
    assert merged.users == {}


def test_merge_rejects_kind_mismatch():
    a = Kubeconfig(kind="Config")
    b = Kubeconfig(kind="Secret")

    with pytest.raises(MergeError):
        merge_kubeconfigs([a, b])


def test_merge_keeps_later_current_context():
    a = _cfg("a", current_context="one")
    b = _cfg("b", current_context="two")
    c = _cfg("c")

    assert merge_kubeconfigs([a, b, c]).current_context == "two"


@pytest.mark.parametrize("k", [2, 3, 5])
def test_duplicates_reported_once_per_later_occurrence(k):
    sources = [_cfg(f"f{i}", clusters={"shared": {"server": f"https://{i}"}}) for i in range(k)]

    duplicates = find_duplicates(sources)

    assert len(duplicates) == k - 1
    assert all(d.kind is EntryKind.CLUSTER and d.name == "shared" for d in duplicates)
    assert [d.source for d in duplicates] == [Path(f"/kube/f{i}") for i in range(1, k)]


def test_duplicates_tracked_per_kind():
    a = _cfg("a", contexts={"prod": ("prod", "prod")}, clusters={"prod": {}}, users={"prod": {}})
    b = _cfg("b", users={"prod": {}})

    duplicates = find_duplicates([a, b])

    assert [(d.kind, d.name) for d in duplicates] == [(EntryKind.USER, "prod")]


def test_no_duplicates_for_distinct_names():
    a = _cfg("a", contexts={"one": ("c", "u")})
    b = _cfg("b", contexts={"two": ("c", "u")})

    assert find_duplicates([a, b]) == []


def test_prod_context_defined_twice():
    first = _cfg("first", contexts={"prod": ("c1", "u")}, clusters={"c1": {"server": "https://c1"}})
    second = _cfg("second", contexts={"prod": ("c2", "u")}, clusters={"c2": {"server": "https://c2"}})

    merged = merge_kubeconfigs([first, second])
    duplicates = find_duplicates([first, second])

    assert merged.contexts["prod"].cluster == "c2"
    assert [(d.kind, d.name) for d in duplicates] == [(EntryKind.CONTEXT, "prod")]


def test_resolve_context_with_dangling_cluster():
    config = _cfg("a", contexts={"dev": ("staging", "alice")}, users={"alice": {"token": "t"}})

    resolved = resolve_context(config, "dev")

    assert resolved.found is True
    assert resolved.cluster_name == "staging"
    assert resolved.cluster is None
    assert resolved.user is not None
    assert resolved.user.name == "alice"


def test_resolve_missing_context():
    config = _cfg("a", clusters={"c": {"server": "https://c"}})

    resolved = resolve_context(config, "nope")

    assert resolved.found is False
    assert resolved.cluster_name == ""
    assert resolved.user_name == ""
    assert resolved.cluster is None
    assert resolved.user is None


def test_read_from_parses_entries(write_kubeconfig):
    path = write_kubeconfig(
        "config",
        make_config(
            contexts={"dev": ("dev-cluster", "dev-user")},
            clusters={
                "dev-cluster": {
                    "server": "https://10.0.0.1:6443",
                    "certificate-authority": "certs/ca.crt",
                    "proxy-url": "http://proxy:3128",
                }
            },
            users={
                "dev-user": {
                    "token": "secret",
                    "client-certificate-data": "Y2VydA==",
                    "exec": {
                        "apiVersion": "client.authentication.k8s.io/v1beta1",
                        "command": "aws",
                        "args": ["eks", "get-token"],
                        "env": [{"name": "AWS_PROFILE", "value": "dev"}],
                    },
                }
            },
            current_context="dev",
        ),
    )

    config = read_from(path)

    assert config.source == path
    assert config.current_context == "dev"
    cluster = config.clusters["dev-cluster"]
    assert cluster.certificate_authority == str(path.parent / "certs" / "ca.crt")
    assert cluster.proxy_url == "http://proxy:3128"
    user = config.users["dev-user"]
    assert user.token == "secret"
    assert user.client_certificate_data == "Y2VydA=="
    assert user.exec is not None
    assert user.exec.command == "aws"
    assert user.exec.args == ("eks", "get-token")
    assert user.exec.env == (("AWS_PROFILE", "dev"),)


def test_read_from_merges_documents(write_kubeconfig):
    path = write_kubeconfig(
        "multi",
        "clusters:\n- name: a\n  cluster:\n    server: https://one\n"
        "---\n"
        "clusters:\n- name: a\n  cluster:\n    server: https://two\n"
        "- name: b\n  cluster:\n    server: https://b\n",
    )

    config = read_from(path)

    assert config.clusters["a"].server == "https://two"
    assert set(config.clusters) == {"a", "b"}


def test_read_from_empty_file(write_kubeconfig):
    config = read_from(write_kubeconfig("empty", ""))

    assert config.contexts == {}


def test_read_from_missing_file(tmp_path):
    with pytest.raises(KubeconfigLoadError) as excinfo:
        read_from(tmp_path / "missing")

    assert isinstance(excinfo.value.__cause__, FileNotFoundError)


@pytest.mark.parametrize(
    "content",
    [
        "clusters: [\n",
        "- just\n- a list\n",
        "clusters: nope\n",
        "clusters:\n- cluster:\n    server: https://x\n",
    ],
)
def test_read_from_invalid_content(write_kubeconfig, content):
    with pytest.raises(KubeconfigLoadError):
        read_from(write_kubeconfig("bad", content))


def test_insecure_flag_must_be_boolean(write_kubeconfig):
    data = make_config(clusters={"c": {"server": "https://c", "insecure-skip-tls-verify": "false"}})

    with pytest.raises(KubeconfigLoadError):
        read_from(write_kubeconfig("config", data))


def test_insecure_flag(write_kubeconfig):
    data = make_config(
        clusters={
            "on": {"server": "https://a", "insecure-skip-tls-verify": True},
            "off": {"server": "https://b", "insecure-skip-tls-verify": False},
            "unset": {"server": "https://c"},
        }
    )

    config = read_from(write_kubeconfig("config", data))

    assert config.clusters["on"].insecure_skip_tls_verify is True
    assert config.clusters["off"].insecure_skip_tls_verify is False
    assert config.clusters["unset"].insecure_skip_tls_verify is False
