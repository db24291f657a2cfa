"""Build httpx clients that talk to a Kubernetes API server.

Covers the subset of client-go behavior the doctor needs: server URL, CA
material, client certificates, bearer/basic credentials, exec credential
plugins and the cluster proxy.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import contextlib
import json
import logging
import os
import ssl
import tempfile
from dataclasses import dataclass, replace
from pathlib import Path

import httpx

from kubeconfig_doctor.kubeconfig import ExecConfig, ResolvedContext

logger = logging.getLogger(__name__)

EXEC_API_VERSION = "client.authentication.k8s.io/v1beta1"


class ClientConfigError(Exception):
    """The resolved configuration cannot be turned into a working client."""


class ExecCredentialError(ClientConfigError):
    pass


@dataclass(frozen=True)
class ServerVersion:
    major: str
    minor: str
    git_version: str | None = None

    def __str__(self) -> str:
        return f"v{self.major}.{self.minor}"


@dataclass(frozen=True)
class ClientConfig:
    """Fully resolved connection settings for one context."""

    server: str
    proxy_url: str | None = None
    ca_file: str | None = None
    ca_data: str | None = None
    insecure: bool = False
    token: str | None = None
    token_file: str | None = None
    username: str | None = None
    password: str | None = None
    client_cert_file: str | None = None
    client_cert_data: str | None = None
    client_key_file: str | None = None
    client_key_data: str | None = None
    exec: ExecConfig | None = None

    @classmethod
    def from_resolved(cls, resolved: ResolvedContext) -> ClientConfig:
        cluster = resolved.cluster
        if cluster is None:
            raise ClientConfigError(f"cluster {resolved.cluster_name!r} not found")
        if not cluster.server:
            raise ClientConfigError(f"cluster {cluster.name!r} has no server URL")

        config = cls(
            server=cluster.server,
            proxy_url=cluster.proxy_url,
            ca_file=cluster.certificate_authority,
            ca_data=cluster.certificate_authority_data,
            insecure=cluster.insecure_skip_tls_verify,
        )
        user = resolved.user
        if user is None:
            return config

        return replace(
            config,
            token=user.token,
            token_file=user.token_file,
            username=user.username,
            password=user.password,
            client_cert_file=user.client_certificate,
            client_cert_data=user.client_certificate_data,
            client_key_file=user.client_key,
            client_key_data=user.client_key_data,
            exec=user.exec,
        )

    def without_credentials(self) -> ClientConfig:
        """Same server, CA and proxy, with every credential field cleared."""
        return replace(
            self,
            token=None,
            token_file=None,
            username=None,
            password=None,
            client_cert_file=None,
            client_cert_data=None,
            client_key_file=None,
            client_key_data=None,
            exec=None,
        )


@dataclass(frozen=True)
class Credentials:
    token: str | None = None
    cert_pem: bytes | None = None
    key_pem: bytes | None = None


def _decode(value: str, what: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ClientConfigError(f"{what} is not valid base64") from exc


def _read_file(path: str, what: str) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as exc:
        raise ClientConfigError(f"cannot read {what} {path}") from exc


async def run_exec_plugin(exec_config: ExecConfig, timeout: float) -> Credentials:
    """Run an exec credential plugin and parse its ExecCredential output."""
    if not exec_config.command:
        raise ExecCredentialError("exec plugin has no command")

    api_version = exec_config.api_version or EXEC_API_VERSION
    env = dict(os.environ)
    env.update(dict(exec_config.env))
    env["KUBERNETES_EXEC_INFO"] = json.dumps(
        {"apiVersion": api_version, "kind": "ExecCredential", "spec": {"interactive": False}}
    )

    logger.info(f"Running exec credential plugin: {exec_config.command}")
    try:
        process = await asyncio.create_subprocess_exec(
            exec_config.command,
            *exec_config.args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )
    except OSError as exc:
        raise ExecCredentialError(f"cannot run {exec_config.command}") from exc

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
    except asyncio.TimeoutError as exc:
        process.kill()
        await process.wait()
        raise ExecCredentialError(
            f"{exec_config.command} did not finish within {timeout:g}s"
        ) from exc
    except asyncio.CancelledError:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        raise

    if process.returncode != 0:
        message = stderr.decode(errors="replace").strip() or f"exit code {process.returncode}"
        raise ExecCredentialError(f"{exec_config.command} failed: {message}")

    try:
        status = json.loads(stdout).get("status") or {}
    except (ValueError, AttributeError) as exc:
        raise ExecCredentialError(f"{exec_config.command} returned invalid ExecCredential") from exc
    if not isinstance(status, dict):
        raise ExecCredentialError(f"{exec_config.command} returned a status that is not a mapping")

    fields = {}
    for name in ("token", "clientCertificateData", "clientKeyData"):
        value = status.get(name)
        if value is not None and not isinstance(value, str):
            raise ExecCredentialError(f"{exec_config.command} returned a non-string {name}")
        fields[name] = value or None

    cert = fields["clientCertificateData"]
    key = fields["clientKeyData"]
    credentials = Credentials(
        token=fields["token"],
        cert_pem=cert.encode() if cert else None,
        key_pem=key.encode() if key else None,
    )
    if credentials.token is None and credentials.cert_pem is None:
        raise ExecCredentialError(f"{exec_config.command} returned no credentials")
    return credentials


async def resolve_credentials(config: ClientConfig, timeout: float) -> Credentials:
    token = config.token
    if token is None and config.token_file:
        raw = _read_file(config.token_file, "token file")
        try:
            token = raw.decode().strip()
        except UnicodeDecodeError as exc:
            raise ClientConfigError(f"token file {config.token_file} is not UTF-8 text") from exc

    cert_pem = None
    if config.client_cert_data:
        cert_pem = _decode(config.client_cert_data, "client-certificate-data")
    elif config.client_cert_file:
        cert_pem = _read_file(config.client_cert_file, "client certificate")

    key_pem = None
    if config.client_key_data:
        key_pem = _decode(config.client_key_data, "client-key-data")
    elif config.client_key_file:
        key_pem = _read_file(config.client_key_file, "client key")

    if config.exec is not None:
        plugin = await run_exec_plugin(config.exec, timeout)
        token = plugin.token or token
        cert_pem = plugin.cert_pem or cert_pem
        key_pem = plugin.key_pem or key_pem

    return Credentials(token=token, cert_pem=cert_pem, key_pem=key_pem)


def build_ssl_context(config: ClientConfig, credentials: Credentials) -> ssl.SSLContext:
    context = ssl.create_default_context()
    if config.insecure:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

    try:
        if config.ca_file:
            context.load_verify_locations(cafile=config.ca_file)
        if config.ca_data:
            ca_pem = _decode(config.ca_data, "certificate-authority-data")
            context.load_verify_locations(cadata=ca_pem.decode())

        if credentials.cert_pem is not None:
            if credentials.key_pem is None:
                raise ClientConfigError("client certificate given without a client key")
            # load_cert_chain only accepts file paths
            with tempfile.TemporaryDirectory() as tmp:
                cert_path = Path(tmp) / "client.crt"
                key_path = Path(tmp) / "client.key"
                cert_path.write_bytes(credentials.cert_pem)
                key_path.write_bytes(credentials.key_pem)
                context.load_cert_chain(cert_path, key_path)
    except (OSError, ssl.SSLError, UnicodeDecodeError) as exc:
        raise ClientConfigError("invalid TLS material") from exc

    return context


async def build_client(
    config: ClientConfig,
    timeout: float,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create an authenticated client for ``config``.

    Raises ClientConfigError when credentials or TLS material cannot be loaded.
    """
    credentials = await resolve_credentials(config, timeout)
    headers = {"Accept": "application/json"}
    if credentials.token:
        headers["Authorization"] = f"Bearer {credentials.token}"

    auth = None
    if config.username is not None and not credentials.token:
        auth = httpx.BasicAuth(config.username, config.password or "")

    verify: ssl.SSLContext | bool = True
    if config.server.startswith("https://"):
        verify = build_ssl_context(config, credentials)

    try:
        return httpx.AsyncClient(
            base_url=config.server,
            headers=headers,
            auth=auth,
            verify=verify,
            proxy=config.proxy_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )
    except (ValueError, httpx.InvalidURL) as exc:
        raise ClientConfigError(f"invalid server or proxy URL for {config.server}") from exc
    except ImportError as exc:
        # socks5:// proxies need the optional socksio package
        raise ClientConfigError(f"unsupported proxy URL for {config.server}") from exc


async def fetch_version(client: httpx.AsyncClient) -> ServerVersion:
    response = await client.get("/version")
    response.raise_for_status()
    data = response.json()
    return ServerVersion(
        major=str(data.get("major", "")),
        minor=str(data.get("minor", "")),
        git_version=data.get("gitVersion"),
    )
