# ABOUTME: Kubeconfig loading and credential resolution for cluster sources
# ABOUTME: Turns a kubeconfig context into an AuthProfile (server, token, TLS material)

"""
Kubeconfig credential resolution.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

To list CRDs from a cluster we need three things from the kubeconfig:

1. WHERE: the API server URL of the context's cluster
2. WHO: credentials of the context's user (bearer token and/or client cert)
3. TRUST: how to verify the server (CA bundle, or skip verification)

A kubeconfig looks like this:

    current-context: dev
    contexts:
      - name: dev
        context: {cluster: dev-cluster, user: dev-user}
    clusters:
      - name: dev-cluster
        cluster:
          server: https://127.0.0.1:6443
          certificate-authority-data: LS0tLS1CRUdJTi...
    users:
      - name: dev-user
        user:
          token: abc123                      # or client-certificate(-data),
          exec: {command: gke-gcloud-auth-plugin}   # or an exec plugin

=============================================================================
CREDENTIAL PRECEDENCE
=============================================================================

CA / client certificate / client key:
    1. The on-disk path (certificate-authority, client-certificate, client-key)
    2. Base64 data (...-data), decoded into a temporary file

Bearer token:
    1. user.token
    2. An exec credential plugin: the command is run, its stdout parsed as an
       ExecCredential JSON object, and status.token used. Any failure here
       is logged and the profile simply has no token.

A context whose user entry is missing resolves WITHOUT credentials (useful
for anonymous test clusters); a subsequent 401 surfaces as a fetch error.

=============================================================================
TEMPORARY FILES
=============================================================================

Decoded certificate material is written to uniquely named temporary files
because TLS stacks load certificate chains from paths. The AuthProfile owns
those files; release them once the authenticated call is done:

    with resolve_auth("dev") as profile:
        ...  # make requests
    # temporary files are gone here
"""

from __future__ import annotations

import base64
import binascii
import json
import os
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
import yaml
from pydantic import SecretStr

if TYPE_CHECKING:
    from types import TracebackType

    from structlog.typing import FilteringBoundLogger

logger = structlog.get_logger(__name__)

DEFAULT_KUBECONFIG_PATH = "~/.kube/config"


# =============================================================================
# ERRORS
# =============================================================================


class KubeConfigError(Exception):
    """Base class for kubeconfig resolution failures."""


class ConfigNotFoundError(KubeConfigError):
    """No readable kubeconfig at $KUBECONFIG or the default path."""


class ContextNotFoundError(KubeConfigError):
    """The requested (or current) context is not defined."""


class ClusterNotFoundError(KubeConfigError):
    """A context references a cluster that is missing or has no server URL."""


class UserNotFoundError(KubeConfigError):
    """A context references a user that is not defined."""


# =============================================================================
# AUTH PROFILE
# =============================================================================


@dataclass
class AuthProfile:
    """
    Everything needed to make an authenticated call to an API server.

    The token is a SecretStr so the profile can be logged or printed without
    leaking it. Paths in ``temp_files`` were created during resolution and
    are removed by close().
    """

    server_url: str
    token: SecretStr | None = None
    cert: str | None = None
    key: str | None = None
    ca_path: str | None = None
    skip_tls_verify: bool = False
    temp_files: list[Path] = field(default_factory=list, repr=False)

    def close(self) -> None:
        """Delete temporary credential files created for this profile."""
        for path in self.temp_files:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(
                    "Failed to remove temporary credential file", path=str(path), error=str(e)
                )
        self.temp_files.clear()

    def __enter__(self) -> AuthProfile:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


@dataclass(frozen=True)
class ClusterInfo:
    """Resolved context name and API server URL."""

    name: str
    server_url: str


# =============================================================================
# KUBECONFIG LOADING
# =============================================================================


def kubeconfig_candidates() -> list[Path]:
    """Kubeconfig paths to try, in order: $KUBECONFIG, then ~/.kube/config."""
    paths = [os.environ.get("KUBECONFIG"), DEFAULT_KUBECONFIG_PATH]
    return [Path(p).expanduser() for p in paths if p]


def load_kubeconfig(log: FilteringBoundLogger | None = None) -> dict[str, Any]:
    """
    Load the first parseable kubeconfig.

    A candidate that exists but cannot be parsed is logged and skipped.

    Raises:
        ConfigNotFoundError: If no candidate could be loaded.
    """
    log = log or logger

    for path in kubeconfig_candidates():
        if not path.is_file():
            continue
        try:
            config = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            log.warning("Failed to parse kubeconfig", path=str(path), error=str(e))
            continue
        if not isinstance(config, dict):
            log.warning("Kubeconfig is not a mapping", path=str(path))
            continue
        log.debug("Loaded kubeconfig", path=str(path))
        return config

    raise ConfigNotFoundError(
        "No kubeconfig found. Please ensure kubeconfig is at ~/.kube/config or KUBECONFIG is set"
    )


def _find_named(entries: Any, name: str) -> dict[str, Any] | None:
    """Find ``{"name": name, ...}`` in a kubeconfig list section."""
    for entry in entries or []:
        if isinstance(entry, dict) and entry.get("name") == name:
            return entry
    return None


def _write_temp_file(prefix: str, suffix: str, data: str) -> Path:
    """Decode base64 ``data`` into a new uniquely named temporary file."""
    content = base64.b64decode(data)
    fd, name = tempfile.mkstemp(prefix=prefix, suffix=suffix)
    with os.fdopen(fd, "wb") as f:
        f.write(content)
    return Path(name)


def _resolve_material(
    section: dict[str, Any],
    path_key: str,
    prefix: str,
    suffix: str,
    profile: AuthProfile,
) -> str | None:
    """
    Resolve a certificate/key entry: on-disk path first, then embedded data.

    Embedded data is decoded into a temp file that the profile takes
    ownership of.
    """
    path_value = section.get(path_key)
    if path_value:
        return str(Path(path_value).expanduser())

    data = section.get(f"{path_key}-data")
    if data:
        try:
            temp = _write_temp_file(prefix, suffix, data)
        except (binascii.Error, ValueError) as e:
            raise KubeConfigError(f"Invalid base64 in '{path_key}-data': {e}") from e
        profile.temp_files.append(temp)
        return str(temp)

    return None


def _exec_plugin_token(exec_config: dict[str, Any], log: FilteringBoundLogger) -> str | None:
    """
    Run an exec credential plugin and return status.token, if any.

    Failures never raise: they are logged and reported as "no token".
    """
    command = exec_config.get("command")
    if not command:
        return None

    log.debug("Executing auth command", command=command)
    try:
        proc = subprocess.run(
            [command],
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as e:
        log.warning("Failed to execute auth command", command=command, error=str(e))
        return None

    try:
        response = json.loads(proc.stdout)
    except json.JSONDecodeError:
        log.warning("Failed to parse exec auth response", command=command)
        return None

    status = response.get("status") if isinstance(response, dict) else None
    token = status.get("token") if isinstance(status, dict) else None
    if token:
        log.debug("Retrieved token from exec auth provider")
        return str(token)
    return None


# =============================================================================
# RESOLUTION
# =============================================================================


def resolve_context_name(kubeconfig: dict[str, Any], context_name: str | None = None) -> str:
    """
    The context to use: the explicit name, else current-context.

    Raises:
        ContextNotFoundError: If neither is set.
    """
    name = context_name or kubeconfig.get("current-context")
    if not name:
        raise ContextNotFoundError(
            "No current context found in kubeconfig and no context specified"
        )
    return str(name)


def get_auth_profile(
    kubeconfig: dict[str, Any],
    context_name: str | None = None,
    log: FilteringBoundLogger | None = None,
) -> AuthProfile:
    """
    Build an AuthProfile for a context of an already-loaded kubeconfig.

    Args:
        kubeconfig: Parsed kubeconfig mapping
        context_name: Context to use (default: current-context)
        log: Logger to report on (default: module logger)

    Raises:
        ContextNotFoundError: Unknown or unset context
        ClusterNotFoundError: Dangling cluster reference or missing server URL
        KubeConfigError: Undecodable embedded certificate data
    """
    log = log or logger
    name = resolve_context_name(kubeconfig, context_name)

    context_entry = _find_named(kubeconfig.get("contexts"), name)
    if context_entry is None:
        raise ContextNotFoundError(f"Context '{name}' not found in kubeconfig")
    context = context_entry.get("context") or {}

    cluster_name = context.get("cluster")
    cluster_entry = _find_named(kubeconfig.get("clusters"), cluster_name)
    if cluster_entry is None:
        raise ClusterNotFoundError(f"Cluster '{cluster_name}' not found in kubeconfig")
    cluster = cluster_entry.get("cluster") or {}

    server_url = cluster.get("server")
    if not server_url:
        raise ClusterNotFoundError(f"Server URL not found for cluster '{cluster_name}'")

    profile = AuthProfile(
        server_url=str(server_url).rstrip("/"),
        skip_tls_verify=bool(cluster.get("insecure-skip-tls-verify", False)),
    )

    try:
        profile.ca_path = _resolve_material(
            cluster, "certificate-authority", "k8s-ca-", ".crt", profile
        )

        user_name = context.get("user")
        user_entry = _find_named(kubeconfig.get("users"), user_name)
        if user_entry is None:
            log.warning(
                "User not found in kubeconfig, proceeding without authentication",
                user=user_name,
            )
            return profile

        user = user_entry.get("user") or {}
        profile.cert = _resolve_material(user, "client-certificate", "k8s-cert-", ".crt", profile)
        profile.key = _resolve_material(user, "client-key", "k8s-key-", ".key", profile)

        if user.get("token"):
            profile.token = SecretStr(str(user["token"]))

        exec_config = user.get("exec")
        if profile.token is None and isinstance(exec_config, dict):
            token = _exec_plugin_token(exec_config, log)
            if token:
                profile.token = SecretStr(token)
    except BaseException:
        profile.close()
        raise

    return profile


def resolve_auth(
    context_name: str | None = None,
    log: FilteringBoundLogger | None = None,
) -> AuthProfile:
    """
    Load the kubeconfig and resolve credentials for a context.

    The caller owns the returned profile and should close() it (or use it
    as a context manager) to remove temporary credential files.

    Raises:
        ConfigNotFoundError: No kubeconfig found
        ContextNotFoundError / ClusterNotFoundError: Dangling references
    """
    kubeconfig = load_kubeconfig(log=log)
    return get_auth_profile(kubeconfig, context_name, log=log)


def get_cluster_info(
    context_name: str | None = None,
    log: FilteringBoundLogger | None = None,
) -> ClusterInfo:
    """
    Report the resolved context name and API server URL.

    Raises:
        Same as resolve_auth().
    """
    kubeconfig = load_kubeconfig(log=log)
    with get_auth_profile(kubeconfig, context_name, log=log) as profile:
        return ClusterInfo(
            name=resolve_context_name(kubeconfig, context_name),
            server_url=profile.server_url,
        )
