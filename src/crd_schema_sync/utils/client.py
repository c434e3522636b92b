# ABOUTME: Kubernetes API server client used to list CustomResourceDefinitions
# ABOUTME: Async httpx wrapper applying kubeconfig credentials and TLS settings

"""
Kubernetes API client for CRD listing.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

This module provides the HTTP client that talks to a Kubernetes API server.
It is deliberately small: the only call the tool needs is

    GET /apis/apiextensions.k8s.io/v1/customresourcedefinitions

It handles:

1. AUTHENTICATION: Bearer token header and/or client certificate
2. TLS: custom CA bundles, or disabled verification (loudly)
3. ERROR HANDLING: Converting HTTP errors to KubernetesApiError
4. RESPONSE SHAPE: The list call must return {"items": [...]}

=============================================================================
KUBERNETES ERROR RESPONSES
=============================================================================

The API server reports failures as a Status object:

    {
        "kind": "Status",
        "status": "Failure",
        "message": "customresourcedefinitions.apiextensions.k8s.io is forbidden: ...",
        "reason": "Forbidden",
        "code": 403
    }

KubernetesApiError keeps the HTTP code, the Status message and the reason.

=============================================================================
CONTEXT MANAGER (async with)
=============================================================================

    with resolve_auth("dev") as profile:
        async with KubernetesClient(profile) as client:
            crds = await client.list_custom_resource_definitions()

__aenter__ builds the TLS context and the httpx connection pool;
__aexit__ closes the pool even if the body raised.
"""

from __future__ import annotations

import ssl
from typing import TYPE_CHECKING, Any

import httpx
import structlog

if TYPE_CHECKING:
    from crd_schema_sync.kubeconfig import AuthProfile

logger = structlog.get_logger(__name__)

CRD_LIST_PATH = "/apis/apiextensions.k8s.io/v1/customresourcedefinitions"


# =============================================================================
# ERRORS
# =============================================================================


class KubernetesApiError(Exception):
    """
    Structured Kubernetes API error.

    USAGE:
    ------
    try:
        crds = await client.list_custom_resource_definitions()
    except KubernetesApiError as e:
        print(f"Error {e.code}: {e.message}")  # Error 401: Unauthorized
    """

    def __init__(self, code: int, message: str, details: str | None = None) -> None:
        """
        Initialize Kubernetes API error.

        Args:
            code: HTTP status code (e.g., 401, 403)
            message: Status message from the API server
            details: Status reason or raw body excerpt (optional)
        """
        self.code = code
        self.message = message
        self.details = details
        super().__init__(str(self))

    def __str__(self) -> str:
        base = f"Kubernetes API error ({self.code}): {self.message}"
        if self.details:
            base += f" - {self.details}"
        return base


class InvalidResponseShapeError(Exception):
    """The CRD list response is not an object with an ``items`` list."""


# =============================================================================
# KUBERNETES CLIENT
# =============================================================================


class KubernetesClient:
    """
    Async Kubernetes API client.

    LIFECYCLE:
    ----------
    1. Create client: client = KubernetesClient(profile)
    2. Enter context: async with client: ...
    3. Use client: await client.list_custom_resource_definitions()
    4. Exit context: HTTP connections cleaned up

    There is no retry logic: a failed call raises and the caller decides.
    """

    def __init__(
        self,
        profile: AuthProfile,
        timeout: float = 30.0,
    ) -> None:
        """
        Initialize Kubernetes client.

        Args:
            profile: Resolved credentials (server URL, token, TLS material)
            timeout: HTTP request timeout in seconds
        """
        self._profile = profile
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    def _build_ssl_context(self) -> ssl.SSLContext:
        """
        Build the TLS context from the profile.

        TRUST:
        ------
        skip_tls_verify=True:
            No server verification at all (the CA path is ignored).
            Logged as a warning every time because it is insecure.

        ca_path set:
            The CA file is read and added as trusted certificate data. If the
            file cannot be read, a warning is logged and default trust is used.

        CLIENT CERTIFICATE:
        -------------------
        When the profile has a client certificate (and key), it is loaded
        into the context for mutual TLS.

        Raises:
            ssl.SSLError / OSError: Unusable CA data or client certificate.
        """
        profile = self._profile
        context = ssl.create_default_context()

        if profile.skip_tls_verify:
            logger.warning(
                "TLS verification disabled - this is insecure and should not be used in production",
                server=profile.server_url,
            )
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        elif profile.ca_path:
            try:
                with open(profile.ca_path, encoding="utf-8") as f:
                    ca_data = f.read()
            except OSError as e:
                logger.warning(
                    "Failed to read CA certificate", path=profile.ca_path, error=str(e)
                )
            else:
                context.load_verify_locations(cadata=ca_data)
                logger.debug("Using CA certificate", path=profile.ca_path)

        if profile.cert:
            context.load_cert_chain(certfile=profile.cert, keyfile=profile.key)

        return context

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._profile.token is not None:
            headers["Authorization"] = f"Bearer {self._profile.token.get_secret_value()}"
        return headers

    async def __aenter__(self) -> KubernetesClient:
        """Create the httpx client with credentials and TLS configured."""
        self._client = httpx.AsyncClient(
            base_url=self._profile.server_url,
            headers=self._headers(),
            timeout=self._timeout,
            verify=self._build_ssl_context(),
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        """Close the httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """
        Make an HTTP request to the API server and decode the JSON body.

        Args:
            method: HTTP method
            path: API path (e.g. CRD_LIST_PATH)
            params: URL query parameters (optional)

        Returns:
            Decoded JSON response

        Raises:
            KubernetesApiError: On 4xx/5xx responses
            httpx.HTTPError: On transport failures
            ValueError: If the body is not valid JSON
            RuntimeError: If the client was not entered with 'async with'
        """
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")

        log = logger.bind(method=method, path=path, server=self._profile.server_url)
        log.debug("Making Kubernetes API request")

        response = await self._client.request(method, path, params=params)

        if response.status_code >= 400:
            error_body = response.text
            log.warning("Kubernetes API error", status=response.status_code, body=error_body[:200])

            message = response.reason_phrase or f"HTTP {response.status_code}"
            details = None
            try:
                status = response.json()
                message = status.get("message", message)
                details = status.get("reason")
            except Exception:
                details = error_body[:200] if error_body else None

            raise KubernetesApiError(
                code=response.status_code,
                message=message,
                details=details,
            )

        return response.json()

    async def list_custom_resource_definitions(self) -> list[dict[str, Any]]:
        """
        List all CustomResourceDefinitions in the cluster.

        Kubernetes API: GET /apis/apiextensions.k8s.io/v1/customresourcedefinitions

        Returns:
            The raw CRD objects from the list's ``items``

        Raises:
            InvalidResponseShapeError: If the response has no ``items`` list
        """
        data = await self._request("GET", CRD_LIST_PATH)

        items = data.get("items") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise InvalidResponseShapeError("Invalid response structure - expected items array")

        logger.debug("Fetched CRDs from cluster", count=len(items))
        return items
