# ABOUTME: Unit tests for the Kubernetes API client
# ABOUTME: Tests TLS setup, auth headers, error mapping and CRD listing

import ssl
from pathlib import Path

import httpx
import pytest
import respx
from pydantic import SecretStr

from crd_schema_sync.kubeconfig import AuthProfile
from crd_schema_sync.utils.client import (
    CRD_LIST_PATH,
    InvalidResponseShapeError,
    KubernetesApiError,
    KubernetesClient,
)

SERVER = "https://127.0.0.1:6443"
CRD_LIST_URL = f"{SERVER}{CRD_LIST_PATH}"


@pytest.fixture
def profile() -> AuthProfile:
    """Token-authenticated profile that skips TLS verification."""
    return AuthProfile(server_url=SERVER, token=SecretStr("test-token"), skip_tls_verify=True)


@pytest.mark.unit
class TestKubernetesApiError:
    """Tests for KubernetesApiError class."""

    def test_str_without_details(self):
        """Test string representation without details."""
        error = KubernetesApiError(code=403, message="forbidden")

        assert str(error) == "Kubernetes API error (403): forbidden"

    def test_str_with_details(self):
        """Test string representation with details."""
        error = KubernetesApiError(code=404, message="not found", details="NotFound")

        assert str(error) == "Kubernetes API error (404): not found - NotFound"


@pytest.mark.unit
class TestSslContext:
    """Tests for TLS context construction."""

    def test_skip_verify_disables_checks(self, profile: AuthProfile):
        """Test that skip_tls_verify turns off hostname and certificate checks."""
        context = KubernetesClient(profile)._build_ssl_context()

        assert context.check_hostname is False
        assert context.verify_mode == ssl.CERT_NONE

    def test_default_verification(self):
        """Test that verification is on without skip_tls_verify."""
        context = KubernetesClient(AuthProfile(server_url=SERVER))._build_ssl_context()

        assert context.check_hostname is True
        assert context.verify_mode == ssl.CERT_REQUIRED

    def test_unreadable_ca_falls_back_to_defaults(self, tmp_path: Path):
        """Test that a missing CA file is logged and default trust is kept."""
        profile = AuthProfile(server_url=SERVER, ca_path=str(tmp_path / "missing.crt"))

        context = KubernetesClient(profile)._build_ssl_context()

        assert context.verify_mode == ssl.CERT_REQUIRED

    def test_invalid_ca_data_raises(self, tmp_path: Path):
        """Test that a CA file without certificates is rejected."""
        ca = tmp_path / "ca.crt"
        ca.write_text("not a certificate")
        profile = AuthProfile(server_url=SERVER, ca_path=str(ca))

        with pytest.raises(ssl.SSLError):
            KubernetesClient(profile)._build_ssl_context()

    def test_missing_client_certificate_raises(self, tmp_path: Path):
        """Test that an unusable client certificate surfaces as OSError."""
        profile = AuthProfile(
            server_url=SERVER,
            cert=str(tmp_path / "client.crt"),
            key=str(tmp_path / "client.key"),
        )

        with pytest.raises(OSError):
            KubernetesClient(profile)._build_ssl_context()


@pytest.mark.unit
class TestKubernetesClient:
    """Tests for KubernetesClient requests."""

    def test_init(self, profile: AuthProfile):
        """Test client initialization."""
        client = KubernetesClient(profile)

        assert client._timeout == 30.0
        assert client._client is None

    def test_headers_with_token(self, profile: AuthProfile):
        """Test that a token becomes a bearer Authorization header."""
        headers = KubernetesClient(profile)._headers()

        assert headers["Authorization"] == "Bearer test-token"
        assert headers["Accept"] == "application/json"

    def test_headers_without_token(self):
        """Test that no Authorization header is sent without a token."""
        headers = KubernetesClient(AuthProfile(server_url=SERVER))._headers()

        assert "Authorization" not in headers

    async def test_request_outside_context_raises(self, profile: AuthProfile):
        """Test that requests require 'async with'."""
        client = KubernetesClient(profile)

        with pytest.raises(RuntimeError, match="not initialized"):
            await client._request("GET", CRD_LIST_PATH)

    @respx.mock
    async def test_list_crds(self, profile: AuthProfile, sample_crd):
        """Test listing CRDs returns the items array and sends the token."""
        route = respx.get(CRD_LIST_URL).mock(
            return_value=httpx.Response(200, json={"kind": "List", "items": [sample_crd]})
        )

        async with KubernetesClient(profile) as client:
            items = await client.list_custom_resource_definitions()

        assert items == [sample_crd]
        assert route.calls.last.request.headers["Authorization"] == "Bearer test-token"

    @respx.mock
    async def test_list_crds_empty(self, profile: AuthProfile):
        """Test that an empty items array is valid."""
        respx.get(CRD_LIST_URL).mock(return_value=httpx.Response(200, json={"items": []}))

        async with KubernetesClient(profile) as client:
            assert await client.list_custom_resource_definitions() == []

    @respx.mock
    async def test_list_crds_without_items(self, profile: AuthProfile):
        """Test that a response without items raises InvalidResponseShapeError."""
        respx.get(CRD_LIST_URL).mock(return_value=httpx.Response(200, json={"kind": "List"}))

        async with KubernetesClient(profile) as client:
            with pytest.raises(InvalidResponseShapeError, match="expected items array"):
                await client.list_custom_resource_definitions()

    @respx.mock
    async def test_list_crds_items_not_a_list(self, profile: AuthProfile):
        """Test that a non-list items value raises InvalidResponseShapeError."""
        respx.get(CRD_LIST_URL).mock(return_value=httpx.Response(200, json={"items": {}}))

        async with KubernetesClient(profile) as client:
            with pytest.raises(InvalidResponseShapeError):
                await client.list_custom_resource_definitions()

    @respx.mock
    async def test_status_error_mapped(self, profile: AuthProfile):
        """Test that a Kubernetes Status body becomes KubernetesApiError."""
        respx.get(CRD_LIST_URL).mock(
            return_value=httpx.Response(
                403,
                json={
                    "kind": "Status",
                    "message": "customresourcedefinitions is forbidden",
                    "reason": "Forbidden",
                    "code": 403,
                },
            )
        )

        async with KubernetesClient(profile) as client:
            with pytest.raises(KubernetesApiError) as exc_info:
                await client.list_custom_resource_definitions()

        assert exc_info.value.code == 403
        assert exc_info.value.message == "customresourcedefinitions is forbidden"
        assert exc_info.value.details == "Forbidden"

    @respx.mock
    async def test_non_json_error_body(self, profile: AuthProfile):
        """Test that a plain-text error body is kept as details."""
        respx.get(CRD_LIST_URL).mock(return_value=httpx.Response(500, text="upstream broke"))

        async with KubernetesClient(profile) as client:
            with pytest.raises(KubernetesApiError) as exc_info:
                await client.list_custom_resource_definitions()

        assert exc_info.value.code == 500
        assert exc_info.value.details == "upstream broke"

    @respx.mock
    async def test_transport_error_propagates(self, profile: AuthProfile):
        """Test that transport failures surface as httpx errors."""
        respx.get(CRD_LIST_URL).mock(side_effect=httpx.ConnectError("connection refused"))

        async with KubernetesClient(profile) as client:
            with pytest.raises(httpx.ConnectError):
                await client.list_custom_resource_definitions()

    async def test_context_manager_closes_client(self, profile: AuthProfile):
        """Test that exiting the context closes the httpx client."""
        client = KubernetesClient(profile)

        async with client:
            assert client._client is not None

        assert client._client is None
