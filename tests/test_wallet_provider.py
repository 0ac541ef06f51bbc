import httpx
import pytest

from app.config import WalletSettings
from app.services.wallet_errors import (
    PassValidationError,
    SyncErrorKind,
    TransientProviderError,
    classify_http_error,
)
from app.services.wallet_provider import (
    HttpWalletProvider,
    StubWalletProvider,
    build_wallet_provider,
)


BASE_URL = "https://provider.test"


def _provider(handler):
    client = httpx.Client(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return HttpWalletProvider(BASE_URL, http_client=client)


def test_create_pass_posts_members_and_reads_handle():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["path"] = request.url.path
        return httpx.Response(
            200,
            json={
                "id": "pk-123",
                "appleWalletUrl": "https://pk/apple/pk-123",
                "googlePayUrl": "https://pk/google/pk-123",
                "qrCode": "qr-pk-123",
            },
        )

    handle = _provider(handler).create_pass({"externalId": "ext_abc", "person": {"displayName": "Maria"}})

    assert seen == {"method": "POST", "path": "/members"}
    assert handle.id == "pk-123"
    assert handle.apple_url == "https://pk/apple/pk-123"
    assert handle.qr_code == "qr-pk-123"


def test_update_pass_puts_member_with_id():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["body"] = request.read()
        return httpx.Response(200, json={})

    _provider(handler).update_pass("pk-123", {"fields": {"balance": {"value": "3/10"}}})

    assert seen["method"] == "PUT"
    assert seen["path"] == "/members/pk-123"
    assert b'"id":"pk-123"' in seen["body"].replace(b" ", b"")


def test_delete_pass_calls_delete():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["path"] = request.url.path
        return httpx.Response(204)

    _provider(handler).delete_pass("pk-123")

    assert seen == {"method": "DELETE", "path": "/members/pk-123"}


@pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
def test_overloaded_provider_is_transient(status):
    provider = _provider(lambda request: httpx.Response(status, json={"error": "busy"}))

    with pytest.raises(TransientProviderError) as exc_info:
        provider.update_pass("pk-123", {"fields": {}})

    assert exc_info.value.kind == SyncErrorKind.TRANSIENT
    assert exc_info.value.details["status_code"] == status


@pytest.mark.parametrize("status", [400, 404, 422])
def test_rejected_request_is_validation_error(status):
    provider = _provider(lambda request: httpx.Response(status, json={"error": "invalid field"}))

    with pytest.raises(PassValidationError) as exc_info:
        provider.update_pass("pk-123", {"fields": {}})

    assert exc_info.value.details["provider_error"] == "invalid field"


def test_timeout_is_transient():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(TransientProviderError):
        _provider(handler).delete_pass("pk-123")


def test_connection_error_is_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientProviderError):
        _provider(handler).create_pass({"externalId": "ext_abc"})


def test_create_without_id_is_validation_error():
    provider = _provider(lambda request: httpx.Response(200, json={}))

    with pytest.raises(PassValidationError):
        provider.create_pass({"externalId": "ext_abc"})


def test_classify_passes_wallet_errors_through():
    error = PassValidationError("already typed")
    assert classify_http_error(error, operation="pass update") is error


def test_stub_scripted_failures_then_success():
    stub = StubWalletProvider()
    handle = stub.create_pass({"externalId": "ext_abc"})
    stub.fail_next(TransientProviderError("down"), times=2)

    for _ in range(2):
        with pytest.raises(TransientProviderError):
            stub.update_pass(handle.id, {"fields": {"balance": {"value": "1/10"}}})
    stub.update_pass(handle.id, {"fields": {"balance": {"value": "1/10"}}})

    assert stub.passes[handle.id]["fields"]["balance"]["value"] == "1/10"
    assert [op for op, _ in stub.calls] == ["create", "update", "update", "update"]


def test_stub_unknown_pass_is_validation_error():
    with pytest.raises(PassValidationError):
        StubWalletProvider().update_pass("missing", {"fields": {}})


def test_build_wallet_provider_selects_implementation():
    assert isinstance(build_wallet_provider(WalletSettings()), StubWalletProvider)

    provider = build_wallet_provider(WalletSettings(provider="http", provider_url=BASE_URL, provider_api_key="k"))
    try:
        assert isinstance(provider, HttpWalletProvider)
    finally:
        provider.close()


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("WALLET_PROVIDER", "HTTP")
    monkeypatch.setenv("WALLET_RETRY_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("PRIVACY_HASH_SECRET", "s3cret")

    settings = WalletSettings.from_env()

    assert settings.provider == "http"
    assert settings.retry_max_attempts == 5
    assert settings.privacy_secret == "s3cret"


def test_settings_reject_unknown_provider(monkeypatch):
    monkeypatch.setenv("WALLET_PROVIDER", "carrier-pigeon")
    with pytest.raises(ValueError):
        WalletSettings.from_env()


def test_settings_reject_claim_ttl_not_above_provider_timeout(monkeypatch):
    monkeypatch.setenv("WALLET_PROVIDER_TIMEOUT_SECONDS", "30")
    monkeypatch.setenv("WALLET_RETRY_CLAIM_TTL_SECONDS", "30")
    with pytest.raises(ValueError):
        WalletSettings.from_env()

    monkeypatch.setenv("WALLET_RETRY_CLAIM_TTL_SECONDS", "31")
    assert WalletSettings.from_env().retry_claim_ttl_seconds == 31.0
