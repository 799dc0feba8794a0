import pytest
from pydantic import ValidationError

from payments_api.settings import Settings


def _settings(**kwargs) -> Settings:
    return Settings(_env_file=None, **kwargs)


def test_prod_requires_asaas_api_key(monkeypatch):
    monkeypatch.delenv("ASAAS_API_KEY", raising=False)
    monkeypatch.delenv("APP_ENV", raising=False)

    with pytest.raises(ValidationError) as exc_info:
        _settings()

    assert "ASAAS_API_KEY" in str(exc_info.value)


def test_prod_metrics_require_token():
    with pytest.raises(ValidationError):
        _settings(app_env="prod", asaas_api_key="key", metrics_enabled=True)

    configured = _settings(app_env="prod", asaas_api_key="key", metrics_enabled=True, metrics_token="t0k3n")
    assert configured.metrics_enabled is True


def test_dev_allows_missing_api_key(monkeypatch):
    monkeypatch.delenv("ASAAS_API_KEY", raising=False)

    configured = _settings(app_env="dev")

    assert configured.asaas_api_key is None
    assert configured.expose_error_details is True


def test_cors_origins_accept_comma_list(monkeypatch):
    monkeypatch.setenv("CORS_ORIGINS", "https://app.example.com, https://admin.example.com")

    assert _settings().cors_origins == ["https://app.example.com", "https://admin.example.com"]


def test_cors_origins_accept_json_list(monkeypatch):
    monkeypatch.setenv("CORS_ORIGINS", '["https://app.example.com"]')

    assert _settings().cors_origins == ["https://app.example.com"]


def test_trusted_proxy_cidrs_parse(monkeypatch):
    monkeypatch.setenv("TRUSTED_PROXY_CIDRS", "10.0.0.0/8,172.16.0.0/12")

    assert _settings().trusted_proxy_cidrs == ["10.0.0.0/8", "172.16.0.0/12"]


def test_api_prefix_is_normalized():
    assert _settings(api_prefix="api/").api_prefix == "/api"
    assert _settings(api_prefix="").api_prefix == ""


def test_due_days_must_be_positive():
    with pytest.raises(ValidationError):
        _settings(payment_due_days=0)


def test_transition_policy_is_restricted():
    with pytest.raises(ValidationError):
        _settings(transition_policy="permissive")


@pytest.mark.parametrize(
    ("secret", "configured"),
    [(None, False), ("", False), ("   ", False), ("change-me", False), ("s3cret", True)],
)
def test_webhook_secret_configured(secret, configured):
    assert _settings(asaas_webhook_secret=secret).webhook_secret_configured is configured
