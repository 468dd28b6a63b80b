"""
Unit tests for Dependency Injection providers.

Validates that:
- Repository providers return process-wide singletons
- The gateway provider is cached and fails fast without credentials
- Route-level service providers wire the injected gateway through
"""

import pytest
from unittest.mock import patch

from app.config.settings import Settings
from app.infrastructure.exceptions import ConfigurationError


class TestRepositoryProviders:
    """Repositories are stateless singletons."""

    @pytest.mark.parametrize(
        "provider_name",
        [
            "get_company_repository",
            "get_user_access_repository",
            "get_plan_repository",
            "get_subscription_repository",
            "get_transaction_repository",
            "get_payment_event_log_repository",
            "get_webhook_event_repository",
        ],
    )
    def test_provider_returns_same_instance(self, provider_name):
        from app.infrastructure.db import repositories

        provider = getattr(repositories, provider_name)
        assert provider() is provider()


class TestEfiProvider:
    """get_efi_service is lru_cached and validates credentials on build."""

    def test_missing_credentials_fail_fast(self):
        from app.infrastructure.payments import efi_service

        efi_service.get_efi_service.cache_clear()
        try:
            with patch.object(efi_service, "get_settings", return_value=Settings(_env_file=None)):
                with pytest.raises(ConfigurationError) as exc:
                    efi_service.get_efi_service()
            assert "EFI_CLIENT_ID" in exc.value.missing_keys
        finally:
            efi_service.get_efi_service.cache_clear()

    def test_debug_flag_installs_logging_hook(self, efi_credentials):
        from app.infrastructure.payments import efi_service

        efi_service.get_efi_service.cache_clear()
        try:
            with patch.object(efi_service, "get_settings", return_value=Settings(_env_file=None, efi_debug_http=True)), \
                 patch.object(efi_service.EfiCredentials, "from_settings", return_value=efi_credentials), \
                 patch.object(efi_service, "EfiPay") as mock_sdk:
                svc1 = efi_service.get_efi_service()
                svc2 = efi_service.get_efi_service()

            assert svc1 is svc2
            assert svc1._hooks == (efi_service.log_gateway_call,)
            mock_sdk.assert_called_once_with(efi_credentials.to_options())
        finally:
            efi_service.get_efi_service.cache_clear()


class TestServiceProviders:

    def test_provisioner_and_switcher_use_injected_gateway(self, mock_efi):
        from app.api.dependencies import get_plan_switcher, get_subscription_provisioner

        provisioner = get_subscription_provisioner(efi=mock_efi)
        switcher = get_plan_switcher(efi=mock_efi)

        assert provisioner._efi is mock_efi
        assert switcher._efi is mock_efi
