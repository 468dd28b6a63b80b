"""
Payments Infrastructure Module

Efí (Gerencianet) subscription gateway client.
"""

from app.infrastructure.payments.efi_service import (
    CreatedSubscription,
    EfiCredentials,
    EfiService,
    GatewayCall,
    PaymentBinding,
    get_efi_service,
    log_gateway_call,
)

__all__ = [
    "CreatedSubscription",
    "EfiCredentials",
    "EfiService",
    "GatewayCall",
    "PaymentBinding",
    "get_efi_service",
    "log_gateway_call",
]
