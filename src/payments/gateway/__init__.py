"""Payment gateway factory.

The process holds one active gateway. Until something installs a real
adapter with ``set_gateway()``, a FakeGateway is built on first use that
accepts webhooks signed with the configured ``webhook_signing_secret``.
"""

from payments.gateway.fake_adapter import FakeGateway
from payments.gateway.port import PaymentGateway
from shared.config import get_settings

_active: PaymentGateway | None = None


def get_gateway() -> PaymentGateway:
    global _active
    if _active is None:
        _active = FakeGateway(signing_secret=get_settings().webhook_signing_secret)
    return _active


def set_gateway(gateway: PaymentGateway) -> None:
    """Install ``gateway`` for every later checkout, refund and webhook."""
    global _active
    _active = gateway


def reset_gateway() -> None:
    """Drop the active gateway; the next ``get_gateway()`` builds a fresh fake."""
    global _active
    _active = None
