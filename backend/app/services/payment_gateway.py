"""Narrow interface to the external payment gateway."""
import logging
import uuid
from abc import ABC, abstractmethod
from decimal import Decimal

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    """The gateway declined or could not process a charge."""


class PaymentGateway(ABC):
    @abstractmethod
    def charge(self, booking_id: str, payer_id: str, amount: Decimal, method: str) -> str:
        """Charge ``amount`` and return the gateway's payment reference."""


class SimulatedPaymentGateway(PaymentGateway):
    """Stand-in gateway that approves every positive charge."""

    def charge(self, booking_id: str, payer_id: str, amount: Decimal, method: str) -> str:
        if amount <= 0:
            raise PaymentGatewayError(f"Refusing to charge non-positive amount {amount}")
        reference = f"sim_{uuid.uuid4().hex[:16]}"
        logger.info("Simulated %s charge of %s for booking %s (ref %s)", method, amount, booking_id, reference)
        return reference


_gateway: PaymentGateway = SimulatedPaymentGateway()


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency for the configured gateway."""
    return _gateway
