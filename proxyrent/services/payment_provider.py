# proxyrent/services/payment_provider.py
import hashlib
import hmac
import re
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from proxyrent.core.config import settings
from proxyrent.core.exceptions import PaymentProviderError
from proxyrent.core.logging import logger

# Result codes the provider reports for a successful or pending-success charge
SUCCESS_CODE_PATTERN = re.compile(r"^(000\.000\.|000\.100\.1|000\.[36])")


class PaymentProviderClient:
    """Client for the external payment provider's checkout API"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        entity_id: Optional[str] = None,
        access_token: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.PAYMENT_PROVIDER_BASE_URL).rstrip("/")
        self.entity_id = entity_id if entity_id is not None else settings.PAYMENT_PROVIDER_ENTITY_ID
        self.access_token = access_token if access_token is not None else settings.PAYMENT_PROVIDER_ACCESS_TOKEN
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.PAYMENT_WEBHOOK_SECRET
        self.timeout = settings.PAYMENT_PROVIDER_TIMEOUT_SECONDS
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {self.access_token}"},
            timeout=self.timeout,
            transport=self._transport,
        )

    async def create_checkout(
        self,
        amount: Decimal,
        currency: str,
        correlation_id: str,
        tenant_id: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Create a checkout session for a one-off charge

        Args:
            amount: Amount in major currency units
            currency: ISO currency code
            correlation_id: ``topup:<id>`` or ``invoice:<id>``, echoed back on confirmation
            tenant_id: Tenant being charged
            metadata: Extra custom parameters

        Returns:
            Dict with checkout_id and checkout_url
        """
        data = {
            "entityId": self.entity_id,
            "amount": f"{Decimal(amount):.2f}",
            "currency": currency,
            "paymentType": "DB",
            "merchantTransactionId": correlation_id,
            "customParameters[tenant_id]": tenant_id,
            "shopperResultUrl": f"{settings.FRONTEND_URL}/billing/success",
            "notificationUrl": f"{settings.BACKEND_URL}{settings.API_V1_STR}/billing/webhook",
        }
        if metadata:
            for key, value in metadata.items():
                data[f"customParameters[{key}]"] = str(value)

        try:
            async with self._client() as client:
                response = await client.post("/v1/checkouts", data=data)
        except httpx.HTTPError as e:
            logger.error(f"Checkout creation failed: {str(e)}")
            raise PaymentProviderError("Payment provider unreachable") from e

        result = _json(response)
        if response.status_code != 200:
            description = result.get("result", {}).get("description", "Unknown error")
            logger.error(f"Payment provider error: {result}")
            raise PaymentProviderError(
                f"Failed to create checkout: {description}",
                details={"status_code": response.status_code},
            )

        checkout_id = result.get("id")
        logger.info(f"Created checkout {checkout_id} for {correlation_id}", extra={"tenant_id": tenant_id})

        return {
            "checkout_id": checkout_id,
            "checkout_url": f"{settings.FRONTEND_URL}/billing/checkout?id={checkout_id}",
            "amount": data["amount"],
            "currency": currency,
            "correlation_id": correlation_id,
        }

    async def get_payment_status(self, checkout_id: str) -> Dict[str, Any]:
        """
        Get payment status by checkout ID

        Returns:
            Dict with success flag, provider reference, amount and correlation id
        """
        try:
            async with self._client() as client:
                response = await client.get(
                    f"/v1/checkouts/{checkout_id}/payment",
                    params={"entityId": self.entity_id},
                )
        except httpx.HTTPError as e:
            logger.error(f"Failed to get payment status: {str(e)}")
            raise PaymentProviderError("Payment provider unreachable") from e

        if response.status_code >= 500:
            logger.error(f"Payment provider error {response.status_code} for checkout {checkout_id}")
            raise PaymentProviderError(
                "Failed to get payment status",
                details={"status_code": response.status_code},
            )

        result = _json(response)
        result_code = result.get("result", {}).get("code", "")
        is_success = bool(SUCCESS_CODE_PATTERN.match(result_code))

        return {
            "success": is_success,
            "status": "success" if is_success else "failed",
            "result_code": result_code,
            "description": result.get("result", {}).get("description"),
            "transaction_id": result.get("id"),
            "amount": result.get("amount"),
            "currency": result.get("currency"),
            "correlation_id": result.get("merchantTransactionId"),
            "custom_parameters": result.get("customParameters", {}),
        }

    def verify_webhook_signature(self, payload: str, signature: str) -> bool:
        """
        Verify a webhook body against its HMAC-SHA256 signature

        Args:
            payload: Raw request body
            signature: X-Signature header value
        """
        if not self.webhook_secret:
            if settings.ENVIRONMENT == "production":
                logger.error("Webhook secret not configured")
                return False
            logger.warning("Webhook secret not configured")
            return True  # Skip verification in development

        expected_signature = hmac.new(
            self.webhook_secret.encode(),
            payload.encode(),
            hashlib.sha256,
        ).hexdigest()

        return hmac.compare_digest(signature or "", expected_signature)


def _json(response: httpx.Response) -> Dict[str, Any]:
    try:
        return response.json()
    except ValueError:
        raise PaymentProviderError(
            "Payment provider returned a non-JSON response",
            details={"status_code": response.status_code},
        )
