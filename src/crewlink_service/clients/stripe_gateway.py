"""Stripe payment processor gateway for escrow holds, captures, and refunds."""

from __future__ import annotations

import json
from typing import Any

import stripe

from crewlink_service.core.exceptions import ServiceError
from crewlink_service.logging import get_logger

PROVIDER_NAME = "stripe"


class StripeGateway:
    """
    Thin async wrapper around the Stripe SDK.

    Escrow holds are PaymentIntents created with ``capture_method=manual``:
    the card is authorized when the hirer confirms the intent client-side and
    the funds are only collected by ``capture_hold`` after the job completes.

    Every processor failure is logged and re-raised as
    ServiceError("UPSTREAM_FAILURE", ..., 500).
    """

    def __init__(self, secret_key: str, webhook_secret: str | None, currency: str) -> None:
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret
        self._currency = currency
        self._logger = get_logger(__name__)

    @property
    def provider(self) -> str:
        return PROVIDER_NAME

    @property
    def webhook_configured(self) -> bool:
        return bool(self._webhook_secret)

    def _upstream_failure(self, operation: str, exc: Exception) -> ServiceError:
        self._logger.error(
            "Payment processor call failed",
            extra={"operation": operation, "error": str(exc), "error_type": type(exc).__name__},
        )
        return ServiceError(
            "UPSTREAM_FAILURE",
            "Payment processor request failed",
            500,
            {"operation": operation},
        )

    async def create_hold(self, amount_minor: int, metadata: dict[str, str]) -> dict[str, Any]:
        """
        Open a manual-capture PaymentIntent.

        Returns:
            dict with keys: id, client_secret
        """
        try:
            intent = await stripe.PaymentIntent.create_async(
                api_key=self._secret_key,
                amount=amount_minor,
                currency=self._currency,
                capture_method="manual",
                metadata=metadata,
            )
        except stripe.StripeError as exc:
            raise self._upstream_failure("create_hold", exc) from exc
        return {"id": intent.id, "client_secret": intent.client_secret}

    async def capture_hold(self, payment_intent_id: str, idempotency_key: str) -> dict[str, Any]:
        """
        Capture a previously authorized PaymentIntent.

        The idempotency key makes a retried capture return the first result
        instead of failing when the earlier response was lost.
        """
        try:
            intent = await stripe.PaymentIntent.capture_async(
                payment_intent_id,
                api_key=self._secret_key,
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as exc:
            raise self._upstream_failure("capture_hold", exc) from exc
        return {"id": intent.id, "status": intent.status}

    async def refund(
        self,
        payment_intent_id: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> dict[str, Any]:
        """Refund a captured PaymentIntent in full."""
        try:
            refund = await stripe.Refund.create_async(
                api_key=self._secret_key,
                payment_intent=payment_intent_id,
                reason="requested_by_customer",
                metadata=metadata,
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as exc:
            raise self._upstream_failure("refund", exc) from exc
        return {"id": refund.id, "status": refund.status}

    def construct_event(self, payload: bytes, signature_header: str) -> dict[str, Any]:
        """
        Verify a webhook signature and decode the event.

        Raises:
            ServiceError: WEBHOOK_NOT_CONFIGURED (500) when no secret is set
            ServiceError: INVALID_SIGNATURE (400) when verification fails
        """
        if not self._webhook_secret:
            self._logger.error("Webhook secret is not configured")
            raise ServiceError(
                "WEBHOOK_NOT_CONFIGURED",
                "Webhook secret not configured",
                500,
                {},
            )

        try:
            stripe.Webhook.construct_event(payload, signature_header, self._webhook_secret)
        except (stripe.SignatureVerificationError, ValueError) as exc:
            self._logger.warning(
                "Webhook signature verification failed",
                extra={"error": str(exc)},
            )
            raise ServiceError(
                "INVALID_SIGNATURE",
                "Webhook signature verification failed",
                400,
                {},
            ) from exc

        event: dict[str, Any] = json.loads(payload)
        return event
