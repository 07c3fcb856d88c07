"""Async HTTP client for the external payment processor."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx

from job_escrow_service.core.exceptions import PaymentFailure
from job_escrow_service.logging import get_logger

if TYPE_CHECKING:
    from job_escrow_service.clients.platform_signer import PlatformSigner


class PaymentProcessorClient:
    """
    Client for processor money movements, keyed by a processor reference.

    Every request body is ``{"token": <platform-signed JWS>}`` whose payload
    names the action, the reference, the amount, and an idempotency key, so
    a retried request moves money at most once on the processor side.

    Any transport error, timeout, or non-2xx reply becomes PaymentFailure.
    """

    def __init__(
        self,
        base_url: str,
        authorize_path: str,
        capture_path: str,
        release_path: str,
        refund_path: str,
        void_path: str,
        timeout_seconds: int,
        platform_signer: PlatformSigner,
    ) -> None:
        self._base_url = base_url
        self._authorize_path = authorize_path
        self._capture_path = capture_path
        self._release_path = release_path
        self._refund_path = refund_path
        self._void_path = void_path
        self._platform_signer = platform_signer
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def authorize(self, reference: str, amount: int) -> dict[str, Any]:
        """Place an authorization for ``amount`` cents under ``reference``."""
        return await self._send(
            "authorize",
            self._authorize_path,
            {"reference": reference, "amount": amount},
            idempotency_key=f"{reference}:authorize",
        )

    async def capture(self, reference: str) -> dict[str, Any]:
        return await self._send(
            "capture",
            self._capture_path.format(reference=reference),
            {"reference": reference},
            idempotency_key=f"{reference}:capture",
        )

    async def release(
        self,
        reference: str,
        *,
        amount: int,
        contractor_payout: int,
        platform_fee: int,
        recipient_id: str,
        idempotency_key: str,
    ) -> dict[str, Any]:
        """Pay ``contractor_payout`` to the recipient and keep ``platform_fee``."""
        return await self._send(
            "release",
            self._release_path.format(reference=reference),
            {
                "reference": reference,
                "amount": amount,
                "contractor_payout": contractor_payout,
                "platform_fee": platform_fee,
                "recipient_id": recipient_id,
            },
            idempotency_key=idempotency_key,
        )

    async def refund(self, reference: str, *, amount: int, idempotency_key: str) -> dict[str, Any]:
        return await self._send(
            "refund",
            self._refund_path.format(reference=reference),
            {"reference": reference, "amount": amount},
            idempotency_key=idempotency_key,
        )

    async def void(self, reference: str) -> dict[str, Any]:
        """Cancel an authorization that never became a hold."""
        return await self._send(
            "void",
            self._void_path.format(reference=reference),
            {"reference": reference},
            idempotency_key=f"{reference}:void",
        )

    async def _send(
        self,
        action: str,
        path: str,
        fields: dict[str, Any],
        *,
        idempotency_key: str,
    ) -> dict[str, Any]:
        logger = get_logger(__name__)

        signed_token = self._platform_signer.sign(
            {"action": action, "idempotency_key": idempotency_key, **fields}
        )

        try:
            response = await self._client.post(
                path,
                json={"token": signed_token},
                headers={"Idempotency-Key": idempotency_key},
            )
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            logger.warning(
                "Payment processor connection failed",
                extra={"error": str(exc), "action": action, "base_url": self._base_url},
            )
            raise PaymentFailure(
                "PROCESSOR_UNAVAILABLE",
                "Cannot connect to payment processor",
                details={"action": action},
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "Payment processor HTTP error",
                extra={"error": str(exc), "action": action, "base_url": self._base_url},
            )
            raise PaymentFailure(
                "PROCESSOR_UNAVAILABLE",
                "Payment processor request failed",
                details={"action": action},
            ) from exc

        if response.status_code in (200, 201):
            try:
                result: dict[str, Any] = response.json()
            except ValueError:
                result = {}
            return result

        if response.status_code == 402:
            raise PaymentFailure(
                "PAYMENT_DECLINED",
                "Payment processor declined the request",
                details={"action": action, **self._error_body(response)},
            )

        if 400 <= response.status_code < 500:
            raise PaymentFailure(
                "PAYMENT_REJECTED",
                "Payment processor rejected the request",
                details={
                    "action": action,
                    "processor_status": response.status_code,
                    **self._error_body(response),
                },
            )

        logger.warning(
            "Payment processor unexpected status",
            extra={
                "status_code": response.status_code,
                "action": action,
                "base_url": self._base_url,
            },
        )
        raise PaymentFailure(
            "PROCESSOR_UNAVAILABLE",
            "Payment processor returned unexpected status",
            details={"action": action, "processor_status": response.status_code},
        )

    @staticmethod
    def _error_body(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        if not isinstance(body, dict):
            return {}
        error = body.get("error")
        return {"processor_error": error} if isinstance(error, str) else {}

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
