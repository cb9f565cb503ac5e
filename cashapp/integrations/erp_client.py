"""
ERP API client for posting applied payments.
"""

import base64
from typing import Any, Dict, List, Optional

import httpx
import structlog
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from ..config import Settings, get_settings
from ..errors import ErpError
from ..models import Payment, PostingLine

logger = structlog.get_logger()


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, ErpError) and exc.is_transient


class ErpClient:
    """
    Client for the ERP payment posting API.
    Handles authentication, retries on transient failures and payload mapping.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
        wait=None,
    ):
        self.settings = settings or get_settings()
        self.base_url = self.settings.erp_api_url
        self.user = user or self.settings.erp_user
        self.password = password or self.settings.erp_password
        self.max_attempts = self.settings.erp_max_attempts
        self.wait = wait or wait_exponential(multiplier=1, min=2, max=10)
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    @property
    def auth_header(self) -> str:
        """Generate Basic Auth header."""
        credentials = f"{self.user}:{self.password}"
        encoded = base64.b64encode(credentials.encode()).decode()
        return f"Basic {encoded}"

    def _get_client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                base_url=self.base_url,
                headers={
                    "Authorization": self.auth_header,
                    "Content-Type": "application/json",
                },
                timeout=self.settings.erp_timeout_seconds,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            self._client.close()

    def __enter__(self) -> "ErpClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _request(self, method: str, endpoint: str, **kwargs) -> Dict[str, Any]:
        """Make an authenticated request, retrying transient failures."""
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.wait,
            retry=retry_if_exception(_is_transient),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                return self._send(method, endpoint, **kwargs)
        return {}

    def _send(self, method: str, endpoint: str, **kwargs) -> Dict[str, Any]:
        client = self._get_client()

        try:
            response = client.request(method, endpoint, **kwargs)
        except httpx.TimeoutException:
            raise ErpError("Request timeout")
        except httpx.RequestError as e:
            raise ErpError(f"Request error: {str(e)}")

        if response.status_code == 401:
            raise ErpError(
                "Authentication failed. Check ERP user and password.",
                status_code=401,
            )

        if response.status_code == 404:
            raise ErpError(
                f"Resource not found: {endpoint}",
                status_code=404,
            )

        if response.status_code >= 400:
            try:
                error_detail = response.json()
            except ValueError:
                error_detail = response.text
            raise ErpError(
                f"API error: {response.status_code}",
                status_code=response.status_code,
                details=error_detail,
            )

        if response.status_code == 204:
            return {}

        return response.json()

    def validate_credentials(self) -> bool:
        """
        Validate ERP credentials.

        Returns:
            True if credentials are valid
        """
        try:
            self._request("GET", "/api/profile")
            logger.info("ERP credentials validated")
            return True
        except ErpError as e:
            if e.status_code == 401:
                logger.warning("Invalid ERP credentials")
                return False
            raise

    def post_payment(self, payment: Payment, lines: List[PostingLine]) -> str:
        """
        Post an applied payment with its application lines.

        Args:
            payment: The payment being applied
            lines: One line per receivable

        Returns:
            The ERP payment id
        """
        payload = self._build_payload(payment, lines)
        response = self._request("POST", "/api/payments", json=payload)

        erp_payment_id = response.get("id") or response.get("paymentId")
        if not erp_payment_id:
            raise ErpError("ERP response did not include a payment id", details=response)

        logger.info(
            "Payment posted to ERP",
            payment_id=payment.id,
            payment_number=payment.payment_number,
            erp_payment_id=erp_payment_id,
            lines=len(lines),
        )
        return str(erp_payment_id)

    def _build_payload(self, payment: Payment, lines: List[PostingLine]) -> Dict[str, Any]:
        return {
            "paymentNumber": payment.payment_number,
            "customerNumber": payment.customer_id,
            "currency": payment.currency,
            "amount": payment.amount_cents / 100,
            "lines": [
                {
                    "reference": line.reference,
                    "referenceField": line.reference_field,
                    "paymentAmount": line.amount_cents / 100,
                    "discountAmount": line.discount_cents / 100,
                    "reasonCode": line.reason_code,
                    "reasonDescription": line.reason_description,
                    "customerNumber": line.customer_id or payment.customer_id,
                }
                for line in lines
            ],
        }
