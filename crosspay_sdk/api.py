"""
HTTP clients for the attestation service and the order service.

Both use a requests Session with urllib3 retries for 5xx responses; the
blocking calls are moved off the event loop with ``asyncio.to_thread``.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import validate_service_url
from .exceptions import ApiError, NotFoundError, RateLimitError
from .models import Attestation
from .retry import RATE_LIMIT_MARKERS

REDACTED_KEYS = ("signature", "attestation", "secretHashes")


def _sanitize_payload(payload: Any) -> Any:
    """
    Remove sensitive data from payload for logging

    Args:
        payload: Payload to sanitize

    Returns:
        Sanitized payload for safe logging
    """
    if payload is None:
        return None
    if not isinstance(payload, dict):
        return {"type": str(type(payload))}
    result = payload.copy()
    for key in REDACTED_KEYS:
        if key in result and result[key] is not None:
            result[key] = f"[REDACTED - {len(str(result[key]))} chars]"
    return result


class _HttpService:
    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        retry_count: int = 3,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.base_url = validate_service_url(base_url, "base_url")
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)

        if session is None:
            session = requests.Session()
            retries = Retry(
                total=retry_count,
                backoff_factor=0.5,
                status_forcelist=[500, 502, 503, 504],
                allowed_methods=["GET", "POST"],
                raise_on_status=False,
                connect=retry_count,
                read=retry_count,
                other=retry_count,
            )
            session.mount("http://", HTTPAdapter(max_retries=retries))
            session.mount("https://", HTTPAdapter(max_retries=retries))
        self.session = session

    def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                 json: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        self.logger.debug(f"{method} {url} params={params} body={_sanitize_payload(json)}")
        try:
            response = self.session.request(method, url, params=params, json=json, timeout=self.timeout)
        except requests.RequestException as e:
            self.logger.error(f"{method} {path} failed: {e}")
            raise ApiError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            detail = self._error_detail(response)
            message = f"{method} {path} returned {response.status_code}: {detail}"
            if response.status_code == 429 or any(m in detail.lower() for m in RATE_LIMIT_MARKERS):
                raise RateLimitError(message, status_code=response.status_code)
            if response.status_code == 404:
                raise NotFoundError(message, status_code=404)
            raise ApiError(message, status_code=response.status_code)

        content_type = response.headers.get("Content-Type", "")
        if "application/json" not in content_type:
            self.logger.warning(f"Unexpected Content-Type: {content_type} (expected application/json)")
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(f"Invalid JSON response from {path}: {e}", status_code=response.status_code)

    @staticmethod
    def _error_detail(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason or ""
        if isinstance(body, dict):
            return str(body.get("error") or body.get("message") or body)
        return str(body)

    async def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        return await asyncio.to_thread(self._request, method, path, **kwargs)

    def close(self) -> None:
        self.session.close()


class AttestationClient(_HttpService):
    """
    Client for the attestation service (Circle Iris style API).
    """

    async def fetch_messages(self, domain: int, tx_hash: str) -> List[Dict[str, Any]]:
        """
        Fetch the messages emitted by a burn transaction.

        Args:
            domain: Bridging domain of the source chain
            tx_hash: Burn transaction hash

        Returns:
            The raw ``messages`` list, possibly empty

        Raises:
            NotFoundError: If the service has not indexed the transaction yet
            RateLimitError: If the service throttled the request
            ApiError: For any other failure
        """
        data = await self._call("GET", f"/v2/messages/{domain}", params={"transactionHash": tx_hash})
        if not isinstance(data, dict):
            raise ApiError(f"Unexpected attestation response: {data!r}")
        return list(data.get("messages") or [])

    async def get_attestation(self, domain: int, tx_hash: str) -> Optional[Attestation]:
        """
        Return the attestation once it is complete, otherwise None.

        A 404 and any status other than ``complete`` both mean "not yet".
        Only a response with exactly one message counts.
        """
        try:
            messages = await self.fetch_messages(domain, tx_hash)
        except NotFoundError:
            self.logger.debug(f"Attestation for {tx_hash} not indexed yet")
            return None
        if len(messages) != 1:
            self.logger.debug(f"Attestation for {tx_hash}: {len(messages)} messages, waiting")
            return None
        message = messages[0]
        if message.get("status") != "complete":
            self.logger.debug(f"Attestation for {tx_hash} status: {message.get('status')}")
            return None
        return Attestation.model_validate(message)


class OrderServiceClient(_HttpService):
    """
    Client for the payment backend that quotes routes and relays signed orders.
    """

    async def get_route(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST /payment/route"""
        return await self._call("POST", "/payment/route", json=payload)

    async def process(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Ask the backend to build an unsigned order.

        Args:
            payload: Sender, recipient, chains, tokens, amount, note and route type

        Returns:
            Response body carrying ``orderData`` and ``orderHash``
        """
        return await self._call("POST", "/payment/process", json=payload)

    async def finalize(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Submit a signed order to the relayer.

        Raises:
            NotFoundError: If the relayer does not know the order (yet)
        """
        return await self._call("POST", "/payment/inch/finalize", json=payload)

    async def order_status(self, order_hash: str) -> Dict[str, Any]:
        """GET /payment/inch/status"""
        data = await self._call("GET", "/payment/inch/status", params={"orderHash": order_hash})
        if not isinstance(data, dict):
            raise ApiError(f"Unexpected order status response: {data!r}")
        return data
