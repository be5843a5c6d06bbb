"""Client contract for the transaction kernel.

The kernel owns sessions, transactions, line items and tenders. Everything
here is request/response; results come back as ``KernelTransaction``.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests
from pydantic import ValidationError

from .. import __version__
from ..schemas.kernel_models import KernelSession, KernelTransaction
from ..utils.logger import get_logger

logger = get_logger("kernel")


class KernelError(Exception):
    """Base class for kernel failures."""


class KernelUnavailableError(KernelError):
    """The kernel could not be reached or answered with a server error."""


class KernelRequestError(KernelError):
    """The kernel rejected a request (unknown line, completed transaction, ...)."""


class KernelResponseError(KernelError):
    """The kernel answered with a body that does not fit the transfer objects."""


class KernelClient(ABC):
    """Operations the tool provider needs from the kernel."""

    @abstractmethod
    def create_session(self, terminal_id: str, operator_id: str) -> KernelSession:
        ...

    @abstractmethod
    def start_transaction(self, session_id: str, currency: str) -> KernelTransaction:
        ...

    @abstractmethod
    def add_line_item(self, session_id: str, transaction_id: str, sku: str, quantity: int,
                      unit_price: float, parent_line_item_id: Optional[str] = None) -> KernelTransaction:
        ...

    @abstractmethod
    def void_line_item(self, session_id: str, transaction_id: str, line_number: int) -> KernelTransaction:
        ...

    @abstractmethod
    def update_line_item_quantity(self, session_id: str, transaction_id: str, line_number: int,
                                  quantity: int) -> KernelTransaction:
        ...

    @abstractmethod
    def get_transaction(self, session_id: str, transaction_id: str) -> KernelTransaction:
        ...

    @abstractmethod
    def process_payment(self, session_id: str, transaction_id: str, amount: float,
                        method: str) -> KernelTransaction:
        ...

    @abstractmethod
    def close_session(self, session_id: str) -> None:
        ...


class HttpKernelClient(KernelClient):
    """JSON-over-HTTP kernel adapter built on ``requests``."""

    def __init__(self, base_url: str, timeout: float = 10.0, http: requests.Session = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.http = http or requests.Session()
        self.http.headers.update({
            "Content-Type": "application/json",
            "User-Agent": f"poschat/{__version__}",
        })

    def _request(self, method: str, path: str, payload: Dict[str, Any] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self.http.request(method, url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise KernelUnavailableError(f"POS KERNEL SERVICE NOT AVAILABLE: {method} {url} failed: {e}") from e

        if response.status_code >= 500:
            raise KernelUnavailableError(
                f"POS KERNEL SERVICE NOT AVAILABLE: {method} {url} returned {response.status_code}"
            )
        if response.status_code >= 400:
            detail = response.text
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                detail = body.get("error", detail)
            logger.warning(f"[KERNEL] {method} {path} rejected: {detail}")
            raise KernelRequestError(f"Kernel rejected {method} {path}: {detail}")
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise KernelUnavailableError(f"Kernel returned a non-JSON body for {method} {path}") from e

    def _validate(self, model, data: Dict[str, Any]):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise KernelResponseError(f"Kernel returned a malformed {model.__name__}: {e}") from e

    def _transaction(self, data: Dict[str, Any]) -> KernelTransaction:
        return self._validate(KernelTransaction, data)

    def create_session(self, terminal_id: str, operator_id: str) -> KernelSession:
        data = self._request("POST", "/sessions", {"terminal_id": terminal_id, "operator_id": operator_id})
        return self._validate(KernelSession, data)

    def start_transaction(self, session_id: str, currency: str) -> KernelTransaction:
        return self._transaction(self._request("POST", f"/sessions/{session_id}/transactions", {"currency": currency}))

    def add_line_item(self, session_id, transaction_id, sku, quantity, unit_price, parent_line_item_id=None):
        payload = {"product_sku": sku, "quantity": quantity, "unit_price": unit_price}
        if parent_line_item_id:
            payload["parent_line_item_id"] = parent_line_item_id
        path = f"/sessions/{session_id}/transactions/{transaction_id}/lines"
        return self._transaction(self._request("POST", path, payload))

    def void_line_item(self, session_id, transaction_id, line_number):
        path = f"/sessions/{session_id}/transactions/{transaction_id}/lines/{line_number}"
        return self._transaction(self._request("DELETE", path))

    def update_line_item_quantity(self, session_id, transaction_id, line_number, quantity):
        path = f"/sessions/{session_id}/transactions/{transaction_id}/lines/{line_number}"
        return self._transaction(self._request("PATCH", path, {"quantity": quantity}))

    def get_transaction(self, session_id, transaction_id):
        return self._transaction(self._request("GET", f"/sessions/{session_id}/transactions/{transaction_id}"))

    def process_payment(self, session_id, transaction_id, amount, method):
        path = f"/sessions/{session_id}/transactions/{transaction_id}/payments"
        return self._transaction(self._request("POST", path, {"amount": amount, "method": method}))

    def close_session(self, session_id):
        self._request("DELETE", f"/sessions/{session_id}")
