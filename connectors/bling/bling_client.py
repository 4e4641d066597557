"""Bling HTTP Client.

Low-level async client for the Bling API v3. Every call takes its bearer
token from the TokenManager and runs under its own deadline; a call that
exceeds it is cancelled and surfaces as RemoteTimeoutError.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

import aiohttp
from pydantic import BaseModel, ValidationError as PayloadError

from connectors.bling.bling_auth import TokenManager
from connectors.bling.bling_models import (
    Contact,
    ContactSummary,
    NfseDocument,
    Product,
    SalesOrder,
)
from core.errors import RemoteApiError, RemoteTimeoutError
from core.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30.0
EMIT_TIMEOUT = 45.0
SUBMIT_TIMEOUT = 120.0
POLL_TIMEOUT = 30.0

M = TypeVar("M", bound=BaseModel)


class BlingApiClient:
    """HTTP client for the Bling API.

    Usage:
        client = BlingApiClient(token_manager, settings.api_base_url)
        async with client:
            order = await client.get_sales_order(123)

    Outside `async with`, each call opens a short-lived session.
    """

    def __init__(
        self,
        token_manager: TokenManager,
        base_url: str = "https://api.bling.com.br/Api/v3",
        contact_search_limit: int = 100,
    ):
        self.token_manager = token_manager
        self.base_url = base_url.rstrip("/")
        self.contact_search_limit = contact_search_limit
        self._session: Optional[aiohttp.ClientSession] = None

    async def connect(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession()

    async def disconnect(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "BlingApiClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Any] = None,
        json_body: Optional[Dict[str, Any]] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> Any:
        """Make an authenticated API request.

        A 401 triggers one token refresh and a single retry.

        Raises:
            AuthenticationError: No usable token
            RemoteApiError: Non-success HTTP status or transport failure
            RemoteTimeoutError: The call exceeded `timeout` seconds
        """
        url = f"{self.base_url}/{path.lstrip('/')}"

        for attempt in range(2):
            token = await self.token_manager.ensure_valid_token()
            headers = {
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
            }
            logger.debug(f"{method} {path}")

            status, body = await self._send(method, url, headers, params, json_body, timeout)

            if status == 401 and attempt == 0:
                logger.warning("Got 401 from Bling, refreshing token and retrying")
                await self.token_manager.refresh()
                continue

            if status >= 400:
                logger.error(f"Bling API error on {method} {path}: {status} - {body}")
                raise RemoteApiError(f"Bling API error {status} on {method} {path}", status, body)

            if not body:
                return {}
            try:
                return json.loads(body)
            except ValueError:
                return {"raw": body}

        raise RemoteApiError(f"Bling API rejected credentials on {method} {path}", 401)

    async def _send(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        params: Optional[Any],
        json_body: Optional[Dict[str, Any]],
        timeout: float,
    ) -> tuple:
        client_timeout = aiohttp.ClientTimeout(total=timeout)
        try:
            if self._session is not None:
                return await self._do_send(self._session, method, url, headers, params, json_body, client_timeout)
            async with aiohttp.ClientSession() as session:
                return await self._do_send(session, method, url, headers, params, json_body, client_timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Timeout after {timeout:.0f}s on {method} {url}")
            raise RemoteTimeoutError(
                f"Bling did not respond within {timeout:.0f}s ({method} {url})",
                timeout,
            ) from e
        except aiohttp.ClientError as e:
            raise RemoteApiError(f"Request to Bling failed: {e}") from e

    @staticmethod
    async def _do_send(session, method, url, headers, params, json_body, client_timeout) -> tuple:
        async with session.request(
            method,
            url,
            headers=headers,
            params=params,
            json=json_body,
            timeout=client_timeout,
        ) as response:
            return response.status, await response.text()

    # =========================================================================
    # Response parsing
    # =========================================================================

    @staticmethod
    def _data(response: Any, what: str) -> Any:
        """The `data` member of a Bling envelope."""
        if not isinstance(response, dict):
            raise RemoteApiError(
                f"Unexpected Bling response for {what}: expected an object",
                200,
                json.dumps(response, default=str),
            )
        return response.get("data")

    def _parse(self, model: Type[M], response: Any, what: str) -> M:
        """Validate `data` as `model`; a malformed 2xx body is a RemoteApiError."""
        data = self._data(response, what)
        try:
            return model.model_validate(data or {})
        except PayloadError as e:
            logger.error(f"Malformed Bling response for {what}: {e}")
            raise RemoteApiError(
                f"Malformed Bling response for {what}",
                200,
                json.dumps(response, default=str),
            ) from e

    def _parse_list(self, model: Type[M], response: Any, what: str) -> List[M]:
        data = self._data(response, what) or []
        if not isinstance(data, list):
            raise RemoteApiError(
                f"Unexpected Bling response for {what}: expected a list",
                200,
                json.dumps(response, default=str),
            )
        return [self._parse(model, {"data": item}, what) for item in data]

    # =========================================================================
    # Sales orders and products
    # =========================================================================

    async def get_sales_order(self, order_id: int) -> SalesOrder:
        response = await self._request("GET", f"pedidos/vendas/{order_id}")
        return self._parse(SalesOrder, response, f"sales order {order_id}")

    async def list_sales_orders(
        self,
        page: int = 1,
        limit: int = 20,
        number: Optional[int] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        contact_id: Optional[int] = None,
        situation_ids: Optional[List[int]] = None,
    ) -> List[SalesOrder]:
        """One page of sales orders (summary fields only, no line items)."""
        params: List[tuple] = [("pagina", page), ("limite", limit)]
        if number is not None:
            params.append(("numero", number))
        if date_from:
            params.append(("dataInicial", date_from))
        if date_to:
            params.append(("dataFinal", date_to))
        if contact_id is not None:
            params.append(("idContato", contact_id))
        for situation_id in situation_ids or []:
            params.append(("idsSituacoes[]", situation_id))

        response = await self._request("GET", "pedidos/vendas", params=params)
        return self._parse_list(SalesOrder, response, "sales order list")

    async def get_product(self, product_id: int) -> Product:
        response = await self._request("GET", f"produtos/{product_id}")
        return self._parse(Product, response, f"product {product_id}")

    # =========================================================================
    # Contacts
    # =========================================================================

    async def search_contacts(self, document: str) -> List[ContactSummary]:
        """Free-text contact search; results may match loosely."""
        response = await self._request(
            "GET",
            "contatos",
            params={"pagina": 1, "limite": self.contact_search_limit, "pesquisa": document},
        )
        return self._parse_list(ContactSummary, response, "contact search")

    async def get_contact(self, contact_id: int) -> Optional[Contact]:
        """Full contact profile, or None if Bling does not know the id."""
        try:
            response = await self._request("GET", f"contatos/{contact_id}")
        except RemoteApiError as e:
            if e.is_not_found:
                return None
            raise
        if not self._data(response, f"contact {contact_id}"):
            return None
        return self._parse(Contact, response, f"contact {contact_id}")

    async def create_contact(self, payload: Dict[str, Any]) -> int:
        """Create a contact and return its id."""
        response = await self._request("POST", "contatos", json_body=payload)
        data = self._data(response, "contact creation")
        contact_id = data.get("id") if isinstance(data, dict) else None
        if not contact_id:
            raise RemoteApiError("Bling did not return an id for the new contact", 200, json.dumps(response))
        return int(contact_id)

    # =========================================================================
    # NFSe
    # =========================================================================

    async def create_nfse(self, payload: Dict[str, Any]) -> NfseDocument:
        response = await self._request("POST", "nfse", json_body=payload, timeout=EMIT_TIMEOUT)
        return self._parse(NfseDocument, response, "NFSe creation")

    async def send_nfse(self, invoice_id: Union[int, str]) -> NfseDocument:
        """Submit an emitted NFSe to the municipal processor."""
        response = await self._request("POST", f"nfse/{invoice_id}/enviar", json_body={}, timeout=SUBMIT_TIMEOUT)
        return self._parse(NfseDocument, response, f"NFSe {invoice_id} submission")

    async def get_nfse(self, invoice_id: Union[int, str], timeout: float = POLL_TIMEOUT) -> NfseDocument:
        response = await self._request("GET", f"nfse/{invoice_id}", timeout=timeout)
        return self._parse(NfseDocument, response, f"NFSe {invoice_id}")

    async def test_connection(self) -> Dict[str, Any]:
        """Check that the stored credential can call the API. Never raises."""
        try:
            await self._request("GET", "contatos", params={"pagina": 1, "limite": 1})
        except Exception as e:
            logger.warning(f"Bling connection test failed: {e}")
            return {"success": False, "message": f"Connection failed: {e}"}
        return {"success": True, "message": "Connection to Bling API succeeded"}
