from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx
from shared.models.config import EnvConfig

from shared.helper.HelperConfig import HelperConfig


class ClientRequestError(Exception):
    """Raised when a backend answers with a non-2xx status and the caller asked to raise.

    Attributes:
        url (str): Full request URL.
        status_code (int): HTTP status returned by the backend.
    """

    def __init__(self, url: str, status_code: int) -> None:
        super().__init__(f"Request to {url} failed with status {status_code}")
        self.url = url
        self.status_code = status_code


# Failures of a backend call: transport/timeout, non-2xx status, malformed response body
CLIENT_ERRORS = (httpx.HTTPError, ClientRequestError, ValueError)


class ClientInterface(ABC):
    """Base of the HTTP backends (vector index, language model).

    Configuration is read from env keys named <TYPE>_<ENGINE>_<KEY>, e.g.
    RAG_QDRANT_BASE_URL. The httpx client only exists between boot() and close().
    """

    def __init__(self, helper_config: HelperConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config
        self.timeout = helper_config.get_number_val(f"{self.get_client_type().upper()}_TIMEOUT", default=30.0)

        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self.validate_full_configuration()

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def validate_full_configuration(self) -> None:
        """Read every required key once so a missing one fails at construction.

        Raises:
            ValueError: If a required key is unset or has the wrong type.
        """
        for config in self._get_required_config():
            self.get_config_val(raw_key=config.env_key, default=config.default, val_type=config.val_type)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def get_client_type(self) -> str:
        return self._get_client_type().lower()

    @abstractmethod
    def _get_client_type(self) -> str:
        """Backend family, "rag" or "llm"."""
        pass

    def get_engine_name(self) -> str:
        return self._get_engine_name().lower()

    @abstractmethod
    def _get_engine_name(self) -> str:
        """Display name of the engine, e.g. "Qdrant"."""
        pass

    ################ CONFIG ##################
    @abstractmethod
    def _get_required_config(self) -> list[EnvConfig]:
        """Keys this engine needs, without the <TYPE>_<ENGINE>_ prefix."""
        pass

    def _get_config_key_name(self, raw_key: str) -> str:
        return f"{self.get_client_type().upper()}_{self.get_engine_name().upper()}_{raw_key.upper()}"

    def get_config_val(self, raw_key: str, default: Any = None, val_type: str = "string") -> Any:
        """Read an engine scoped setting.

        Args:
            raw_key (str): Key without prefix, e.g. "BASE_URL".
            default (Any): Returned when unset. None makes the key required.
            val_type (str): One of "string", "number", "bool", "list".
        """
        readers = {
            "string": self._helper_config.get_string_val,
            "number": self._helper_config.get_number_val,
            "bool": self._helper_config.get_bool_val,
            "list": self._helper_config.get_list_val,
        }
        if val_type not in readers:
            raise ValueError(f"Unsupported config value type '{val_type}' for {self._get_config_key_name(raw_key)}.")
        return readers[val_type](self._get_config_key_name(raw_key), default=default)

    ################ AUTH ##################
    @abstractmethod
    def _get_auth_header(self) -> dict:
        """Headers that authenticate against the backend, empty when no key is set."""
        pass

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_base_url(self) -> str:
        pass

    @abstractmethod
    def _get_endpoint_healthcheck(self) -> str:
        pass

    def _build_url(self, endpoint: str) -> str:
        endpoint = endpoint.strip()
        path = "/" + endpoint.lstrip("/") if endpoint else ""
        return f"{self._get_base_url().rstrip('/')}{path}"

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError(f"{self.get_client_type().upper()} client used before boot().")
        return self._client

    ##########################################
    ############ CORE REQUESTS ###############
    ##########################################

    async def boot(self) -> None:
        self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport, headers=self._get_auth_header())

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def do_healthcheck(self) -> httpx.Response:
        return await self.do_request(method="GET", endpoint=self._get_endpoint_healthcheck())

    async def do_request(
        self,
        method: str = "GET",
        endpoint: str = "",
        json: dict | None = None,
        params: dict | None = None,
        raise_on_error: bool = False,
    ) -> httpx.Response:
        """Send a request with an optional JSON body.

        Args:
            method: HTTP method.
            endpoint: Path below the base URL, leading slash optional.
            json: Request body.
            params: Query parameters.
            raise_on_error: Raise ClientRequestError on a non-2xx status.

        Raises:
            RuntimeError: If called before boot().
            httpx.HTTPError: On transport failures and timeouts.
            ClientRequestError: On a non-2xx status when raise_on_error is set.
        """
        client = self._require_client()
        url = self._build_url(endpoint)
        response = await client.request(method, url, json=json, params=params)
        if raise_on_error and not response.is_success:
            self.logging.error("%s request to %s failed with status %d: %s", method, url, response.status_code, response.text[:500])
            raise ClientRequestError(url, response.status_code)
        return response

    @asynccontextmanager
    async def do_stream(self, method: str = "POST", endpoint: str = "", json: dict | None = None) -> AsyncIterator[httpx.Response]:
        """Open a streamed request; leaving the context closes the connection.

        Closing early is how an abandoned generation is aborted upstream.

        Raises:
            ClientRequestError: If the backend answers with a non-2xx status.
        """
        client = self._require_client()
        url = self._build_url(endpoint)
        async with client.stream(method, url, json=json) as response:
            if not response.is_success:
                body = await response.aread()
                self.logging.error("Streamed %s to %s failed with status %d: %s", method, url, response.status_code, body[:200])
                raise ClientRequestError(url, response.status_code)
            yield response
