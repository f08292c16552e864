from collections.abc import Mapping, Sequence
from types import TracebackType
from typing import Any, ClassVar, Literal
from typing_extensions import override
from urllib.parse import quote

import httpx
from httpx import URL, AsyncClient, Client, Response
from more_itertools import chunked

from .logger import getLogger
from .metrics import ApiUsage, parse_api_usage
from .exceptions import (
    BatchFailed,
    InsertFailed,
    InvalidRecords,
    QueryFailed,
    RequestFailed,
    SalesforceError,
    SearchFailed,
    UpdateFailed,
    raise_for_status,
)
from .auth import OAuthCredentials, OAuthFragmentAuth
from ._models import (
    BatchResultJSON,
    BatchSubRequest,
    QueryResultJSON,
    Record,
    SearchResultJSON,
    SObjectDict,
    SObjectSaveResult,
    TreeSaveResult,
)

LOGGER = getLogger("client")

# failures the executor retries
TRANSIENT_ERRORS = (httpx.HTTPError, SalesforceError, ValueError)
# characters encodeURIComponent leaves alone, besides those `quote` always keeps
URI_COMPONENT_SAFE = "!~*'()"

Failed = Literal[False]


def _normalize_version(version: str | float | int) -> str:
    return f"{float(version):.1f}"


class SessionState:
    """
    Results of the most recent operations of a session.

    Result fields start as `None` and are set to `False` when the
    corresponding operation fails.
    """

    soql: str | None = None
    sosl: str | None = None
    records: list[SObjectDict] | Failed | None = None
    search_records: list[SObjectDict] | Failed | None = None
    insert_results: list[TreeSaveResult] | Failed | None = None
    update_results: list[SObjectSaveResult] | Failed | None = None
    request_count: int = 0
    request_error_count: int = 0


class SalesforceSessionBase:
    MAX_RETRIES: ClassVar[int] = 3
    MAX_URL_LENGTH: ClassVar[int] = 2048
    BATCH_CHUNK_SIZE: ClassVar[int] = 25
    RECORD_CHUNK_SIZE: ClassVar[int] = 200
    DEFAULT_SERVICES_BASE_PATH: ClassVar[str] = "/services/data/"
    DEFAULT_VERSION: ClassVar[str] = "43.0"

    credentials: OAuthCredentials
    session_state: SessionState
    services_base_path: str
    version: str
    api_usage: ApiUsage | None = None

    def __init__(
        self,
        oauth_url: str,
        instance_url: str | None = None,
        services_base_path: str = DEFAULT_SERVICES_BASE_PATH,
        version: str | float | int = DEFAULT_VERSION,
    ):
        self.credentials = OAuthCredentials.from_redirect(oauth_url, instance_url)
        self.session_state = SessionState()
        self.services_base_path = services_base_path
        self.version = _normalize_version(version)

    def __str__(self):
        return f"{type(self).__name__} ({self.credentials.instance_url} v{self.version})"

    # URL building

    def versioned_path(self, action: str = "") -> str:
        return f"v{self.version}/{action}"

    def build_url(self, action: str = "") -> str:
        return (
            self.credentials.instance_url
            + self.services_base_path
            + self.versioned_path(action)
        )

    def cursor_action(self, next_records_url: str) -> str:
        """Convert a server-relative `nextRecordsUrl` into an action."""
        prefix = self.services_base_path + self.versioned_path()
        if next_records_url.startswith(prefix):
            return next_records_url[len(prefix) :]
        return next_records_url.lstrip("/")

    def exceeds_url_limit(self, action: str) -> bool:
        return len(self.build_url(action)) > self.MAX_URL_LENGTH

    # session state

    @property
    def soql(self) -> str | None:
        return self.session_state.soql

    @property
    def sosl(self) -> str | None:
        return self.session_state.sosl

    @property
    def records(self):
        return self.session_state.records

    @property
    def search_records(self):
        return self.session_state.search_records

    @property
    def insert_results(self):
        return self.session_state.insert_results

    @property
    def update_results(self):
        return self.session_state.update_results

    @property
    def request_count(self) -> int:
        return self.session_state.request_count

    @property
    def request_error_count(self) -> int:
        return self.session_state.request_error_count

    # shared request plumbing

    def _record_api_usage(self, response: Response):
        sforce_limit_info = response.headers.get("Sforce-Limit-Info")
        if sforce_limit_info and isinstance(sforce_limit_info, str):
            self.api_usage = parse_api_usage(sforce_limit_info)

    def _request_kwargs(self, payload: Any, transport_params: dict[str, Any]):
        if payload is not None:
            transport_params["json"] = payload
        return transport_params

    def _record_failed_attempt(
        self, method: str, action: str, attempt: int, error: Exception
    ):
        self.session_state.request_error_count += 1
        LOGGER.warning(
            "%s %s failed (attempt %d of %d): %r",
            method,
            action,
            attempt + 1,
            self.MAX_RETRIES + 1,
            error,
        )

    @staticmethod
    def _decode(method: str, response: Response):
        # record updates answer with an empty body
        if method == "PATCH":
            return response.status_code
        return response.json()

    def _oversized_get_batch(self, action: str) -> list[BatchSubRequest]:
        LOGGER.debug(
            "URL for %s exceeds %d characters, sending via batch",
            action[:64],
            self.MAX_URL_LENGTH,
        )
        return [BatchSubRequest("GET", self.versioned_path(action))]

    @staticmethod
    def _single_batch_result(action: str, aggregate: BatchResultJSON):
        if not aggregate.get("results"):
            LOGGER.error("Batched GET %s returned no sub-results", action[:64])
            raise RequestFailed("GET", action)
        sub_result = aggregate["results"][0]
        if sub_result.get("statusCode", 200) >= 300:
            LOGGER.error(
                "Batched GET %s returned status %s: %s",
                action[:64],
                sub_result.get("statusCode"),
                sub_result.get("result"),
            )
            raise RequestFailed("GET", action)
        return sub_result["result"]

    def _sub_requests(
        self, requests: Sequence[BatchSubRequest | Mapping[str, str] | str]
    ) -> list[BatchSubRequest]:
        if not isinstance(requests, (list, tuple)):
            raise BatchFailed(
                0, f"expected a list of sub-requests, got {type(requests).__name__}"
            )
        if not requests:
            raise BatchFailed(0, "no sub-requests")
        try:
            return [BatchSubRequest.coerce(item, self.version) for item in requests]
        except ValueError as e:
            raise BatchFailed(len(requests), str(e)) from e

    def _merge_batch_chunk(self, aggregate: BatchResultJSON, response: BatchResultJSON):
        aggregate["hasErrors"] = aggregate["hasErrors"] or bool(
            response.get("hasErrors")
        )
        aggregate["results"].extend(response["results"])
        # each chunk is part of one logical batch request
        self.session_state.request_count -= 1

    @staticmethod
    def _prepare_records(records: Any, require_id: bool = False) -> list[Record]:
        if isinstance(records, (Record, Mapping)):
            records = [records]
        if not records or not isinstance(records, (list, tuple)):
            raise InvalidRecords("No valid records to submit")
        prepared = [Record.coerce(record) for record in records]
        if require_id:
            missing = sum(1 for record in prepared if not record.id)
            if missing:
                raise InvalidRecords(
                    f"{missing} {prepared[0].type} record(s) are missing an Id"
                )
        return prepared

    @staticmethod
    def _query_action(resource: str, statement: str) -> str:
        return f"{resource}?q={quote(statement, safe=URI_COMPONENT_SAFE)}"


class SalesforceSession(Client, SalesforceSessionBase):
    """
    Blocking session against the Salesforce REST data API, authenticated
    with the credentials from an OAuth implicit-grant redirect URL.
    """

    _auth: OAuthFragmentAuth

    def __init__(
        self,
        oauth_url: str,
        instance_url: str | None = None,
        services_base_path: str = SalesforceSessionBase.DEFAULT_SERVICES_BASE_PATH,
        version: str | float | int = SalesforceSessionBase.DEFAULT_VERSION,
        **kwargs,
    ):
        SalesforceSessionBase.__init__(
            self, oauth_url, instance_url, services_base_path, version
        )
        headers = {"Accept": "application/json", **(kwargs.pop("headers", None) or {})}
        Client.__init__(
            self, auth=OAuthFragmentAuth(self.credentials), headers=headers, **kwargs
        )

    @override
    def __enter__(self):
        _ = Client.__enter__(self)
        LOGGER.info("Opened %s", self)
        return self

    @override
    def __exit__(
        self,
        exc_type: type[BaseException] | None = None,
        exc_value: BaseException | None = None,
        traceback: TracebackType | None = None,
    ) -> None:
        return Client.__exit__(self, exc_type, exc_value, traceback)

    @override
    def request(
        self, method: str, url: URL | str, resource_name: str = "", **kwargs
    ) -> Response:
        response = super().request(method, url, **kwargs)

        raise_for_status(response, resource_name)

        self._record_api_usage(response)
        return response

    def execute(
        self, method: str, action: str, payload: Any = None, **transport_params
    ) -> Any:
        """
        Perform one authenticated call against the versioned data API.

        Failed attempts are retried immediately, up to `MAX_RETRIES` times.
        Returns the decoded JSON body, or the status code for PATCH.
        """
        method = method.upper()
        url = self.build_url(action)
        kwargs = self._request_kwargs(payload, transport_params)
        self.session_state.request_count += 1
        last_error: Exception | None = None
        for attempt in range(self.MAX_RETRIES + 1):
            try:
                response = self.request(method, url, resource_name=action, **kwargs)
                return self._decode(method, response)
            except TRANSIENT_ERRORS as e:
                self._record_failed_attempt(method, action, attempt, e)
                last_error = e
        LOGGER.error("%s %s failed after %d attempts", method, action, attempt + 1)
        raise RequestFailed(method, action) from last_error

    def fetch(self, action: str | Sequence[Any], **transport_params) -> Any:
        """
        GET an action. A list of actions, or a single action whose URL would
        be too long, is sent through the composite batch resource instead.
        """
        if isinstance(action, (list, tuple)):
            return self.batch(action, **transport_params)
        if self.exceeds_url_limit(action):
            aggregate = self.batch(self._oversized_get_batch(action), **transport_params)
            return self._single_batch_result(action, aggregate)
        return self.execute("GET", action, **transport_params)

    def batch(
        self,
        requests: Sequence[BatchSubRequest | Mapping[str, str] | str],
        **transport_params,
    ) -> BatchResultJSON:
        """
        Submit sub-requests through the composite batch resource, 25 per call,
        and merge the results in submission order.
        """
        sub_requests = self._sub_requests(requests)
        aggregate: BatchResultJSON = {"hasErrors": False, "results": []}
        for chunk in chunked(sub_requests, self.BATCH_CHUNK_SIZE):
            try:
                response = self.execute(
                    "POST",
                    "composite/batch/",
                    {"batchRequests": [request.to_dict() for request in chunk]},
                    **transport_params,
                )
                self._merge_batch_chunk(aggregate, response)
            except Exception as e:
                LOGGER.exception("Batch of %d sub-requests failed", len(sub_requests))
                raise BatchFailed(len(sub_requests)) from e
        self.session_state.request_count += 1
        return aggregate

    def _walk_pages(
        self, action: str, page_key: str, transport_params: dict
    ) -> list[SObjectDict]:
        page: QueryResultJSON | SearchResultJSON
        page = self.fetch(action, **transport_params)
        records = list(page[page_key])
        while next_records_url := page.get("nextRecordsUrl"):
            page = self.fetch(self.cursor_action(next_records_url))
            records.extend(page[page_key])
        return records

    def query(self, soql: str | None = None, **transport_params) -> list[SObjectDict]:
        """
        Run a SOQL query and return every record, following `nextRecordsUrl`.
        Without an argument the previous query is run again.
        """
        if soql is None:
            soql = self.session_state.soql
        self.session_state.soql = soql
        try:
            if not soql:
                raise ValueError("No SOQL query to run")
            records = self._walk_pages(
                self._query_action("query", soql), "records", transport_params
            )
        except Exception as e:
            LOGGER.exception("Query failed: %s", soql)
            self.session_state.records = False
            raise QueryFailed(soql) from e
        self.session_state.records = records
        return records

    def search(self, sosl: str | None = None, **transport_params) -> list[SObjectDict]:
        """Run a SOSL search and return every matching record."""
        if sosl is None:
            sosl = self.session_state.sosl
        self.session_state.sosl = sosl
        try:
            if not sosl:
                raise ValueError("No SOSL search to run")
            records = self._walk_pages(
                self._query_action("search", sosl), "searchRecords", transport_params
            )
        except Exception as e:
            LOGGER.exception("Search failed: %s", sosl)
            self.session_state.search_records = False
            raise SearchFailed(sosl) from e
        self.session_state.search_records = records
        return records

    def insert(self, records) -> list[TreeSaveResult]:
        """
        Insert records of a single type via the composite tree resource,
        200 per call. Returns the reference ids paired with the new Ids.
        """
        prepared = self._prepare_records(records)
        sobject = prepared[0].type
        results: list[TreeSaveResult] = []
        try:
            for chunk in chunked(prepared, self.RECORD_CHUNK_SIZE):
                response = self.execute(
                    "POST",
                    f"composite/tree/{sobject}/",
                    {"records": [record.to_dict() for record in chunk]},
                )
                results.extend(response["results"])
        except Exception as e:
            LOGGER.exception("Insert of %d %s records failed", len(prepared), sobject)
            self.session_state.insert_results = False
            raise InsertFailed(sobject) from e
        LOGGER.info("Inserted %d %s records", len(results), sobject)
        self.session_state.insert_results = results
        return results

    def update(self, records) -> list[SObjectSaveResult]:
        """Update records of a single type, 200 per call."""
        prepared = self._prepare_records(records, require_id=True)
        sobject = prepared[0].type
        results: list[SObjectSaveResult] = []
        try:
            for chunk in chunked(prepared, self.RECORD_CHUNK_SIZE):
                response = self.execute(
                    "POST",
                    "composite/sobjects?_HttpMethod=PATCH",
                    {"records": [record.to_dict() for record in chunk]},
                )
                results.extend(response)
        except Exception as e:
            LOGGER.exception("Update of %d %s records failed", len(prepared), sobject)
            self.session_state.update_results = False
            raise UpdateFailed(sobject) from e
        LOGGER.info("Updated %d %s records", len(results), sobject)
        self.session_state.update_results = results
        return results


class AsyncSalesforceSession(AsyncClient, SalesforceSessionBase):
    """
    Cooperative variant of `SalesforceSession`. Pages, chunks and retries
    are awaited one after another.
    """

    _auth: OAuthFragmentAuth

    def __init__(
        self,
        oauth_url: str,
        instance_url: str | None = None,
        services_base_path: str = SalesforceSessionBase.DEFAULT_SERVICES_BASE_PATH,
        version: str | float | int = SalesforceSessionBase.DEFAULT_VERSION,
        **kwargs,
    ):
        SalesforceSessionBase.__init__(
            self, oauth_url, instance_url, services_base_path, version
        )
        headers = {"Accept": "application/json", **(kwargs.pop("headers", None) or {})}
        AsyncClient.__init__(
            self, auth=OAuthFragmentAuth(self.credentials), headers=headers, **kwargs
        )

    @override
    async def __aenter__(self):
        _ = await AsyncClient.__aenter__(self)
        LOGGER.info("Opened %s", self)
        return self

    @override
    async def __aexit__(
        self,
        exc_type: type[BaseException] | None = None,
        exc_value: BaseException | None = None,
        traceback: TracebackType | None = None,
    ) -> None:
        return await AsyncClient.__aexit__(self, exc_type, exc_value, traceback)

    @override
    async def request(
        self, method: str, url: URL | str, resource_name: str = "", **kwargs
    ) -> Response:
        response = await super().request(method, url, **kwargs)

        raise_for_status(response, resource_name)

        self._record_api_usage(response)
        return response

    async def execute(
        self, method: str, action: str, payload: Any = None, **transport_params
    ) -> Any:
        method = method.upper()
        url = self.build_url(action)
        kwargs = self._request_kwargs(payload, transport_params)
        self.session_state.request_count += 1
        last_error: Exception | None = None
        for attempt in range(self.MAX_RETRIES + 1):
            try:
                response = await self.request(
                    method, url, resource_name=action, **kwargs
                )
                return self._decode(method, response)
            except TRANSIENT_ERRORS as e:
                self._record_failed_attempt(method, action, attempt, e)
                last_error = e
        LOGGER.error("%s %s failed after %d attempts", method, action, attempt + 1)
        raise RequestFailed(method, action) from last_error

    async def fetch(self, action: str | Sequence[Any], **transport_params) -> Any:
        if isinstance(action, (list, tuple)):
            return await self.batch(action, **transport_params)
        if self.exceeds_url_limit(action):
            aggregate = await self.batch(
                self._oversized_get_batch(action), **transport_params
            )
            return self._single_batch_result(action, aggregate)
        return await self.execute("GET", action, **transport_params)

    async def batch(
        self,
        requests: Sequence[BatchSubRequest | Mapping[str, str] | str],
        **transport_params,
    ) -> BatchResultJSON:
        sub_requests = self._sub_requests(requests)
        aggregate: BatchResultJSON = {"hasErrors": False, "results": []}
        for chunk in chunked(sub_requests, self.BATCH_CHUNK_SIZE):
            try:
                response = await self.execute(
                    "POST",
                    "composite/batch/",
                    {"batchRequests": [request.to_dict() for request in chunk]},
                    **transport_params,
                )
                self._merge_batch_chunk(aggregate, response)
            except Exception as e:
                LOGGER.exception("Batch of %d sub-requests failed", len(sub_requests))
                raise BatchFailed(len(sub_requests)) from e
        self.session_state.request_count += 1
        return aggregate

    async def _walk_pages(
        self, action: str, page_key: str, transport_params: dict
    ) -> list[SObjectDict]:
        page: QueryResultJSON | SearchResultJSON
        page = await self.fetch(action, **transport_params)
        records = list(page[page_key])
        while next_records_url := page.get("nextRecordsUrl"):
            page = await self.fetch(self.cursor_action(next_records_url))
            records.extend(page[page_key])
        return records

    async def query(
        self, soql: str | None = None, **transport_params
    ) -> list[SObjectDict]:
        if soql is None:
            soql = self.session_state.soql
        self.session_state.soql = soql
        try:
            if not soql:
                raise ValueError("No SOQL query to run")
            records = await self._walk_pages(
                self._query_action("query", soql), "records", transport_params
            )
        except Exception as e:
            LOGGER.exception("Query failed: %s", soql)
            self.session_state.records = False
            raise QueryFailed(soql) from e
        self.session_state.records = records
        return records

    async def search(
        self, sosl: str | None = None, **transport_params
    ) -> list[SObjectDict]:
        if sosl is None:
            sosl = self.session_state.sosl
        self.session_state.sosl = sosl
        try:
            if not sosl:
                raise ValueError("No SOSL search to run")
            records = await self._walk_pages(
                self._query_action("search", sosl), "searchRecords", transport_params
            )
        except Exception as e:
            LOGGER.exception("Search failed: %s", sosl)
            self.session_state.search_records = False
            raise SearchFailed(sosl) from e
        self.session_state.search_records = records
        return records

    async def insert(self, records) -> list[TreeSaveResult]:
        prepared = self._prepare_records(records)
        sobject = prepared[0].type
        results: list[TreeSaveResult] = []
        try:
            for chunk in chunked(prepared, self.RECORD_CHUNK_SIZE):
                response = await self.execute(
                    "POST",
                    f"composite/tree/{sobject}/",
                    {"records": [record.to_dict() for record in chunk]},
                )
                results.extend(response["results"])
        except Exception as e:
            LOGGER.exception("Insert of %d %s records failed", len(prepared), sobject)
            self.session_state.insert_results = False
            raise InsertFailed(sobject) from e
        LOGGER.info("Inserted %d %s records", len(results), sobject)
        self.session_state.insert_results = results
        return results

    async def update(self, records) -> list[SObjectSaveResult]:
        prepared = self._prepare_records(records, require_id=True)
        sobject = prepared[0].type
        results: list[SObjectSaveResult] = []
        try:
            for chunk in chunked(prepared, self.RECORD_CHUNK_SIZE):
                response = await self.execute(
                    "POST",
                    "composite/sobjects?_HttpMethod=PATCH",
                    {"records": [record.to_dict() for record in chunk]},
                )
                results.extend(response)
        except Exception as e:
            LOGGER.exception("Update of %d %s records failed", len(prepared), sobject)
            self.session_state.update_results = False
            raise UpdateFailed(sobject) from e
        LOGGER.info("Updated %d %s records", len(results), sobject)
        self.session_state.update_results = results
        return results
