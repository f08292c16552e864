"""
Exceptions raised by a Salesforce session.

Two layers live here: the HTTP-status layer (`SalesforceError` and the
status-mapped subclasses produced by `raise_for_status`), and the
operation layer (`SessionError` subclasses) surfaced by the session
methods once retries or page/chunk processing have given up.
"""

from httpx import Response


class SalesforceError(Exception):
    """Base error for non-successful responses from the Salesforce API."""

    message = "Error Code {status}. Response content: {content}"

    def __init__(
        self,
        url_path: str,
        status_code: int,
        resource_name: str,
        content: str,
        method: str = "",
    ):
        self.url_path = url_path
        self.status_code = status_code
        self.resource_name = resource_name
        self.content = content
        self.method = method
        super().__init__(str(self))

    def __str__(self):
        return self.message.format(
            url=self.url_path,
            status=self.status_code,
            name=self.resource_name,
            content=self.content,
            method=self.method,
        )

    def __repr__(self):
        return f"{type(self).__name__}({str(self)!r})"


class SalesforceMoreThanOneRecord(SalesforceError):
    message = "More than one record for {url}. Response content: {content}"


class SalesforceRecordNotModifiedSince(SalesforceError):
    message = "Data has not been modified since {since}. Response content: {content}"

    def __init__(self, *args, if_modified_since: str | None = None, **kwargs):
        self.if_modified_since = if_modified_since
        super().__init__(*args, **kwargs)

    def __str__(self):
        return self.message.format(since=self.if_modified_since, content=self.content)


class SalesforceMalformedRequest(SalesforceError):
    message = "Malformed request {url}. Response content: {content}"


class SalesforceExpiredSession(SalesforceError):
    message = "Expired session for {url}. Response content: {content}"


class SalesforceRefusedRequest(SalesforceError):
    message = "Request refused for {url}. Response content: {content}"


class SalesforceResourceNotFound(SalesforceError):
    message = "Resource {name} Not Found ({status}) at {url}. Response content: {content}"


class SalesforceMethodNotAllowedForResource(SalesforceError):
    message = "HTTP method not allowed for {url}. Response content: {content}"


class SalesforceApiVersionIncompatible(SalesforceError):
    message = "API version incompatible with {url}. Response content: {content}"


class SalesforceResourceRemoved(SalesforceError):
    message = "Resource {name} at {url} has been removed. Response content: {content}"


class SalesforceInvalidHeaderPreconditions(SalesforceError):
    message = "Header preconditions not met for {url}. Response content: {content}"


class SalesforceUriLimitExceeded(SalesforceError):
    message = "URI exceeds length limit ({status}): {url}. Response content: {content}"


class SalesforceUnsupportedFormat(SalesforceError):
    message = "Unsupported request format for {url}. Response content: {content}"


class SalesforceEdgeRoutingUnavailable(SalesforceError):
    message = "Edge routing unavailable for {url}. Response content: {content}"


class SalesforceMissingConditionalHeader(SalesforceError):
    message = "Missing conditional header for {url}. Response content: {content}"


class SalesforceHeaderLimitExceeded(SalesforceError):
    message = "Request headers too large for {url}. Response content: {content}"


class SalesforceServerError(SalesforceError):
    message = "Salesforce server error ({status}) at {url}. Response content: {content}"


class SalesforceEdgeCommFailure(SalesforceError):
    message = "Edge communication failure for {url}. Response content: {content}"


class SalesforceServerUnavailable(SalesforceError):
    message = "Salesforce server unavailable ({status}). Response content: {content}"


class SalesforceGeneralError(SalesforceError):
    message = "Error Code {status} for {method} {url}. Response content: {content}"

    def __str__(self):
        url = self.url_path
        if len(url) > 255:
            url = url[:252] + "..."
        return self.message.format(
            status=self.status_code,
            method=self.method.upper(),
            url=url,
            content=self.content,
        )


_STATUS_ERRORS: dict[int, type[SalesforceError]] = {
    300: SalesforceMoreThanOneRecord,
    304: SalesforceRecordNotModifiedSince,
    400: SalesforceMalformedRequest,
    401: SalesforceExpiredSession,
    403: SalesforceRefusedRequest,
    404: SalesforceResourceNotFound,
    405: SalesforceMethodNotAllowedForResource,
    409: SalesforceApiVersionIncompatible,
    410: SalesforceResourceRemoved,
    412: SalesforceInvalidHeaderPreconditions,
    414: SalesforceUriLimitExceeded,
    415: SalesforceUnsupportedFormat,
    420: SalesforceEdgeRoutingUnavailable,
    428: SalesforceMissingConditionalHeader,
    431: SalesforceHeaderLimitExceeded,
    500: SalesforceServerError,
    502: SalesforceEdgeCommFailure,
    503: SalesforceServerUnavailable,
}


def raise_for_status(response: Response, resource_name: str = "") -> None:
    """Raise the `SalesforceError` subclass matching a non-2xx response."""
    if response.is_success:
        return
    status = response.status_code
    error_cls = _STATUS_ERRORS.get(status, SalesforceGeneralError)
    args = (response.url.path, status, resource_name, response.text)
    kwargs = {"method": response.request.method}
    if error_cls is SalesforceRecordNotModifiedSince:
        kwargs["if_modified_since"] = response.headers.get("If-Modified-Since")
    raise error_cls(*args, **kwargs)


class SessionError(Exception):
    """Base error for failed session operations."""


class RequestFailed(SessionError):
    """A single logical request failed on every attempt."""

    def __init__(self, method: str, action: str):
        self.method = method.upper()
        self.action = action
        super().__init__(f"Salesforce {self.method} request failed: {action}")


class QueryFailed(SessionError):
    def __init__(self, soql: str | None):
        self.soql = soql
        super().__init__(f"Query failed: {soql}")


class SearchFailed(SessionError):
    def __init__(self, sosl: str | None):
        self.sosl = sosl
        super().__init__(f"Search failed: {sosl}")


class BatchFailed(SessionError):
    def __init__(self, size: int, reason: str = ""):
        self.size = size
        message = f"Salesforce batch request of {size} sub-requests failed"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class InsertFailed(SessionError):
    def __init__(self, sobject: str):
        self.sobject = sobject
        super().__init__(f"Salesforce {sobject} insertion failed")


class UpdateFailed(SessionError):
    def __init__(self, sobject: str):
        self.sobject = sobject
        super().__init__(f"Salesforce {sobject} update failed")


class InvalidRecords(SessionError, ValueError):
    """Submitted records failed validation before any request was sent."""
