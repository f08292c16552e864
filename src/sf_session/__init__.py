from .client import SalesforceSession, AsyncSalesforceSession, SessionState
from .auth import OAuthCredentials, parse_oauth_fragment
from ._models import Record, BatchSubRequest
from .exceptions import (
    SessionError,
    RequestFailed,
    QueryFailed,
    SearchFailed,
    InsertFailed,
    UpdateFailed,
    BatchFailed,
    InvalidRecords,
)

__all__ = [
    "SalesforceSession",
    "AsyncSalesforceSession",
    "SessionState",
    "OAuthCredentials",
    "parse_oauth_fragment",
    "Record",
    "BatchSubRequest",
    "SessionError",
    "RequestFailed",
    "QueryFailed",
    "SearchFailed",
    "InsertFailed",
    "UpdateFailed",
    "BatchFailed",
    "InvalidRecords",
]
