from collections.abc import Mapping
from typing import Any, NamedTuple, TypedDict
from typing_extensions import NotRequired

from .exceptions import InvalidRecords


class SObjectDictAttrs(TypedDict, total=False):
    type: str
    url: str
    referenceId: str


class SObjectDict(TypedDict, total=False):
    attributes: SObjectDictAttrs


class QueryResultJSON(TypedDict):
    totalSize: int
    done: bool
    records: list[SObjectDict]
    nextRecordsUrl: NotRequired[str]


class SearchResultJSON(TypedDict):
    searchRecords: list[SObjectDict]
    nextRecordsUrl: NotRequired[str]


class BatchSubResultJSON(TypedDict):
    statusCode: int
    result: Any


class BatchResultJSON(TypedDict):
    hasErrors: bool
    results: list[BatchSubResultJSON]


class SObjectSaveResult(TypedDict, total=False):
    id: str
    success: bool
    errors: list[dict[str, Any]]


class TreeSaveResult(TypedDict, total=False):
    referenceId: str
    id: str


class Record(NamedTuple):
    """
    A record submitted to Salesforce.

    `attributes` and `fields` hold exactly what the caller supplied, so
    `to_dict()` gives back the record unchanged.
    """

    type: str
    fields: dict[str, Any]
    attributes: dict[str, Any]

    @property
    def id(self) -> str | None:
        return self.fields.get("Id")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Record":
        if not isinstance(data, Mapping):
            raise InvalidRecords(f"Expected a record mapping, got {type(data).__name__}")
        attributes = data.get("attributes")
        if not isinstance(attributes, Mapping) or not attributes.get("type"):
            raise InvalidRecords("Record is missing attributes.type")
        fields = {key: value for key, value in data.items() if key != "attributes"}
        return cls(attributes["type"], fields, dict(attributes))

    @classmethod
    def coerce(cls, value: "Record | Mapping[str, Any]") -> "Record":
        if isinstance(value, Record):
            return value
        return cls.from_dict(value)

    def to_dict(self) -> dict[str, Any]:
        return {"attributes": self.attributes, **self.fields}


class BatchSubRequest(NamedTuple):
    method: str
    url: str

    @classmethod
    def coerce(cls, value: "BatchSubRequest | Mapping[str, str] | str", version: str):
        """
        Bare paths become GET sub-requests against the versioned data API.
        """
        if isinstance(value, BatchSubRequest):
            return value
        if isinstance(value, str):
            return cls("GET", f"v{version}/{value}")
        if isinstance(value, Mapping) and value.get("method") and value.get("url"):
            return cls(value["method"], value["url"])
        raise ValueError(f"Invalid batch sub-request: {value!r}")

    def to_dict(self) -> dict[str, str]:
        return {"method": self.method, "url": self.url}
