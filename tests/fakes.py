import json
import re
from typing import Dict, Iterable, List, Optional

from simple_salesforce.exceptions import SalesforceResourceNotFound

from sf_connection import DescribeError


class FakeResponse:
    def __init__(self, status_code: int = 200, json_data=None, content: bytes = b"",
                 chunks: Optional[Iterable[bytes]] = None, headers: Optional[Dict[str, str]] = None):
        self.status_code = status_code
        self._json = json_data
        self.content = content if json_data is None else json.dumps(json_data).encode("utf-8")
        self._chunks = list(chunks) if chunks is not None else [self.content]
        self.headers = headers or {}
        self.closed = False

    @property
    def text(self) -> str:
        return self.content.decode("utf-8")

    def json(self):
        if self._json is None:
            raise ValueError("no json body")
        return self._json

    def iter_content(self, chunk_size=1):
        for chunk in self._chunks:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True
        return False


class FakeSession:
    """Replays queued responses and records every call."""

    def __init__(self, responses: List[FakeResponse]):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        return self.responses.pop(0)

    def post(self, url, **kwargs):
        return self.request("POST", url, **kwargs)

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)


class FakeBulkQuery:
    def __init__(self, chunks: List[bytes], error: Optional[Exception] = None):
        self.chunks = chunks
        self.error = error

    def stream(self):
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error


class FakeBulk:
    def __init__(self, results: Dict[str, FakeBulkQuery]):
        self.results = results
        self.queries: List[str] = []
        self.poll_timeout = None
        self.poll_interval = None

    def query(self, soql: str) -> FakeBulkQuery:
        self.queries.append(soql)
        object_name = re.search(r"\bFROM (\w+)", soql).group(1)
        return self.results[object_name]


class FakeConnection:
    """Stands in for sf_connection.Connection: describe payloads plus bulk results."""

    def __init__(self, describes: Dict[str, object], bulk_results: Dict[str, FakeBulkQuery]):
        self.describes = describes
        self.bulk = FakeBulk(bulk_results)

    def describe(self, object_name: str):
        payload = self.describes.get(object_name)
        if payload is None or isinstance(payload, Exception):
            raise payload or DescribeError(f"NOT_FOUND: {object_name}")
        return payload


def describe_payload(*fields):
    """Build a describe result from (name, help_text) pairs."""
    return {"fields": [{"name": name, "inlineHelpText": help_text} for name, help_text in fields]}


class FakeSObject:
    def __init__(self, payload):
        self.payload = payload

    def describe(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeSalesforce:
    """The slice of simple_salesforce.Salesforce that Connection touches."""

    def __init__(self, session=None, describes=None, instance="acme.my.salesforce.com", version="58.0"):
        self.session = session
        self.sf_instance = instance
        self.session_id = "TOKEN"
        self.sf_version = version
        self.base_url = f"https://{instance}/services/data/v{version}/"
        self._describes = describes or {}

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        payload = self._describes.get(name)
        if payload is None:
            payload = SalesforceResourceNotFound(
                f"{self.base_url}sobjects/{name}/describe", 404, name,
                [{"errorCode": "NOT_FOUND", "message": "The requested resource does not exist"}])
        return FakeSObject(payload)
