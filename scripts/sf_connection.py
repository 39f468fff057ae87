#!/usr/bin/env python3

import logging
import time
from typing import Any, Dict, Iterable, Iterator, List, NamedTuple, Optional
from urllib.parse import urlparse

import requests
from simple_salesforce import Salesforce, SalesforceAuthenticationFailed
from simple_salesforce.exceptions import SalesforceError

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "58.0"
DEFAULT_LOGIN_URL = "https://login.salesforce.com"
REQUEST_TIMEOUT = (15, 300)
STREAM_CHUNK_SIZE = 64 * 1024


class AuthenticationError(Exception):
    """Login to Salesforce failed; nothing else can run without a session."""


class DescribeError(Exception):
    """The describe call for an object failed."""


class QueryStreamError(Exception):
    """A bulk query job failed, timed out, or its result stream broke."""


class FieldDescriptor(NamedTuple):
    name: str
    inline_help_text: Optional[str] = None


def _error_message(response: requests.Response) -> str:
    """Pull a readable message out of a REST error body"""
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}: {response.text[:500]}"
    if isinstance(body, list) and body and isinstance(body[0], dict):
        body = body[0]
    if isinstance(body, dict):
        code = body.get("errorCode", response.status_code)
        return f"{code}: {body.get('message', response.text[:500])}"
    return f"HTTP {response.status_code}: {response.text[:500]}"


def _skip_first_line(chunks: Iterable[bytes]) -> Iterator[bytes]:
    """Drop everything up to and including the first newline."""
    skipping = True
    for chunk in chunks:
        if skipping:
            newline = chunk.find(b"\n")
            if newline == -1:
                continue
            chunk = chunk[newline + 1:]
            skipping = False
        if chunk:
            yield chunk


def login_domain(login_url: str) -> str:
    """Map a login URL to simple_salesforce's domain argument.

    https://login.salesforce.com -> "login", https://test.salesforce.com -> "test",
    https://acme.my.salesforce.com -> "acme.my"
    """
    if "://" not in login_url:
        login_url = f"https://{login_url}"
    host = (urlparse(login_url).hostname or "login.salesforce.com").lower()
    if host.endswith(".salesforce.com"):
        host = host[:-len(".salesforce.com")]
    return host


def login(username: str, password: str, login_url: str = DEFAULT_LOGIN_URL,
          api_version: str = DEFAULT_API_VERSION,
          session: Optional[requests.Session] = None) -> "Connection":
    """Log in with username and password (security token already appended).

    Args:
        username: Salesforce username
        password: Password followed by the security token
        login_url: e.g. https://login.salesforce.com or https://test.salesforce.com
        api_version: API version used for every later call
        session: Optional requests session to reuse

    Returns:
        An authenticated Connection
    """
    domain = login_domain(login_url)
    try:
        # The token is already part of the password, so an empty token keeps
        # simple_salesforce on the username/password/token flow
        sf = Salesforce(
            username=username,
            password=password,
            security_token="",
            domain=domain,
            version=api_version,
            session=session,
        )
    except SalesforceAuthenticationFailed as e:
        raise AuthenticationError(f"Login failed: {e}") from e
    except requests.RequestException as e:
        raise AuthenticationError(f"Login request to {login_url} failed: {e}") from e

    logger.info(f"Logged in to {sf.sf_instance} as {username} (domain={domain})")
    return Connection(sf)


class Connection:
    """Authenticated session against one Salesforce instance.

    Describe calls go through simple_salesforce; bulk jobs reuse its
    requests session and access token.
    """

    def __init__(self, sf: Salesforce):
        self.sf = sf
        self.bulk = BulkClient(self)

    @property
    def session(self) -> requests.Session:
        return self.sf.session

    @property
    def instance_url(self) -> str:
        return f"https://{self.sf.sf_instance}"

    @property
    def access_token(self) -> str:
        return self.sf.session_id

    @property
    def base_url(self) -> str:
        return self.sf.base_url.rstrip("/")

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json"
        }

    def describe(self, object_name: str) -> Dict[str, Any]:
        """Describe an sObject; the result carries a 'fields' list."""
        try:
            return getattr(self.sf, object_name).describe()
        except SalesforceError as e:
            raise DescribeError(f"Describe for {object_name} failed: {e}") from e
        except requests.RequestException as e:
            raise DescribeError(f"Describe request for {object_name} failed: {e}") from e
        except (AttributeError, ValueError) as e:
            raise DescribeError(f"Describe for {object_name} returned an unusable response: {e}") from e


class BulkClient:
    """Bulk API 2.0 query client; poll settings are in milliseconds."""

    def __init__(self, connection: Connection, poll_timeout: int = 600000, poll_interval: int = 5000):
        self.connection = connection
        self.poll_timeout = poll_timeout
        self.poll_interval = poll_interval

    def query(self, soql: str) -> "BulkQuery":
        return BulkQuery(self, soql)


class BulkQuery:
    """A single bulk query. Nothing is sent until stream() is iterated."""

    def __init__(self, client: BulkClient, soql: str):
        self.client = client
        self.soql = soql
        self.job_id: Optional[str] = None

    @property
    def _jobs_url(self) -> str:
        return f"{self.client.connection.base_url}/jobs/query"

    def _request(self, method: str, url: str, accept: Optional[str] = None, **kwargs) -> requests.Response:
        conn = self.client.connection
        headers = conn.headers
        if accept:
            headers["Accept"] = accept
        try:
            return conn.session.request(method, url, headers=headers, timeout=REQUEST_TIMEOUT, **kwargs)
        except requests.RequestException as e:
            raise QueryStreamError(f"Bulk request {method} {url} failed: {e}") from e

    def _create_job(self) -> str:
        payload = {
            "operation": "query",
            "query": self.soql,
            "contentType": "CSV",
            "columnDelimiter": "COMMA",
            "lineEnding": "LF"
        }
        response = self._request("POST", self._jobs_url, json=payload)
        if response.status_code not in (200, 201):
            raise QueryStreamError(f"Could not create bulk query job: {_error_message(response)}")
        job_id = response.json().get("id")
        if not job_id:
            raise QueryStreamError("Bulk query job response has no id")
        logger.info(f"Created bulk query job {job_id}")
        return job_id

    def _wait_for_completion(self, job_id: str) -> Dict[str, Any]:
        deadline = time.monotonic() + self.client.poll_timeout / 1000.0
        while True:
            response = self._request("GET", f"{self._jobs_url}/{job_id}")
            if response.status_code != 200:
                raise QueryStreamError(f"Could not poll bulk job {job_id}: {_error_message(response)}")

            info = response.json()
            state = info.get("state")
            if state == "JobComplete":
                logger.info(f"Bulk job {job_id} complete ({info.get('numberRecordsProcessed', 0)} records)")
                return info
            if state in ("Failed", "Aborted"):
                raise QueryStreamError(f"Bulk job {job_id} {state.lower()}: {info.get('errorMessage', 'no details')}")

            if time.monotonic() >= deadline:
                raise QueryStreamError(
                    f"Polling timed out after {self.client.poll_timeout} ms; bulk job {job_id} is still {state}")
            logger.debug(f"Bulk job {job_id} is {state}, polling again")
            time.sleep(self.client.poll_interval / 1000.0)

    def stream(self, chunk_size: int = STREAM_CHUNK_SIZE) -> Iterator[bytes]:
        """Yield the CSV result as raw bytes, page by page.

        Every results page repeats the header row; only the first one is kept.
        """
        self.job_id = self._create_job()
        self._wait_for_completion(self.job_id)

        results_url = f"{self._jobs_url}/{self.job_id}/results"
        locator = None
        page = 0
        while True:
            params = {"locator": locator} if locator else None
            # Results come back as CSV, not JSON
            response = self._request("GET", results_url, accept="text/csv", params=params, stream=True)
            with response:
                if response.status_code != 200:
                    raise QueryStreamError(
                        f"Could not fetch results for job {self.job_id}: {_error_message(response)}")
                chunks = response.iter_content(chunk_size=chunk_size)
                if page > 0:
                    chunks = _skip_first_line(chunks)
                try:
                    for chunk in chunks:
                        if chunk:
                            yield chunk
                except requests.RequestException as e:
                    raise QueryStreamError(f"Result stream for job {self.job_id} broke: {e}") from e
                locator = response.headers.get("Sforce-Locator")

            page += 1
            if not locator or locator == "null":
                break


def describe_fields(connection: Connection, object_name: str) -> List[FieldDescriptor]:
    """Get all fields for an object; an empty list if the describe fails"""
    try:
        metadata = connection.describe(object_name)
    except DescribeError as e:
        logger.error(f"Error fetching fields for {object_name}: {e}")
        return []

    return [
        FieldDescriptor(f["name"], f.get("inlineHelpText"))
        for f in metadata.get("fields") or []
    ]
