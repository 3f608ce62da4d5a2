import logging
import threading
from collections.abc import Iterable
from typing import Any

import requests
from pydantic import ValidationError

from ..config import Config
from ..errors import NotFound, RemoteUnavailable
from ..sync.models import RECORD_TYPES, RemoteRecord, ResourceKind

logger = logging.getLogger(__name__)


class IliosClient:
    """Read-only accessor for the Ilios REST API.

    Single records are read from ``GET /api/{version}/{kind}/{id}``;
    batches from ``GET /api/{version}/{kind}?filters[id][]=...``.  No
    response caching happens here.
    """

    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self.api_url = self._get_api_url()

    @property
    def session(self) -> requests.Session:
        """Current thread's session."""
        return self._get_session()

    def _get_api_url(self) -> str:
        return f"{self.config.host_url.rstrip('/')}/api/{self.config.api_version}"

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update(
            {
                "X-JWT-Authorization": f"Token {self.config.api_key}",
                "Accept": "application/json",
            }
        )
        session.verify = not self.config.insecure
        return session

    def _get(self, path: str, params: list[tuple[str, Any]] | None = None):
        """
        Issue a GET request and return the decoded JSON body.

        Raises:
            NotFound: On HTTP 404 (the caller supplies kind and id).
            RemoteUnavailable: On transport errors, rejected credentials,
                other HTTP errors or a non-JSON body.
        """
        url = f"{self.api_url}/{path}"
        logger.debug("GET %s params=%s", url, params)
        try:
            response = self._get_session().get(
                url,
                params=params,
                timeout=(10, self.config.timeout),
            )
        except requests.RequestException as exc:
            raise RemoteUnavailable(
                f"Ilios request to {url} failed: {exc}", cause=exc
            ) from exc

        status = response.status_code
        if status == 404:
            return None
        if status in (401, 403):
            raise RemoteUnavailable(
                f"Ilios rejected the API key (HTTP {status})",
                details={"status": status, "url": url},
            )
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise RemoteUnavailable(
                f"Ilios request to {url} failed with HTTP {status}",
                details={"status": status, "url": url},
                cause=exc,
            ) from exc

        try:
            return response.json()
        except ValueError as exc:
            raise RemoteUnavailable(
                f"Ilios returned a malformed response for {url}",
                details={"url": url},
                cause=exc,
            ) from exc

    def _parse(self, kind: ResourceKind, raw: dict) -> RemoteRecord:
        try:
            return RECORD_TYPES[kind].model_validate(raw)
        except ValidationError as exc:
            raise RemoteUnavailable(
                f"Ilios returned an invalid {kind.value} record",
                details={"kind": kind.value},
                cause=exc,
            ) from exc

    def fetch(self, kind: ResourceKind, record_id: int) -> RemoteRecord:
        """
        Fetch one record by id.

        Raises:
            NotFound: If Ilios has no such record.
            RemoteUnavailable: If the request fails.
        """
        data = self._get(f"{kind.endpoint}/{record_id}")
        records = (data or {}).get(kind.value) or []
        if not records:
            raise NotFound(kind.value, record_id)
        return self._parse(kind, records[0])

    def fetch_batch(
        self, kind: ResourceKind, ids: Iterable[int]
    ) -> dict[int, RemoteRecord]:
        """
        Fetch several records of one kind.

        Ids are requested in ascending order, at most
        ``config.max_batch_size`` per request.  Ids unknown to Ilios are
        absent from the result.

        Returns:
            Mapping of record id to record.

        Raises:
            RemoteUnavailable: If any request fails.
        """
        wanted = sorted(set(ids))
        result: dict[int, RemoteRecord] = {}
        size = self.config.max_batch_size
        for start in range(0, len(wanted), size):
            chunk = wanted[start : start + size]
            params = [("filters[id][]", record_id) for record_id in chunk]
            data = self._get(kind.endpoint, params=params)
            for raw in (data or {}).get(kind.value) or []:
                record = self._parse(kind, raw)
                result[record.id] = record
        return result
