"""Elasticsearch REST integration for the works index."""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable
from urllib.parse import quote

import requests

REQUEST_TIMEOUT_SECONDS = 30

LOGGER = logging.getLogger(__name__)

WORKS_MAPPING: dict[str, Any] = {
    "properties": {
        "id": {"type": "keyword"},
        "title": {"type": "text"},
        "author": {"type": "keyword"},
        "relationships": {"type": "keyword"},
        "characters": {"type": "keyword"},
        "freeforms": {"type": "keyword"},
        "date": {"type": "date"},
        "language": {"type": "keyword"},
        "words": {"type": "long"},
        "kudos": {"type": "long"},
        "hits": {"type": "long"},
    }
}


class ElasticsearchError(RuntimeError):
    """The cluster could not be reached or rejected a whole request."""


class ElasticsearchClient:
    """Single-node client sharing one HTTP session for every call."""

    def __init__(self, endpoint: str, session: requests.Session | None = None) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.session = session or requests.Session()

    def close(self) -> None:
        self.session.close()

    def ping(self) -> dict[str, Any]:
        """Return the cluster info document, raising if the cluster is unreachable."""
        return self._request("GET", "/").json()

    def ensure_index(self, index: str, mapping: dict[str, Any] = WORKS_MAPPING) -> bool:
        """Create `index` with `mapping` unless it exists. Returns True if created."""
        response = self._request("HEAD", f"/{quote(index)}", allowed_statuses=(404,))
        if response.status_code != 404:
            self._request("PUT", f"/{quote(index)}/_mapping", json_payload=mapping)
            return False

        self._request("PUT", f"/{quote(index)}", json_payload={"mappings": mapping})
        LOGGER.info("Created index=%s", index)
        return True

    def bulk_upsert(self, index: str, documents: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
        """Index (insert or replace) documents keyed by their `id` field.

        Returns the per-document errors reported by the cluster; an empty list
        means every document was stored.
        """
        lines: list[str] = []
        for document in documents:
            lines.append(json.dumps({"index": {"_index": index, "_id": str(document["id"])}}))
            lines.append(json.dumps(document, ensure_ascii=False))
        if not lines:
            return []

        body = "\n".join(lines) + "\n"
        response = self._request(
            "POST",
            "/_bulk",
            data=body.encode("utf-8"),
            headers={"Content-Type": "application/x-ndjson"},
        )
        result = response.json()
        if not result.get("errors"):
            return []

        errors: list[dict[str, Any]] = []
        for item in result.get("items", []):
            action = item.get("index", {})
            if "error" in action:
                errors.append({"id": action.get("_id"), "status": action.get("status"), "error": action["error"]})
        return errors

    def get_document(self, index: str, document_id: str) -> dict[str, Any] | None:
        """Return the stored source of one document, or None when it does not exist."""
        response = self._request(
            "GET",
            f"/{quote(index)}/_doc/{quote(str(document_id), safe='')}",
            allowed_statuses=(404,),
        )
        if response.status_code == 404:
            return None
        return response.json().get("_source")

    def refresh(self, index: str) -> None:
        self._request("POST", f"/{quote(index)}/_refresh")

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_payload: dict[str, Any] | None = None,
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
        allowed_statuses: tuple[int, ...] = (),
    ) -> requests.Response:
        url = f"{self.endpoint}{path}"
        try:
            response = self.session.request(
                method=method,
                url=url,
                json=json_payload,
                data=data,
                headers=headers,
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
        except requests.RequestException as exc:
            raise ElasticsearchError(f"Elasticsearch request {method} {url} failed: {exc}") from exc

        if response.status_code in allowed_statuses:
            return response
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise ElasticsearchError(
                f"Elasticsearch request {method} {url} failed: {exc} {_response_text(response)}"
            ) from exc
        return response


def _response_text(response: requests.Response) -> str:
    try:
        return json.dumps(response.json())
    except ValueError:
        return response.text
