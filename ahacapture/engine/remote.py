"""Remote document store adapter (Firestore REST v1).

The adapter is stateless apart from the HTTP client and auth session.
It never retries; timeouts, network failures and auth failures surface
as RemoteError subclasses and the caller decides what to do.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import httpx
from loguru import logger

from .auth import CredentialsPrompt, FirebaseAuth
from .config import RemoteConfig
from .errors import (
    AuthenticationError,
    RemoteError,
    RemoteTimeoutError,
    RemoteUnavailableError,
)
from .models import Entry, EntryStatus


FIRESTORE_URL = "https://firestore.googleapis.com/v1"


class RemoteAdapter(ABC):
    """Operations the engine needs from a remote store."""

    @abstractmethod
    async def create(self, payload: Dict[str, Any]) -> str:
        """Create a document and return its remote-assigned id."""

    @abstractmethod
    async def fetch_open(self) -> List[Entry]:
        """Entries that have not been purged remotely."""

    @abstractmethod
    async def set_status(
        self,
        entry_id: str,
        status: EntryStatus,
        deleted_at: Optional[int] = None
    ) -> None:
        ...

    @abstractmethod
    async def update(self, entry_id: str, fields: Dict[str, Any]) -> None:
        """Update the given fields; a None value removes the field."""

    @abstractmethod
    async def delete(self, entry_id: str) -> None:
        ...

    @abstractmethod
    async def is_online(self) -> bool:
        ...

    @abstractmethod
    async def ensure_auth(self, interactive: Optional[CredentialsPrompt] = None) -> None:
        ...

    async def close(self) -> None:
        pass


# Value codec

def encode_value(value: Any) -> Dict[str, Any]:
    """Encode a Python value as a Firestore typed value."""
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, datetime):
        return {"timestampValue": value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")}
    if isinstance(value, dict):
        return {"mapValue": {"fields": encode_fields(value)}}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(v) for v in value]}}
    raise TypeError(f"Cannot encode {type(value).__name__} for the remote store")


def encode_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: encode_value(value) for key, value in data.items()}


def decode_value(value: Dict[str, Any]) -> Any:
    """Decode a Firestore typed value. Timestamps become epoch milliseconds."""
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "stringValue" in value:
        return value["stringValue"]
    if "timestampValue" in value:
        return parse_timestamp(value["timestampValue"])
    if "mapValue" in value:
        return decode_fields(value["mapValue"].get("fields", {}))
    if "arrayValue" in value:
        return [decode_value(v) for v in value["arrayValue"].get("values", [])]
    if "referenceValue" in value:
        return value["referenceValue"]
    raise ValueError(f"Unsupported value type: {list(value)}")


def decode_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {key: decode_value(value) for key, value in fields.items()}


def parse_timestamp(text: str) -> int:
    """RFC 3339 timestamp (up to nanosecond precision) to epoch milliseconds."""
    text = text.rstrip("Z")
    if "." in text:
        head, frac = text.split(".", 1)
        text = f"{head}.{frac[:6].ljust(6, '0')}"
    dt = datetime.fromisoformat(text).replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def document_id(name: str) -> str:
    return name.rsplit("/", 1)[-1]


def document_to_entry(document: Dict[str, Any]) -> Entry:
    """Convert a Firestore document into an Entry.

    The timestamp comes from the legacy server-set ``createdAt`` field when
    present, otherwise from the document's ``createTime``.
    """
    data = decode_fields(document.get("fields", {}))
    created = data.pop("createdAt", None)
    if created is None and document.get("createTime"):
        created = parse_timestamp(document["createTime"])
    data["id"] = document_id(document["name"])
    if created is not None:
        data["timestamp"] = created
    return Entry.from_dict(data)


class FirestoreAdapter(RemoteAdapter):
    """Remote store backed by a Firestore collection."""

    def __init__(
        self,
        config: RemoteConfig,
        auth: FirebaseAuth,
        client: httpx.AsyncClient,
        fetch_statuses: Iterable[str] = ("open", "active", "done")
    ):
        if not config.is_configured:
            raise ValueError("Remote config requires api_key and project_id")
        self.config = config
        self.auth = auth
        self.client = client
        self.fetch_statuses = list(fetch_statuses)
        self.documents_url = (
            f"{FIRESTORE_URL}/projects/{config.project_id}/databases/(default)/documents"
        )
        self.collection_url = f"{self.documents_url}/{config.collection}"

    async def ensure_auth(self, interactive: Optional[CredentialsPrompt] = None) -> None:
        await self.auth.ensure_session(interactive)

    async def is_online(self) -> bool:
        try:
            await self.client.head(FIRESTORE_URL, timeout=2.0)
        except httpx.TransportError as e:
            logger.debug(f"Remote store unreachable: {e}")
            return False
        return True

    async def create(self, payload: Dict[str, Any]) -> str:
        response = await self._request(
            "POST", self.collection_url, json={"fields": encode_fields(payload)}
        )
        entry_id = document_id(response.json()["name"])
        logger.debug(f"Created remote entry {entry_id}")
        return entry_id

    async def fetch_open(self) -> List[Entry]:
        query = {
            "structuredQuery": {
                "from": [{"collectionId": self.config.collection}],
                "where": {
                    "fieldFilter": {
                        "field": {"fieldPath": "status"},
                        "op": "IN",
                        "value": encode_value(self.fetch_statuses)
                    }
                }
            }
        }
        response = await self._request("POST", f"{self.documents_url}:runQuery", json=query)

        entries = []
        for item in response.json():
            document = item.get("document")
            if not document:
                continue
            try:
                entries.append(document_to_entry(document))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping malformed remote document {document.get('name')}: {e}")
        logger.debug(f"Fetched {len(entries)} open entries")
        return entries

    async def set_status(
        self,
        entry_id: str,
        status: EntryStatus,
        deleted_at: Optional[int] = None
    ) -> None:
        await self.update(entry_id, {"status": status.value, "deletedAt": deleted_at})

    async def update(self, entry_id: str, fields: Dict[str, Any]) -> None:
        # Masked fields missing from the body are deleted remotely
        params = [("updateMask.fieldPaths", key) for key in fields]
        params.append(("currentDocument.exists", "true"))
        body = {key: value for key, value in fields.items() if value is not None}
        await self._request(
            "PATCH",
            f"{self.collection_url}/{entry_id}",
            params=params,
            json={"fields": encode_fields(body)}
        )
        logger.debug(f"Updated remote entry {entry_id}: {sorted(fields)}")

    async def delete(self, entry_id: str) -> None:
        try:
            await self._request("DELETE", f"{self.collection_url}/{entry_id}")
        except RemoteError as e:
            if e.status_code == 404:
                logger.debug(f"Remote entry {entry_id} already gone")
                return
            raise
        logger.debug(f"Deleted remote entry {entry_id}")

    async def close(self) -> None:
        await self.client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        token = await self.auth.token()
        if not token:
            raise AuthenticationError("User not signed in")

        try:
            response = await self.client.request(
                method,
                url,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.config.timeout,
                **kwargs
            )
        except httpx.TimeoutException as e:
            raise RemoteTimeoutError(f"{method} {url} timed out") from e
        except httpx.TransportError as e:
            raise RemoteUnavailableError(f"{method} {url} failed: {e}") from e

        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"Remote store refused credentials ({response.status_code})",
                response.status_code
            )
        if response.status_code >= 400:
            raise RemoteError(
                f"{method} {url} returned {response.status_code}: {response.text[:200]}",
                response.status_code
            )
        return response
