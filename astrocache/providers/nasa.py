"""Search transport backed by the NASA Image and Video Library API."""

from __future__ import annotations

import asyncio
import http.client
import json
import logging
from collections.abc import Mapping
from typing import Any
from urllib import error as urlerror
from urllib import parse as urlparse
from urllib import request as urlrequest

from dotenv import load_dotenv

from ..config import DEFAULT_TIMEOUT, resolve_api_url
from ..errors import TransportError
from ..text import Messages

logger = logging.getLogger(__name__)


class NasaImagesTransport:
    """Transport that issues ``GET {api_url}?q=<term>`` on a worker thread."""

    def __init__(
        self,
        *,
        api_url: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        load_dotenv()
        self.api_url = resolve_api_url(api_url)
        self.timeout = float(timeout) if timeout and timeout > 0 else DEFAULT_TIMEOUT

    def build_url(self, term: str) -> str:
        return build_search_url(self.api_url, term)

    async def search(self, term: str) -> list[Mapping[str, Any]]:
        return await asyncio.to_thread(self.fetch, term)

    def fetch(self, term: str) -> list[Mapping[str, Any]]:
        url = self.build_url(term)
        logger.debug("GET %s", url)
        request = urlrequest.Request(url, method="GET")
        request.add_header("Accept", "application/json")
        try:
            with urlrequest.urlopen(request, timeout=self.timeout) as response:
                status = getattr(response, "status", 200)
                body = response.read()
        except urlerror.HTTPError as exc:
            raise TransportError(Messages.ERROR_HTTP_STATUS.format(status=exc.code)) from exc
        except urlerror.URLError as exc:
            raise TransportError(Messages.ERROR_NETWORK.format(reason=exc.reason)) from exc
        except (OSError, http.client.HTTPException) as exc:
            raise TransportError(Messages.ERROR_NETWORK.format(reason=str(exc) or type(exc).__name__)) from exc
        if status != 200:
            raise TransportError(Messages.ERROR_HTTP_STATUS.format(status=status))
        return decode_search_response(body)


def build_search_url(api_url: str, term: str) -> str:
    separator = "&" if urlparse.urlsplit(api_url).query else "?"
    return f"{api_url}{separator}{urlparse.urlencode({'q': term})}"


def decode_search_response(payload: bytes | str | Mapping[str, Any]) -> list[Mapping[str, Any]]:
    """Return ``collection.items`` from a search response body."""

    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")
    if isinstance(payload, str):
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise TransportError(Messages.ERROR_DECODING.format(reason="invalid JSON")) from exc
    else:
        data = payload
    if not isinstance(data, Mapping):
        raise TransportError(Messages.ERROR_DECODING.format(reason="expected a JSON object"))
    collection = data.get("collection")
    items = collection.get("items") if isinstance(collection, Mapping) else None
    if not isinstance(items, list):
        raise TransportError(
            Messages.ERROR_DECODING.format(reason="missing collection.items")
        )
    return items
