import json
from typing import Any, Dict, Mapping, NamedTuple, Optional

import httpx
from loguru import logger

from tools.errors import CallbackTransportError
from tools.headers import sanitize_header
from tools.settings import Settings

DEFAULT_PORTS = {"https": 443, "http": 80}


class CallbackTarget(NamedTuple):
    scheme: str
    host: str
    port: int
    path: str

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}{self.path}"


def resolve_target(callback_url: str) -> CallbackTarget:
    """
    Split a callback URL into scheme, host, port and path (with query).

    Raises:
        CallbackTransportError: if the URL is not absolute
    """
    try:
        url = httpx.URL(callback_url)
    except (httpx.InvalidURL, TypeError) as e:
        raise CallbackTransportError(f"Invalid callback URL {callback_url!r}: {e}") from e

    if url.scheme not in DEFAULT_PORTS or not url.host:
        raise CallbackTransportError(f"Invalid callback URL {callback_url!r}")

    host = f"[{url.host}]" if ":" in url.host else url.host
    port = url.port or DEFAULT_PORTS[url.scheme]
    path = url.raw_path.decode("ascii") or "/"
    return CallbackTarget(url.scheme, host, port, path)


class CallbackDispatcher:
    """Posts computed results back to the caller's callback URL, once, best-effort."""

    def __init__(self, settings: Settings, transport: Optional[httpx.BaseTransport] = None):
        self.timeout = settings.callback_timeout
        self.transport = transport

    def build_headers(self, inbound_headers: Mapping[str, str], payload: Dict[str, Any]) -> Dict[str, str]:
        """Outbound auth headers; the payload token wins over the inbound header."""
        return {
            "Content-Type": "application/json",
            "x-callback-token": sanitize_header(payload.get("token") or inbound_headers.get("x-callback-token")),
            "x-api-key": sanitize_header(inbound_headers.get("x-api-key")),
        }

    def send(self, callback_url: str, inbound_headers: Mapping[str, str], payload: Dict[str, Any]) -> Optional[int]:
        """
        Deliver the callback payload.

        Args:
            callback_url: Absolute URL taken from the action request
            inbound_headers: Headers of the original request (lower-case keys)
            payload: Serialized CallbackPayload

        Returns:
            The response status code, or None if the request never completed
        """
        try:
            target = resolve_target(callback_url)
            logger.info(f"Dispatching callback to {target.host}:{target.port}{target.path} "
                        f"({len(payload.get('objectData', []))} records)")

            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(
                    target.url,
                    content=json.dumps(payload, allow_nan=False),
                    headers=self.build_headers(inbound_headers, payload),
                )

            logger.info(f"Callback sent. Status: {response.status_code}")
            return response.status_code

        except CallbackTransportError as e:
            logger.error(f"Callback error: {e}")
            return None
        except httpx.HTTPError as e:
            logger.error(f"Callback error: {e!r}")
            return None
        except ValueError as e:
            logger.error(f"Callback error: payload is not valid JSON: {e}")
            return None
