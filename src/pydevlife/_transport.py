"""HTTP webhook transport for outbound alerts."""

from __future__ import annotations

import logging
from collections.abc import Mapping

import aiohttp

from pydevlife._constants import USER_AGENT
from pydevlife.exceptions import DispatchError
from pydevlife.models.alert import AlertMessage

_logger = logging.getLogger(__name__)


class WebhookChannel:
    """Notification channel that POSTs each alert as JSON to a fixed URL.

    Any non-2xx response, connection error or timeout raises
    :class:`~pydevlife.exceptions.DispatchError`. Without an explicit
    ``http_session`` the channel opens its own on first use; call
    :meth:`close` to release it.
    """

    def __init__(
        self,
        url: str,
        http_session: aiohttp.ClientSession | None = None,
        *,
        timeout: float = 10.0,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self._url = url
        self._http = http_session
        self._owns_session = http_session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._headers: dict[str, str] = {
            "content-type": "application/json; charset=UTF-8",
            "user-agent": USER_AGENT,
        }
        if headers:
            self._headers.update(headers)

    @property
    def url(self) -> str:
        return self._url

    async def close(self) -> None:
        """Close the HTTP session if this channel created it."""
        if self._owns_session and self._http is not None:
            await self._http.close()
            self._http = None

    def _session(self) -> aiohttp.ClientSession:
        if self._http is None:
            self._http = aiohttp.ClientSession()
        return self._http

    async def publish(self, message: AlertMessage) -> None:
        body = message.to_json()
        _logger.debug("POST %s device=%s", self._url, message.device_id)

        try:
            async with self._session().post(self._url, data=body, headers=self._headers, timeout=self._timeout) as resp:
                if not 200 <= resp.status < 300:
                    text = await resp.text()
                    raise DispatchError(
                        f"HTTP {resp.status} from webhook: {text[:200]}",
                        status_code=resp.status,
                        channel="webhook",
                    )
        except DispatchError:
            raise
        except TimeoutError as exc:
            raise DispatchError("Webhook request timed out", channel="webhook") from exc
        except aiohttp.ClientError as exc:
            raise DispatchError(f"Webhook request failed: {exc}", channel="webhook") from exc
