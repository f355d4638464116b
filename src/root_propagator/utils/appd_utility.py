import json
import logging
import typing

import httpx

logger = logging.getLogger(__name__)


class AppdUtility:
    """Client for the ROFL appd key service.

    Talks to appd over its unix domain socket by default, or over HTTP when
    a URL is given.
    """
    ROFL_SOCKET_PATH = "/run/rofl-appd.sock"

    def __init__(self, url: str = '', timeout: float = 30.0):
        self.url = url
        self.timeout = timeout

    async def _appd_post(self, path: str, payload: typing.Any) -> typing.Any:
        transport = None
        if self.url and not self.url.startswith('http'):
            transport = httpx.AsyncHTTPTransport(uds=self.url)
            logger.debug(f"Using unix domain socket: {self.url}")
        elif not self.url:
            transport = httpx.AsyncHTTPTransport(uds=self.ROFL_SOCKET_PATH)
            logger.debug(f"Using unix domain socket: {self.ROFL_SOCKET_PATH}")

        async with httpx.AsyncClient(transport=transport) as client:
            url = self.url if self.url and self.url.startswith('http') else "http://localhost"
            logger.debug(f"Posting to {url + path}: {json.dumps(payload)}")
            response = await client.post(url + path, json=payload, timeout=self.timeout)
            response.raise_for_status()
            return response.json()

    async def fetch_key(self, key_id: str) -> str:
        """
        Fetch (or derive on first use) a secp256k1 key held by appd.

        Args:
            key_id: Stable identifier of the key

        Returns:
            Hex-encoded private key
        """
        payload = {
            "key_id": key_id,
            "kind": "secp256k1"
        }

        path = '/rofl/v1/keys/generate'

        response = await self._appd_post(path, payload)
        logger.info(f"Fetched signing key {key_id!r} from appd")
        return response["key"]
