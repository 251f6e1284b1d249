import asyncio
import json
import logging

import aiohttp

from .errors import FetchDecodeError, FetchNetworkError
from .regions import Region

log = logging.getLogger(__name__)

DEFAULT_SERVERS_LIST_URL = "https://serverlist.piaservers.net/vpninfo/servers/v6"
DEFAULT_FETCH_TIMEOUT = 60.0


class CatalogClient:
    def __init__(self, url: str = DEFAULT_SERVERS_LIST_URL, timeout: float = DEFAULT_FETCH_TIMEOUT):
        self.url = url
        self.timeout = timeout

    async def fetch(self) -> list[Region]:
        """
        Get the current list of regions.

        Returns:
            The regions in the order they appear in the list

        Raises:
            FetchNetworkError: If the request failed, timed out or got an error status
            FetchDecodeError: If the response is not a list of regions
        """
        log.debug("getting list of servers...", extra={"url": self.url})
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self.url) as response:
                    response.raise_for_status()
                    body = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FetchNetworkError(f"could not get list of servers from {self.url}: {e!r}") from e

        return decode_catalog(body)


def decode_catalog(body: bytes | str) -> list[Region]:
    """Decode the servers list response.

    The list is followed by a signature, so only the first JSON document of
    the body is read.
    """
    try:
        text = body.decode("utf-8") if isinstance(body, bytes) else body
        envelope, _ = json.JSONDecoder().raw_decode(text.lstrip())
    except (UnicodeDecodeError, json.JSONDecodeError, RecursionError) as e:
        raise FetchDecodeError(f"invalid servers list: {e}") from e

    if not isinstance(envelope, dict) or not isinstance(envelope.get("regions"), list):
        raise FetchDecodeError("servers list does not contain any regions field")

    try:
        return [Region.from_catalog(item) for item in envelope["regions"]]
    except (AttributeError, TypeError, ValueError, RecursionError) as e:
        raise FetchDecodeError(f"invalid region in servers list: {e}") from e
