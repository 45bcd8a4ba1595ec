"""Public IP discovery over HTTP address-echo endpoints."""

import asyncio
import ipaddress
import logging
from typing import Optional, Union

import aiohttp

from ipwatcher import __version__
from ipwatcher.errors import AllSourcesFailedError, NoSourcesError, SourceFailure

logger = logging.getLogger(__name__)

Address = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def parse_address(text: str) -> Optional[Address]:
    """Parse an IPv4 or IPv6 address, ignoring surrounding whitespace.

    Returns:
        The address, or None if the text is not a valid address.
    """
    try:
        return ipaddress.ip_address(text.strip())
    except ValueError:
        return None


class AddressResolver:
    """Resolves the current public IP by asking sources in order.

    Each source is fetched once per call. The first source that answers
    with a valid address wins and later sources are not contacted.

    Example:
        async with AddressResolver() as resolver:
            ip = await resolver.resolve(["https://api.ipify.org"])
    """

    # Request timeout
    REQUEST_TIMEOUT = 10.0  # seconds

    USER_AGENT = f"ipwatcher/{__version__}"

    def __init__(
        self,
        request_timeout: float = REQUEST_TIMEOUT,
        http_session: Optional[aiohttp.ClientSession] = None,
    ):
        """Initialize resolver.

        Args:
            request_timeout: Total timeout for each source request.
            http_session: Optional aiohttp session (for testing).
        """
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)
        self._session = http_session
        self._owns_session = http_session is None

    async def __aenter__(self):
        """Enter async context, creating session if needed."""
        await self.open()
        return self

    async def __aexit__(self, *args):
        """Exit async context, closing owned session."""
        await self.close()

    async def open(self) -> None:
        """Create the HTTP session unless one was injected."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": self.USER_AGENT}
            )
            self._owns_session = True

    async def resolve(self, sources: list[str]) -> Address:
        """Return the address reported by the first working source.

        Args:
            sources: Source URLs in priority order.

        Raises:
            NoSourcesError: If sources is empty. No request is made.
            AllSourcesFailedError: If every source failed.
        """
        if not sources:
            raise NoSourcesError()

        failures: list[SourceFailure] = []
        for source in sources:
            address, reason = await self._query(source)
            if address is not None:
                logger.debug(f"{source} reported {address}")
                return address
            logger.debug(f"Skipping {source}: {reason}")
            failures.append(SourceFailure(source=source, reason=reason))

        raise AllSourcesFailedError(failures)

    async def _query(self, source: str) -> tuple[Optional[Address], str]:
        """Single fetch of one source.

        Returns:
            (address, "") on success, (None, reason) on failure.
        """
        if self._session is None:
            raise RuntimeError("Resolver not initialized - use async context manager")

        try:
            async with self._session.get(source, timeout=self._timeout) as resp:
                if not 200 <= resp.status < 300:
                    return None, f"HTTP {resp.status}"
                text = await resp.text()
        except asyncio.TimeoutError:
            return None, "timed out"
        except (aiohttp.ClientError, UnicodeDecodeError) as e:
            return None, f"{type(e).__name__}: {e}"

        address = parse_address(text)
        if address is None:
            return None, f"invalid address in response: {text.strip()[:64]!r}"
        return address, ""

    async def close(self) -> None:
        """Close the HTTP session if owned."""
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None
