import asyncio
import ipaddress
import time
from collections.abc import Awaitable, Callable

import cachetools

from dayz_server_lookup.servers import QUERY_LIMIT, ServerInfo

REFRESH_INTERVAL = 10

ServerKey = tuple[str, int]
Fetcher = Callable[[], Awaitable[list[ServerInfo] | None]]


class ServerLookupError(Exception):
    pass


class InvalidInput(ServerLookupError, ValueError):
    pass


class UpstreamUnavailable(ServerLookupError):
    pass


class NotFound(ServerLookupError, LookupError):
    pass


def parse_address(address: str) -> str:
    """
    Accepts only strict dotted IPv4, no leading zeros.
    """
    try:
        return str(ipaddress.IPv4Address(address))
    except ValueError:
        raise InvalidInput(f"invalid address {address!r}") from None


def parse_port(port: str | int) -> int:
    if isinstance(port, str):
        if not (port.isascii() and port.isdecimal()):
            raise InvalidInput(f"invalid port {port!r}")
        port = int(port)
    if isinstance(port, bool) or not isinstance(port, int) or not 1 <= port <= 65535:
        raise InvalidInput(f"invalid port {port!r}")
    return port


class RefreshPolicy:
    """
    Refresh once the last attempt is at least `interval` seconds old.
    Failed attempts count as attempts.
    """

    def __init__(
        self,
        interval: float = REFRESH_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.interval = interval
        self.clock = clock
        self.last_attempt: float | None = None

    def due(self) -> bool:
        if self.last_attempt is None:
            return True
        return self.clock() - self.last_attempt >= self.interval

    def mark(self):
        self.last_attempt = self.clock()


class ServerDirectory:
    """
    Owns the current server list and the memo of resolved lookups.

    The list is only ever replaced whole, and the memo is cleared in the same
    step, so lookups never mix entries from two fetches. Refreshes are
    serialized by a lock: callers that queued behind a refresh reuse its
    result instead of fetching again, however long it took.
    """

    def __init__(self, fetch: Fetcher, policy: RefreshPolicy | None = None):
        self.fetch = fetch
        self.policy = policy or RefreshPolicy()
        self.servers: list[ServerInfo] | None = None
        self.memo: cachetools.Cache = cachetools.Cache(maxsize=int(QUERY_LIMIT))
        self.refresh_lock = asyncio.Lock()
        self.generation = 0

    async def refresh(self) -> bool:
        """
        Fetches the server list once. On failure the previous list and memo are kept.
        :return: Whether the fetch succeeded
        """
        async with self.refresh_lock:
            return await self._refresh()

    async def _refresh(self) -> bool:
        self.policy.mark()
        try:
            servers = await self.fetch()
        finally:
            self.generation += 1
        if servers is None:
            print("Server list refresh failed")
            return False
        # no await between these two
        self.servers = servers
        self.memo.clear()
        print("Servers:", len(servers))
        return True

    async def refresh_if_due(self):
        # a refresh in flight is waited on even when the policy is satisfied
        if not self.policy.due() and not self.refresh_lock.locked():
            return
        generation = self.generation
        async with self.refresh_lock:
            # someone else refreshed while we waited, use their result
            if self.generation != generation:
                return
            if self.policy.due():
                await self._refresh()

    async def resolve(self, address: str, port: str | int) -> ServerInfo:
        address = parse_address(address)
        port = parse_port(port)

        await self.refresh_if_due()

        servers = self.servers
        if servers is None:
            raise UpstreamUnavailable("no server list available")

        key: ServerKey = (address, port)
        cached = self.memo.get(key)
        if cached is not None:
            return cached

        for server in servers:
            if server["address"] == address and server["port"] == port:
                self.memo[key] = server
                return server
        raise NotFound(f"{address}:{port}")
