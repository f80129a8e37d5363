"""Shared httpx clients used by the provider adapters and the image client."""

from dataclasses import dataclass, field

import httpx

DEFAULT_USER_AGENT = "llmbridge/0.1"


@dataclass(frozen=True, slots=True)
class HttpxClientOptions:
    """Timeouts, pool limits and headers of one shared client.

    ``read_timeout`` bounds the gap between two chunks of a streamed body, so
    it must stay long enough for slow reasoning models.
    """

    timeout: float = 30.0
    connect_timeout: float = 10.0
    read_timeout: float = 300.0
    max_connections: int = 20
    max_keepalive: int = 10
    headers: dict[str, str] = field(default_factory=dict)

    def build(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(
                self.timeout,
                connect=self.connect_timeout,
                read=self.read_timeout,
            ),
            limits=httpx.Limits(
                max_connections=self.max_connections,
                max_keepalive_connections=self.max_keepalive,
            ),
            headers={"User-Agent": DEFAULT_USER_AGENT, **self.headers},
            follow_redirects=True,
        )


class SharedHttpClient:
    """A module-level ``httpx.AsyncClient`` created on first use.

    A closed client is replaced on the next ``get``, so ``aclose`` at
    shutdown does not break a later run in the same process.
    """

    def __init__(self, options: HttpxClientOptions | None = None) -> None:
        self.options = options or HttpxClientOptions()
        self._client: httpx.AsyncClient | None = None

    def get(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = self.options.build()
        return self._client

    async def aclose(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()
