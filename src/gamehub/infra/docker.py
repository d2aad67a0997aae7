"""Docker Engine API client.

Thin async wrappers over the Engine REST API used for game server
containers, over a Unix socket or TCP. Console attach goes through the
engine's WebSocket attach endpoint.
"""

import json
import logging
from collections.abc import AsyncIterator

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_pascal
from websockets.asyncio.client import ClientConnection, connect, unix_connect

from gamehub.config import DockerConfig, get_config

logger = logging.getLogger(__name__)


# =============================================================================
# Request bodies (serialized with the Engine's PascalCase keys)
# =============================================================================


class EngineModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_pascal, populate_by_name=True, frozen=True)

    def to_api(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class RestartPolicy(EngineModel):
    name: str = "unless-stopped"


class LogConfig(EngineModel):
    type: str = "json-file"
    options: dict[str, str] = Field(default_factory=dict, alias="Config")


class HostConfig(EngineModel):
    network_mode: str = "bridge"
    binds: list[str] = Field(default_factory=list)
    port_bindings: dict[str, list[dict[str, str]]] = Field(default_factory=dict)
    memory: int | None = None
    restart_policy: RestartPolicy = RestartPolicy()
    log_config: LogConfig = LogConfig()


class HealthCheckConfig(EngineModel):
    """Durations are nanoseconds."""

    test: list[str]
    interval: int
    timeout: int
    retries: int
    start_period: int


class ContainerConfig(EngineModel):
    """POST /containers/create body. `name` travels as a query parameter."""

    name: str = Field(exclude=True)
    image: str
    env: list[str] = Field(default_factory=list)
    exposed_ports: dict[str, dict] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)
    # Console attach needs a TTY with stdin held open
    tty: bool = True
    open_stdin: bool = True
    attach_stdin: bool = True
    attach_stdout: bool = True
    attach_stderr: bool = True
    healthcheck: HealthCheckConfig | None = None
    host_config: HostConfig = HostConfig()


# =============================================================================
# Connection
# =============================================================================


class DockerClient:
    """Lazily created httpx client bound to the engine socket.

    Args:
        config: Docker connection settings (defaults to global config).
        transport: httpx transport override, used by tests.
    """

    def __init__(
        self,
        config: DockerConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or get_config().docker
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def config(self) -> DockerConfig:
        return self._config

    @property
    def socket_path(self) -> str | None:
        host = self._config.host
        return host.removeprefix("unix://") if host.startswith("unix://") else None

    def _build(self) -> httpx.AsyncClient:
        timeout = self._config.api_timeout
        transport = self._transport
        base_url = "http://localhost"
        if transport is None:
            if self.socket_path is not None:
                transport = httpx.AsyncHTTPTransport(uds=self.socket_path)
            else:
                base_url = self._config.host.replace("tcp://", "http://", 1)
        return httpx.AsyncClient(transport=transport, base_url=base_url, timeout=timeout)

    async def get(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = self._build()
        return self._client

    async def connect_ws(self, path: str) -> ClientConnection:
        """Open an engine WebSocket (attach endpoints)."""
        open_timeout = self._config.api_timeout
        if self.socket_path is not None:
            return await unix_connect(
                self.socket_path,
                uri=f"ws://localhost{path}",
                open_timeout=open_timeout,
                max_size=None,
            )
        base = self._config.host.replace("tcp://", "ws://", 1).replace("http://", "ws://", 1)
        return await connect(f"{base}{path}", open_timeout=open_timeout, max_size=None)

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None


_docker_client: DockerClient | None = None


def get_docker_client() -> DockerClient:
    """Process-wide engine client."""
    global _docker_client
    if _docker_client is None:
        _docker_client = DockerClient()
    return _docker_client


async def close_docker() -> None:
    global _docker_client
    if _docker_client is not None:
        await _docker_client.close()
        _docker_client = None


# =============================================================================
# Containers
# =============================================================================


class ContainerAPI:
    """Container endpoints.

    Mutating calls return False instead of raising when the engine says
    the container is already where the caller wants it.
    """

    def __init__(self, client: DockerClient | None = None) -> None:
        self._docker = client or get_docker_client()

    async def _send(
        self,
        method: str,
        path: str,
        noop: tuple[int, ...] = (),
        **kwargs,
    ) -> httpx.Response | None:
        """Send a request; None when the status is one of `noop`."""
        client = await self._docker.get()
        resp = await client.request(method, path, **kwargs)
        if resp.status_code in noop:
            return None
        resp.raise_for_status()
        return resp

    async def ping(self) -> bool:
        client = await self._docker.get()
        resp = await client.get("/_ping")
        return resp.status_code == 200

    async def inspect(self, name: str) -> dict | None:
        resp = await self._send("GET", f"/containers/{name}/json", noop=(404,))
        return None if resp is None else resp.json()

    async def create(self, config: ContainerConfig) -> bool:
        resp = await self._send(
            "POST",
            "/containers/create",
            noop=(409,),
            params={"name": config.name},
            json=config.to_api(),
        )
        return resp is not None

    async def start(self, name: str) -> bool:
        return await self._send("POST", f"/containers/{name}/start", noop=(304,)) is not None

    async def stop(self, name: str, timeout: int = 10) -> bool:
        """SIGTERM, then the engine kills after `timeout` seconds."""
        resp = await self._send(
            "POST",
            f"/containers/{name}/stop",
            noop=(304, 404),
            params={"t": str(timeout)},
            # Engine holds the response for up to the grace period
            timeout=self._docker.config.api_timeout + timeout,
        )
        return resp is not None

    async def kill(self, name: str, signal: str = "SIGKILL") -> bool:
        resp = await self._send(
            "POST", f"/containers/{name}/kill", noop=(404, 409), params={"signal": signal}
        )
        return resp is not None

    async def remove(self, name: str) -> bool:
        """Force-remove the container. Bind-mounted data stays on the host."""
        resp = await self._send(
            "DELETE",
            f"/containers/{name}",
            noop=(404,),
            params={"force": "true", "v": "false"},
        )
        return resp is not None

    async def logs(self, name: str, tail: int = 100) -> bytes:
        """Raw log bytes, multiplexed unless the container has a TTY."""
        resp = await self._send(
            "GET",
            f"/containers/{name}/logs",
            params={"stdout": "true", "stderr": "true", "tail": str(tail)},
        )
        return resp.content if resp is not None else b""

    async def stats(self, name: str) -> AsyncIterator[dict]:
        """Stats documents, one per engine tick, until the stream ends."""
        client = await self._docker.get()
        timeout = httpx.Timeout(self._docker.config.api_timeout, read=None)
        async with client.stream(
            "GET", f"/containers/{name}/stats", params={"stream": "true"}, timeout=timeout
        ) as resp:
            resp.raise_for_status()
            async for line in resp.aiter_lines():
                if line.strip():
                    yield json.loads(line)

    async def attach(self, name: str) -> ClientConnection:
        return await self._docker.connect_ws(
            f"/containers/{name}/attach/ws?stream=1&stdin=1&stdout=1&stderr=1&logs=0"
        )


# =============================================================================
# Images
# =============================================================================


class ImageAPI:
    def __init__(self, client: DockerClient | None = None) -> None:
        self._docker = client or get_docker_client()

    async def exists(self, image_ref: str) -> bool:
        client = await self._docker.get()
        resp = await client.get(f"/images/{image_ref}/json")
        return resp.status_code == 200

    async def ensure(self, image_ref: str) -> None:
        """Pull the image unless it is already present."""
        if await self.exists(image_ref):
            return
        image, sep, tag = image_ref.rpartition(":")
        if not sep or "/" in tag:
            image, tag = image_ref, "latest"
        logger.info("Pulling image %s:%s", image, tag)
        client = await self._docker.get()
        resp = await client.post(
            "/images/create",
            params={"fromImage": image, "tag": tag},
            timeout=self._docker.config.image_pull_timeout,
        )
        resp.raise_for_status()
