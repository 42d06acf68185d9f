import importlib
import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import httpx

from ..errors import DeliveryError, UnknownDestination

LOG = logging.getLogger("demoseed.destinations")

_REGISTRY: Dict[str, Callable[..., "Destination"]] = {}

BUILTIN_MODULES = ("demoseed.destinations.elastic", "demoseed.destinations.columnar")


def _load_builtins():
    for module in BUILTIN_MODULES:
        importlib.import_module(module)


def register_destination(name: str):
    """Class decorator adding a Destination under `name` to the registry."""

    def _register(cls):
        _REGISTRY[name] = cls
        cls.name = name
        return cls

    return _register


def available_destinations() -> List[str]:
    _load_builtins()
    return sorted(_REGISTRY)


def get_destination(name: str, **kwargs) -> "Destination":
    _load_builtins()
    try:
        factory = _REGISTRY[name]
    except KeyError:
        raise UnknownDestination(f"unknown destination {name!r}; available: {', '.join(available_destinations())}")
    return factory(**kwargs)


class Destination(ABC):
    """A sink that receives batches of rewritten event lines.

    `prepare` runs once before the first batch with the (min_ms, max_ms) window
    the synthetic sessions fall into. `send` must raise DeliveryError when the
    backend does not accept the batch.
    """

    name = "destination"

    async def prepare(self, window: Tuple[int, int]) -> None:
        return None

    @abstractmethod
    async def send(self, batch: Sequence[str]) -> None:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class HttpDestination(Destination):
    """Shared httpx plumbing for destinations that speak HTTP."""

    def __init__(self, base_url: str, timeout: float = 60.0, client: Optional[httpx.AsyncClient] = None, auth=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._auth = auth

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, auth=self._auth)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{self.base_url}/{path.lstrip('/')}" if path else self.base_url
        try:
            r = await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise DeliveryError(f"request to {url} timed out after {self.timeout}s: {e}")
        except httpx.HTTPError as e:
            raise DeliveryError(f"request to {url} failed: {e}")
        if r.status_code > 299:
            raise DeliveryError(r.text, status_code=r.status_code)
        return r
