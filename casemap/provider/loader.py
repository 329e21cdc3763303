"""
Provider script loader.

The mapping provider's script is fetched at most once per process: every
requester shares one pending task and, after success, the resolved handle.
Failures are not cached, so the next request after a failure retries.
"""

import asyncio
import logging
from typing import Iterable, Optional, Tuple

from ..errors import ConfigurationError, ProviderLoadError
from .base import DEFAULT_LIBRARIES, MapProvider, ProviderHandle

logger = logging.getLogger(__name__)


class ProviderLoader:
    """
    Resolve-once loader for a MapProvider.

    Usage:
        loader = ProviderLoader(GoogleMapsProvider())

        # Any number of concurrent callers share one script fetch
        handle = await loader.ensure_loaded(api_key)

    One instance is created by the application and injected into every view.
    """

    def __init__(self, provider: MapProvider):
        self.provider = provider
        self.load_attempts = 0

        self._task: Optional[asyncio.Task] = None
        self._handle: Optional[ProviderHandle] = None
        self._libraries: Tuple[str, ...] = ()

    @property
    def handle(self) -> Optional[ProviderHandle]:
        return self._handle

    @property
    def is_loaded(self) -> bool:
        return self._handle is not None

    def ensure_loaded(
        self,
        api_key: str,
        libraries: Iterable[str] = DEFAULT_LIBRARIES,
    ) -> "asyncio.Future[ProviderHandle]":
        """
        Return an awaitable resolving to the shared provider handle.

        Raises ConfigurationError immediately (before any network attempt)
        when the API key is missing. Must be called from a running loop.
        """
        if not api_key:
            raise ConfigurationError(
                "Map provider API key is missing. Set CASEMAP_MAPS_API_KEY "
                "or maps.api_key in the settings file."
            )

        libraries = tuple(libraries)
        loop = asyncio.get_running_loop()

        if self._handle is not None:
            if self._libraries and set(libraries) - set(self._libraries):
                logger.debug(
                    f"Provider already loaded with {self._libraries}; "
                    f"ignoring extra libraries {libraries}"
                )
            done = loop.create_future()
            done.set_result(self._handle)
            return done

        if self._task is None:
            self._libraries = libraries
            self._task = loop.create_task(self._load(api_key, libraries))
            self._task.add_done_callback(self._on_done)

        # A cancelled waiter must not cancel the shared load
        return asyncio.shield(self._task)

    async def _load(self, api_key: str, libraries: Tuple[str, ...]) -> ProviderHandle:
        self.load_attempts += 1
        logger.info(f"Loading map provider (attempt {self.load_attempts}, libraries={','.join(libraries)})")
        try:
            handle = await self.provider.load(api_key, libraries)
        except ProviderLoadError:
            raise
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(f"Map provider load failed: {e}")
            raise ProviderLoadError(f"Failed to load map provider: {e}") from e

        self._handle = handle
        logger.info("Map provider ready")
        return handle

    def _on_done(self, task: asyncio.Task):
        if task.cancelled() or task.exception() is not None:
            # Failure is not cached: the next ensure_loaded() retries
            self._task = None
            self._libraries = ()
