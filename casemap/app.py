"""
Case Map - Main Application

Coordinates:
- Map provider script loading (one shared loader per process)
- Case API access and marker photo loading
- The map view state machine
- Web dashboard API
"""

import argparse
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .cases.client import CasesClient, CasesClientConfig
from .markers.photos import PhotoLoader
from .provider.base import MapProvider
from .provider.loader import ProviderLoader
from .provider.scene import GoogleMapsProvider
from .view.map_view import MapView, MapViewConfig

logger = logging.getLogger(__name__)

API_KEY_ENV = "CASEMAP_MAPS_API_KEY"


class CaseMapApp:
    """
    Main case map application.

    Usage:
        app = CaseMapApp("config/settings.yaml")
        app.initialize()
        await app.start()
        ...
        await app.close()
    """

    def __init__(self, config_path: str = "config/settings.yaml", config: Optional[Dict[str, Any]] = None):
        self.config = config if config is not None else self._load_config(config_path)

        # Components
        self.loader: Optional[ProviderLoader] = None
        self.cases_client: Optional[CasesClient] = None
        self.photo_loader: Optional[PhotoLoader] = None
        self.view: Optional[MapView] = None

        self._started = False

    def _load_config(self, config_path: str) -> Dict[str, Any]:
        """Load application configuration."""
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                return yaml.safe_load(f) or {}
        logger.warning(f"Config file {config_path} not found; using defaults")
        return {}

    def map_config(self) -> MapViewConfig:
        """Map settings; the environment API key wins over the file."""
        maps = dict(self.config.get("maps", {}) or {})
        env_key = os.environ.get(API_KEY_ENV)
        if env_key:
            maps["api_key"] = env_key
        return MapViewConfig.from_dict(maps)

    def initialize(
        self,
        provider: Optional[MapProvider] = None,
        cases_client: Optional[CasesClient] = None,
        photo_loader: Optional[PhotoLoader] = None,
    ) -> bool:
        """Build the loader, clients and view."""
        logger.info("Initializing case map...")

        api_config = CasesClientConfig.from_dict(self.config.get("api", {}) or {})
        self.loader = ProviderLoader(provider or GoogleMapsProvider())
        self.cases_client = cases_client or CasesClient(api_config)
        self.photo_loader = photo_loader or PhotoLoader(base_url=api_config.base_url)

        map_config = self.map_config()
        if not map_config.api_key:
            logger.warning(f"No map API key configured; set {API_KEY_ENV} or maps.api_key")

        self.view = MapView(
            map_config,
            self.loader,
            self.cases_client,
            photo_loader=self.photo_loader,
        )

        logger.info("Initialization complete")
        return True

    async def start(self):
        """Mount the map view."""
        if self.view is None:
            self.initialize()
        self._started = True
        await self.view.mount()
        logger.info(f"Case map started (state: {self.view.state.value})")

    async def close(self):
        """Unmount the view and close HTTP sessions."""
        logger.info("Stopping case map...")
        self._started = False

        if self.view is not None and self.view.is_active:
            self.view.unmount()
        if self.cases_client is not None:
            await self.cases_client.close()
        if self.photo_loader is not None:
            await self.photo_loader.close()

        logger.info("Case map stopped")

    def get_status(self) -> Dict[str, Any]:
        """Get current application status."""
        view = self.view
        return {
            "running": self._started,
            "state": view.state.value if view else None,
            "provider_loaded": self.loader.is_loaded if self.loader else False,
            "markers": len(view.markers) if view and view.markers else 0,
            "error": view.error.to_dict() if view and view.error else None,
        }


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """Configure logging."""
    handlers = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


def main():
    """Application entry point."""
    parser = argparse.ArgumentParser(
        description="Case Map - missing-persons case map dashboard"
    )
    parser.add_argument("-c", "--config", default="config/settings.yaml",
                        help="Configuration file path")
    parser.add_argument("--log-level", default="INFO",
                        help="Logging level (DEBUG, INFO, WARNING, ERROR)")
    parser.add_argument("--log-file", default=None,
                        help="Log file path")
    parser.add_argument("--no-web", action="store_true",
                        help="Check configuration and exit without serving")
    parser.add_argument("--port", type=int, default=None,
                        help="Web UI port (default: web.port or 8080)")
    args = parser.parse_args()

    setup_logging(args.log_level, args.log_file)

    map_app = CaseMapApp(args.config)
    if not map_app.initialize():
        logger.error("Initialization failed")
        raise SystemExit(1)

    web_config = map_app.config.get("web", {}) or {}
    if not web_config.get("enabled", True) or args.no_web:
        logger.info("Web UI disabled; nothing to serve")
        return

    from .api.server import create_app, run_server

    fastapi_app = create_app(map_app)
    host = web_config.get("host", "0.0.0.0")
    port = args.port or web_config.get("port", 8080)

    logger.info(f"Web UI: http://{host}:{port}")
    run_server(fastapi_app, host, port)


if __name__ == "__main__":
    main()
