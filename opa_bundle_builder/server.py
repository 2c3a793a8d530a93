"""HTTP server for the bundle.

There are three routes:
- /opa/v1/opa/bundle.tar.gz: the current bundle, with ETag based
  conditional retrieval so a polling agent does not download an unchanged
  bundle again.
- /status: liveness, always 200 while the process is serving.
- /ready: 200 once the first bundle was built, 503 before.

Handlers only read the BundleStore and never wait on a rebuild.
"""

from collections.abc import Generator
import contextlib
import logging
from typing import Any

from fastapi import FastAPI, Header
from fastapi.responses import JSONResponse, PlainTextResponse, Response
import uvicorn

from .config import ServerConfig
from .store import BundleStore

_LOGGER = logging.getLogger(__name__)

BUNDLE_PATH = "/opa/v1/opa/bundle.tar.gz"
BUNDLE_MEDIA_TYPE = "application/gzip"


def etag_matches(if_none_match: str | None, etag: str) -> bool:
    """Return True if an If-None-Match header value matches the entity tag.

    The bare hex digest is accepted as well as the quoted entity tag, and
    weak validators compare equal to strong ones.
    """
    if not if_none_match:
        return False
    bare = etag.strip('"')
    for candidate in if_none_match.split(","):
        candidate = candidate.strip()
        if candidate == "*":
            return True
        if candidate.startswith("W/"):
            candidate = candidate[2:]
        candidate = candidate.strip('"')
        if candidate in (bare, bare.removeprefix("sha256:")):
            return True
    return False


def create_app(store: BundleStore, config: ServerConfig | None = None) -> FastAPI:
    """Create the FastAPI application serving bundles from the store."""
    config = config or ServerConfig()
    app = FastAPI(title="OPA bundle builder", docs_url=None, redoc_url=None)

    def _not_ready() -> Response:
        return PlainTextResponse(
            "bundle not built yet",
            status_code=503,
            headers={"Retry-After": str(config.retry_after_seconds)},
        )

    @app.get(BUNDLE_PATH)
    async def get_bundle(if_none_match: str | None = Header(None)) -> Response:
        if (bundle := store.current()) is None:
            return _not_ready()
        headers = {
            "ETag": bundle.etag,
            "X-Bundle-Sequence": str(bundle.sequence),
            "X-Bundle-Digest": bundle.digest,
        }
        if etag_matches(if_none_match, bundle.etag):
            return Response(status_code=304, headers=headers)
        return Response(
            content=bundle.archive, media_type=BUNDLE_MEDIA_TYPE, headers=headers
        )

    @app.get("/status")
    async def status() -> dict[str, Any]:
        bundle = store.current()
        return {
            "ready": bundle is not None,
            "bundle": bundle.info().to_dict() if bundle else None,
        }

    @app.get("/ready")
    async def ready() -> Response:
        if (bundle := store.current()) is None:
            return _not_ready()
        return JSONResponse(bundle.info().to_dict())

    return app


class BundleServer(uvicorn.Server):
    """A uvicorn server that leaves signal handling to the caller.

    The sidecar shuts down the watch and rebuild loops together with the
    server, so signals are handled by the owner of the event loop.
    """

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Generator[None, None, None]:
        yield

    def shutdown_gracefully(self) -> None:
        """Stop accepting connections and let in-flight requests complete."""
        self.should_exit = True


def create_server(app: FastAPI, config: ServerConfig) -> BundleServer:
    """Create a uvicorn server for the app that logs through the root logger."""
    server_config = uvicorn.Config(
        app,
        host=config.host,
        port=config.port,
        log_config=None,
        lifespan="off",
    )
    return BundleServer(server_config)
