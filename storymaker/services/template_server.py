"""Internal HTTP server that serves story templates to the recorder's browser."""

import logging
import mimetypes
import socket
from pathlib import Path
from typing import Optional
from urllib.parse import quote, urlencode

from aiohttp import web

from storymaker.models.job import VideoRequest

logger = logging.getLogger(__name__)

SHARED_DIR = "shared"


class TemplateServer:
    """
    Serves ``templates_dir`` on a loopback port.

    ``/shared/<path>`` maps to the shared assets, ``/<template>/`` to the
    template's ``index.html`` and ``/<template>/<path>`` to its other files.
    """

    def __init__(self, templates_dir: str, host: str = "127.0.0.1", port: int = 0) -> None:
        self.templates_dir = Path(templates_dir).resolve()
        self.host = host
        self.requested_port = port
        self.port: Optional[int] = None
        self._runner: Optional[web.AppRunner] = None

    @property
    def running(self) -> bool:
        return self._runner is not None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/shared/{path:.*}", self._serve_shared)
        app.router.add_get("/{template}/{path:.*}", self._serve_template)
        app.router.add_get("/{template}", self._redirect_to_template)
        return app

    async def start(self) -> None:
        """Bind the socket and start serving; a second call is a no-op."""
        if self._runner is not None:
            return

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((self.host, self.requested_port))
        self.port = sock.getsockname()[1]

        runner = web.AppRunner(self.build_app(), access_log=None)
        await runner.setup()
        await web.SockSite(runner, sock).start()
        self._runner = runner
        logger.info(f"Template server serving {self.templates_dir} at http://{self.host}:{self.port}")

    async def stop(self) -> None:
        if self._runner is None:
            return
        await self._runner.cleanup()
        self._runner = None
        logger.info("Template server stopped")

    def build_url(self, request: VideoRequest) -> str:
        """Address of the rendered page for a video request."""
        if self.port is None:
            raise RuntimeError("Template server is not running")
        query = urlencode(
            {"site": request.site, "postType": request.post_type, "postSlug": request.slug}
        )
        return f"http://{self.host}:{self.port}/{quote(request.template)}/?{query}"

    def _resolve(self, *parts: str) -> Optional[Path]:
        """Path inside templates_dir, or None if it escapes it."""
        candidate = self.templates_dir.joinpath(*parts).resolve()
        if not candidate.is_relative_to(self.templates_dir):
            return None
        return candidate

    def _file_response(self, path: Optional[Path]) -> web.StreamResponse:
        if path is None:
            raise web.HTTPForbidden(text="Forbidden")
        if not path.is_file():
            logger.debug(f"Template file not found: {path}")
            raise web.HTTPNotFound(text="Not found")
        content_type, _ = mimetypes.guess_type(path.name)
        return web.FileResponse(
            path,
            headers={"Content-Type": content_type or "application/octet-stream"},
        )

    async def _serve_shared(self, request: web.Request) -> web.StreamResponse:
        return self._file_response(self._resolve(SHARED_DIR, request.match_info["path"]))

    async def _serve_template(self, request: web.Request) -> web.StreamResponse:
        template = request.match_info["template"]
        path = request.match_info["path"] or "index.html"
        return self._file_response(self._resolve(template, path))

    async def _redirect_to_template(self, request: web.Request) -> web.StreamResponse:
        # Relative asset links need the trailing slash.
        location = f"/{request.match_info['template']}/"
        if request.query_string:
            location += f"?{request.query_string}"
        raise web.HTTPFound(location)


def create_template_server() -> TemplateServer:
    """Create a TemplateServer for the configured templates directory."""
    from storymaker.config import get_settings

    return TemplateServer(templates_dir=get_settings().templates_dir)
