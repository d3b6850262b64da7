from __future__ import annotations

import asyncio
import logging

from aiohttp import web

from .channels import BoundedChannel
from .lifecycle import Lifecycle

logger = logging.getLogger(__name__)

PREVIEW_KEY = web.AppKey("preview", BoundedChannel)
LIFECYCLE_KEY = web.AppKey("lifecycle", Lifecycle)
STREAM_CONTENT_TYPE = "multipart/x-mixed-replace; boundary=FRAME"
RECV_POLL = 0.25

INDEX_HTML = """<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <title>Watson Vision</title>
    <style>
      body { background: #111; color: #eee; font-family: sans-serif; text-align: center; }
      img { max-width: 100%; border: 1px solid #444; }
    </style>
  </head>
  <body>
    <h1>Watson Vision</h1>
    <img src="/test.mjpeg" alt="camera preview">
  </body>
</html>
"""


async def index(request: web.Request) -> web.Response:
    return web.Response(text=INDEX_HTML, content_type="text/html")


async def mjpeg_stream(request: web.Request) -> web.StreamResponse:
    preview = request.app[PREVIEW_KEY]
    lifecycle = request.app[LIFECYCLE_KEY]

    response = web.StreamResponse(
        headers={
            "Content-Type": STREAM_CONTENT_TYPE,
            "Cache-Control": "no-cache, private",
            "Pragma": "no-cache",
        }
    )
    await response.prepare(request)
    logger.info("preview client connected: %s", request.remote)

    loop = asyncio.get_running_loop()
    try:
        while not lifecycle.stopped:
            chunk = await loop.run_in_executor(None, preview.recv, RECV_POLL)
            if chunk is None:
                continue
            await response.write(chunk)
    except ConnectionError:
        logger.info("preview client disconnected: %s", request.remote)
    return response


def build_app(preview: BoundedChannel, lifecycle: Lifecycle) -> web.Application:
    app = web.Application()
    app[PREVIEW_KEY] = preview
    app[LIFECYCLE_KEY] = lifecycle
    app.router.add_get("/", index)
    app.router.add_get("/test.mjpeg", mjpeg_stream)
    return app
