import time
from functools import wraps

from sanic.request import Request
from sanic import response
from sanic.log import logger as logr

SLOW_REQUEST_MS = 5_000

async def start_timer(request: Request):
    request.ctx.start_time = time.monotonic()

async def add_server_timing_header(request: Request, res: response.HTTPResponse):
    duration_ms = (time.monotonic() - request.ctx.start_time) * 1000.0

    # e.g. 'Server-Timing: reconcile;dur=812.450,total;dur=813.002'
    res.headers["Server-Timing"] = res.headers.get("Server-Timing", "") + f'total;dur={duration_ms:.3f}'

def measure(handler):
    """Times the reconciliation work of a handler, as opposed to the whole request."""

    @wraps(handler)
    async def wrapper(request, *args, **kwargs):
        start_time = time.monotonic()

        res = await handler(request, *args, **kwargs)

        duration_ms = (time.monotonic() - start_time) * 1000.0

        if duration_ms > SLOW_REQUEST_MS:
            logr.warning(f"Slow reconcile on {request.path}: {duration_ms:.0f}ms")

        res.headers["Server-Timing"] = f'reconcile;dur={duration_ms:.3f},'

        return res

    return wrapper
