"""Signed-in only; anonymous visitors are sent to /user."""

import time

method = "get"
path = "/dashboard"
template = "dashboard.html"
locals = {"title": "Dashboard"}


def set_params(request):
    request.start = time.monotonic()


def authorization(request):
    if not request.session.get("email"):
        raise Exception("not authorized")
    return True


async def handler(request):
    return {"elapsed_ms": (time.monotonic() - request.start) * 1000}
