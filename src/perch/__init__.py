"""Perch — route modules and request pipelines for Chirp apps.

Drop route modules into ``routes/``; each one describes a verb, a path,
a handler and, optionally, validation, authorization, a template, static
locals and CORS.  Perch discovers them, registers them on a Chirp App, and
runs every request through the same pipeline::

    set_params -> validation -> authorization -> handler -> render | error

Quick start::

    # routes/hello.py
    verb = "get"
    path = "/hello"
    template = "hello.html"

    def authorization(request):
        return True

    def handler(request):
        return {"name": request.query.get("name", "world")}

    import perch

    perch.serve("my-project/")

Part of the Bengal ecosystem:

    perch       Route pipelines   (mounts route modules)
    pounce      ASGI server       (serves apps)
    chirp       Web framework     (serves HTML)
    kida        Template engine   (renders HTML)

"""

# PEP 703: Declare this module as free-threading safe
_Py_mod_gil = 0

__version__ = "0.1.0-dev"
__all__ = [
    "PerchConfig",
    "PipelinePolicy",
    "Registrar",
    "RouteDescriptor",
    "RoutePipeline",
    "__version__",
    "create_app",
    "discover_routes",
    "serve",
]


def __getattr__(name: str) -> object:
    """Lazy imports for the public API.

    Keeps ``import perch`` fast; Chirp is only imported when an app is built.
    """
    if name == "PerchConfig":
        from perch.config import PerchConfig

        return PerchConfig

    if name in ("PipelinePolicy", "RoutePipeline"):
        from perch import pipeline

        return getattr(pipeline, name)

    if name == "Registrar":
        from perch.registrar import Registrar

        return Registrar

    if name in ("RouteDescriptor", "discover_routes"):
        from perch import routes

        return getattr(routes, name)

    if name in ("create_app", "serve"):
        from perch import app

        return getattr(app, name)

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
