"""Factory route: configured from the ``routes`` table in perch.yaml."""


def route(config):
    def handler(request):
        return {"key": config.get("key"), "region": config.get("region")}

    return {
        "method": "get",
        "path": "/report",
        "authorization": lambda request: True,
        "handler": handler,
    }
