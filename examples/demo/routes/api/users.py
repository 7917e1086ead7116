"""JSON endpoint open to other origins."""

method = "get"
path = "/api/users/{user_id}"
cors = {"origin": ["http://localhost:5173"], "max_age": 600}


def authorization(request):
    return True


def handler(request):
    return {"id": request.params["user_id"]}
