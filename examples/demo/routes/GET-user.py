"""Sign-in page; remembers where the visitor was headed."""

from urllib.parse import unquote

method = "get"
path = "/user"
template = "user.html"
locals = {"title": "Sign in"}


def authorization(request):
    return True


def handler(request):
    return {"redirect_to": unquote(request.session.get("redirectTo", "%2F"))}
