"""Sign in with an email address and return to the remembered URL."""

from urllib.parse import unquote

from chirp.validation import email, required

method = "post"
path = "/user"
validation = {"email": [required, email]}


def authorization(request):
    return True


def handler(request, response):
    request.session["email"] = request.body["email"]
    response.redirect(unquote(request.session.pop("redirectTo", "%2F")), 303)
    return False
