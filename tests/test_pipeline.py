"""Tests for perch.pipeline — the per-request route pipeline."""

import logging
from typing import Any

import pytest

from perch._errors import ConfigError, RouteError, UnauthorizedError, ValidationError
from perch.http import RouteRequest, RouteResponse
from perch.observability import EventLog, RequestHandled
from perch.pipeline import PipelinePolicy, RoutePipeline
from perch.routes.descriptor import RouteDescriptor
from tests.conftest import RecordingRenderer


class _Next:
    def __init__(self) -> None:
        self.calls: list[BaseException | None] = []

    async def __call__(self, error: BaseException | None = None) -> None:
        self.calls.append(error)


def _allow(request):  # noqa: ARG001
    return True


def _route(**fields: Any) -> RouteDescriptor:
    fields.setdefault("verb", "get")
    fields.setdefault("path", "/x")
    fields.setdefault("authorization", _allow)
    fields.setdefault("handler", lambda request: {"success": True})
    return RouteDescriptor.from_exports(fields, require_authorization=False)


async def _run(
    route: RouteDescriptor,
    *,
    request: RouteRequest | None = None,
    policy: PipelinePolicy | None = None,
    event_log: EventLog | None = None,
    logger: logging.Logger | None = None,
) -> tuple[RouteRequest, RouteResponse, RecordingRenderer, _Next]:
    request = request or RouteRequest(method=route.verb, path=route.path)
    renderer = RecordingRenderer()
    response = RouteResponse(renderer=renderer)
    next_ = _Next()
    pipeline = RoutePipeline(route, policy=policy, event_log=event_log, logger=logger)
    await pipeline(request, response, next_)
    return request, response, renderer, next_


FORWARD = PipelinePolicy(error_policy="forward")


class TestPipelinePolicy:

    def test_defaults(self) -> None:
        policy = PipelinePolicy()
        assert policy.error_policy == "respond"
        assert policy.locals_policy == "merge"
        assert policy.signin_path == "/user"
        assert policy.signin_status == 307
        assert policy.redirect_key == "redirectTo"
        assert policy.session_locals == ("email",)

    def test_rejects_unknown_policies(self) -> None:
        with pytest.raises(ConfigError):
            PipelinePolicy(error_policy="swallow")  # type: ignore[arg-type]
        with pytest.raises(ConfigError):
            PipelinePolicy(locals_policy="nowhere")  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Render
# ---------------------------------------------------------------------------


class TestRender:

    @pytest.mark.asyncio
    async def test_payload_rendered_once(self) -> None:
        route = _route(template="t")
        _request, response, renderer, next_ = await _run(route)
        assert renderer.calls == [("t", {"success": True})]
        assert response.finished
        assert next_.calls == []

    @pytest.mark.asyncio
    async def test_async_handler(self) -> None:
        async def handler(request):  # noqa: ARG001
            return {"async": True}

        _request, _response, renderer, _next = await _run(_route(template="t", handler=handler))
        assert renderer.calls == [("t", {"async": True})]

    @pytest.mark.asyncio
    async def test_none_payload_renders_empty(self) -> None:
        route = _route(template="t", handler=lambda request: None)
        _request, _response, renderer, _next = await _run(route)
        assert renderer.calls == [("t", {})]

    @pytest.mark.asyncio
    async def test_session_email_defaulted(self) -> None:
        route = _route(template="t")
        request = RouteRequest(path="/x", session={"email": "ada@example.com"})
        _request, _response, renderer, _next = await _run(route, request=request)
        assert renderer.calls[0][1] == {"success": True, "email": "ada@example.com"}

    @pytest.mark.asyncio
    async def test_handler_email_wins_over_session(self) -> None:
        route = _route(template="t", handler=lambda request: {"email": "mine@example.com"})
        request = RouteRequest(path="/x", session={"email": "ada@example.com"})
        _request, _response, renderer, _next = await _run(route, request=request)
        assert renderer.calls[0][1]["email"] == "mine@example.com"

    @pytest.mark.asyncio
    async def test_static_locals_merged(self) -> None:
        route = _route(template="t", locals={"title": "Static"})
        _request, _response, renderer, _next = await _run(route)
        assert renderer.calls == [("t", {"success": True, "title": "Static"})]

    @pytest.mark.asyncio
    async def test_static_locals_win_with_warning(
        self, caplog: pytest.LogCaptureFixture, test_logger: logging.Logger,
    ) -> None:
        route = _route(
            template="t",
            locals={"title": "Static"},
            handler=lambda request: {"title": "Dynamic"},
        )
        with caplog.at_level(logging.WARNING, logger="perch.tests"):
            _request, _response, renderer, _next = await _run(route, logger=test_logger)
        assert renderer.calls[0][1]["title"] == "Static"
        assert "static local `title`" in caplog.text

    @pytest.mark.asyncio
    async def test_static_locals_on_response(self) -> None:
        route = _route(
            template="t",
            locals={"title": "Static"},
            handler=lambda request: {"title": "Dynamic"},
        )
        policy = PipelinePolicy(locals_policy="response")
        _request, response, renderer, _next = await _run(route, policy=policy)
        assert response.locals == {"title": "Static"}
        assert renderer.calls[0][1]["title"] == "Dynamic"

    @pytest.mark.asyncio
    async def test_skipped_when_handler_redirects(self) -> None:
        def handler(request, response):  # noqa: ARG001
            response.redirect("/elsewhere")
            return {"ignored": True}

        _request, response, renderer, _next = await _run(_route(template="t", handler=handler))
        assert renderer.calls == []
        assert response.get_header("Location") == "/elsewhere"

    @pytest.mark.asyncio
    async def test_non_mapping_payload_reported(self) -> None:
        route = _route(template="t", handler=lambda request: ["not", "a", "mapping"])
        _request, response, renderer, _next = await _run(route)
        assert renderer.calls == []
        assert response.status == 500
        assert "expected a mapping" in response.body

    @pytest.mark.asyncio
    async def test_render_error_reported(self) -> None:
        route = _route(template="t")
        request = RouteRequest(path="/x")

        def broken(template, context):
            raise LookupError("template not found: t")

        response = RouteResponse(renderer=broken)
        await RoutePipeline(route)(request, response, _Next())
        assert response.status == 500
        assert response.body == "template not found: t"


class TestNoTemplate:

    @pytest.mark.asyncio
    async def test_sends_payload_as_json(self) -> None:
        _request, response, renderer, _next = await _run(_route())
        assert renderer.calls == []
        assert response.content_type == "application/json"
        assert response.body == '{"success": true}'

    @pytest.mark.asyncio
    async def test_sends_text(self) -> None:
        _request, response, _renderer, _next = await _run(_route(handler=lambda request: "ok"))
        assert response.body == "ok"

    @pytest.mark.asyncio
    async def test_handler_sends_itself(self) -> None:
        def handler(request, response):  # noqa: ARG001
            response.send("handled", 201)

        _request, response, _renderer, _next = await _run(_route(handler=handler))
        assert response.body == "handled"
        assert response.status == 201


# ---------------------------------------------------------------------------
# Opt-out and forwarding
# ---------------------------------------------------------------------------


class TestOptOut:

    @pytest.mark.asyncio
    async def test_false_means_nothing_further(
        self, caplog: pytest.LogCaptureFixture, test_logger: logging.Logger,
    ) -> None:
        route = _route(template="t", handler=lambda request: False)
        with caplog.at_level(logging.DEBUG, logger="perch.tests"):
            _request, response, renderer, next_ = await _run(route, logger=test_logger)
        assert renderer.calls == []
        assert not response.finished
        assert next_.calls == []
        assert caplog.records == []

    @pytest.mark.asyncio
    async def test_handler_calling_next_skips_render(self) -> None:
        async def handler(request, response, next):  # noqa: A002, ARG001
            await next()

        _request, response, renderer, next_ = await _run(_route(template="t", handler=handler))
        assert renderer.calls == []
        assert next_.calls == [None]
        assert not response.finished


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TestHandlerErrors:

    @pytest.mark.asyncio
    async def test_raised_error_reported(
        self, caplog: pytest.LogCaptureFixture, test_logger: logging.Logger,
    ) -> None:
        def handler(request):  # noqa: ARG001
            raise Exception("this is an error")

        with caplog.at_level(logging.ERROR, logger="perch.tests"):
            _request, response, renderer, next_ = await _run(
                _route(template="t", handler=handler), logger=test_logger,
            )
        assert renderer.calls == []
        assert response.status == 500
        assert response.body == "this is an error"
        assert next_.calls == []
        assert len(caplog.records) == 1
        assert caplog.records[0].getMessage() == "/x(500): this is an error"

    @pytest.mark.asyncio
    async def test_rejected_coroutine_reported(self) -> None:
        async def handler(request):  # noqa: ARG001
            raise RouteError("gone", http_error=410)

        _request, response, _renderer, _next = await _run(_route(template="t", handler=handler))
        assert response.status == 410
        assert response.body == "gone"

    @pytest.mark.asyncio
    async def test_returned_exception_treated_as_raised(self) -> None:
        route = _route(template="t", handler=lambda request: ValueError("returned"))
        _request, response, renderer, _next = await _run(route)
        assert renderer.calls == []
        assert response.body == "returned"

    @pytest.mark.asyncio
    async def test_forwarded_unchanged(self) -> None:
        error = Exception("this is an error")

        def handler(request):  # noqa: ARG001
            raise error

        _request, response, renderer, next_ = await _run(
            _route(template="t", handler=handler), policy=FORWARD,
        )
        assert renderer.calls == []
        assert not response.finished
        assert next_.calls == [error]

    @pytest.mark.asyncio
    async def test_error_after_response_finished_only_logged(
        self, caplog: pytest.LogCaptureFixture, test_logger: logging.Logger,
    ) -> None:
        def handler(request, response):  # noqa: ARG001
            response.send("partial")
            raise RuntimeError("late failure")

        with caplog.at_level(logging.ERROR, logger="perch.tests"):
            _request, response, _renderer, _next = await _run(
                _route(handler=handler), logger=test_logger,
            )
        assert response.body == "partial"
        assert response.status == 200
        assert "late failure" in caplog.text


class TestValidationStage:

    @pytest.mark.asyncio
    async def test_failure_reported_with_400(self) -> None:
        def schema(body):
            raise ValueError("name is required")

        handler_calls: list[Any] = []
        route = _route(validation=schema, handler=lambda r: handler_calls.append(r))
        request = RouteRequest(method="POST", path="/x", body={})
        _request, response, _renderer, _next = await _run(route, request=request)
        assert response.status == 400
        assert response.body == "name is required"
        assert handler_calls == []

    @pytest.mark.asyncio
    async def test_failure_forwarded(self) -> None:
        def schema(body):
            raise ValueError("name is required")

        request = RouteRequest(method="POST", path="/x", body={})
        _request, _response, _renderer, next_ = await _run(
            _route(validation=schema), request=request, policy=FORWARD,
        )
        (error,) = next_.calls
        assert isinstance(error, ValidationError)
        assert str(error) == "name is required"

    @pytest.mark.asyncio
    async def test_normalized_body_replaces_request_body(self) -> None:
        seen: list[Any] = []
        route = _route(
            validation=lambda body: {"n": int(body["n"])},
            handler=lambda request: seen.append(request.body),
        )
        request = RouteRequest(method="POST", path="/x", body={"n": "3"})
        await _run(route, request=request)
        assert seen == [{"n": 3}]


class TestAuthorization:

    @pytest.mark.asyncio
    async def test_raise_redirects_to_signin(self) -> None:
        def authorization(request):  # noqa: ARG001
            raise Exception("not authorized")

        request = RouteRequest(path="/user_not_authenticated", url="/user_not_authenticated?a=1")
        _request, response, renderer, next_ = await _run(
            _route(template="t", authorization=authorization), request=request,
        )
        assert request.session["redirectTo"] == "%2Fuser_not_authenticated%3Fa%3D1"
        assert response.status == 307
        assert response.get_header("Location") == "/user"
        assert renderer.calls == []
        assert next_.calls == []

    @pytest.mark.asyncio
    async def test_redirect_url_keeps_unreserved_marks(self) -> None:
        request = RouteRequest(path="/a(1)!", url="/a(1)!?q=it's~*")
        await _run(_route(authorization=lambda r: False), request=request)
        assert request.session["redirectTo"] == "%2Fa(1)!%3Fq%3Dit's~*"

    @pytest.mark.asyncio
    async def test_false_is_unauthorized(self) -> None:
        route = _route(template="t", authorization=lambda request: False)
        _request, response, renderer, _next = await _run(route)
        assert response.redirected
        assert renderer.calls == []

    @pytest.mark.asyncio
    async def test_async_authorization(self) -> None:
        async def authorization(request):  # noqa: ARG001
            return None

        _request, _response, renderer, _next = await _run(
            _route(template="t", authorization=authorization),
        )
        assert len(renderer.calls) == 1

    @pytest.mark.asyncio
    async def test_forward_carries_exact_error(self) -> None:
        error = Exception("not authorized")

        def authorization(request):  # noqa: ARG001
            raise error

        request = RouteRequest(path="/x")
        _request, response, renderer, next_ = await _run(
            _route(template="t", authorization=authorization), request=request, policy=FORWARD,
        )
        assert next_.calls == [error]
        assert not response.finished
        assert renderer.calls == []
        assert "redirectTo" not in request.session

    @pytest.mark.asyncio
    async def test_custom_signin(self) -> None:
        policy = PipelinePolicy(signin_path="/login", signin_status=302, redirect_key="next")
        request = RouteRequest(path="/secret")
        _request, response, _renderer, _next = await _run(
            _route(authorization=lambda r: False), request=request, policy=policy,
        )
        assert response.status == 302
        assert response.get_header("Location") == "/login"
        assert request.session["next"] == "%2Fsecret"

    @pytest.mark.asyncio
    async def test_unauthorized_from_handler_redirects(self) -> None:
        def handler(request):  # noqa: ARG001
            raise UnauthorizedError("log in first")

        _request, response, _renderer, _next = await _run(_route(handler=handler))
        assert response.status == 307

    @pytest.mark.asyncio
    async def test_missing_authorization_warns(
        self, caplog: pytest.LogCaptureFixture, test_logger: logging.Logger,
    ) -> None:
        route = RouteDescriptor(
            verb="get", path="/open", template="t", handler=lambda request: {},
        )
        request = RouteRequest(path="/open")
        renderer = RecordingRenderer()
        response = RouteResponse(renderer=renderer)
        with caplog.at_level(logging.WARNING, logger="perch.tests"):
            await RoutePipeline(route, logger=test_logger)(request, response, _Next())
        assert "no authorization function set for: `/open`" in caplog.text
        assert len(renderer.calls) == 1


class TestSetParams:

    @pytest.mark.asyncio
    async def test_runs_first(self) -> None:
        order: list[str] = []

        def set_params(request):
            order.append("set_params")
            request.start = 10

        def authorization(request):
            order.append("authorization")
            return True

        def handler(request):
            order.append("handler")
            return {"start": request.start}

        _request, _response, renderer, _next = await _run(_route(
            template="t",
            set_params=set_params,
            authorization=authorization,
            handler=handler,
        ))
        assert order == ["set_params", "authorization", "handler"]
        assert renderer.calls == [("t", {"start": 10})]

    @pytest.mark.asyncio
    async def test_failure_reported(self) -> None:
        def set_params(request):  # noqa: ARG001
            raise RuntimeError("bad params")

        _request, response, _renderer, _next = await _run(_route(set_params=set_params))
        assert response.status == 500
        assert response.body == "bad params"


class TestEvents:

    @pytest.mark.asyncio
    async def test_records_outcomes(self) -> None:
        log = EventLog()
        await _run(_route(template="t"), event_log=log)
        await _run(_route(handler=lambda r: False), event_log=log)
        await _run(_route(authorization=lambda r: False), event_log=log)
        await _run(_route(handler=lambda r: ValueError("x")), event_log=log)
        await _run(_route(handler=lambda r: ValueError("x")), event_log=log, policy=FORWARD)

        events = log.query(event_type=RequestHandled)
        outcomes = [e.outcome for e in reversed(events)]
        assert outcomes == ["rendered", "opted_out", "unauthorized", "failed", "forwarded"]

    @pytest.mark.asyncio
    async def test_event_fields(self) -> None:
        log = EventLog()
        request = RouteRequest(path="/x", url="/x?q=1")
        await _run(_route(template="t"), request=request, event_log=log)
        (event,) = log.query()
        assert isinstance(event, RequestHandled)
        assert event.verb == "GET"
        assert event.path == "/x"
        assert event.url == "/x?q=1"
        assert event.status == 200
        assert event.duration_ms >= 0
