"""HTTP helpers shared by the order and product services: JSON replies, outgoing calls, CORS, routing."""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Callable, Iterable

import requests
from werkzeug.exceptions import HTTPException
from werkzeug.routing import Map, Rule
from werkzeug.wrappers import Request, Response

Handler = Callable[[Request], Response]
Middleware = Callable[[Handler], Handler]
WSGIApp = Callable[..., Iterable[bytes]]

ALLOWED_HEADERS = (
    "X-Requested-With",
    "Accept",
    "Content-Type",
    "Content-Length",
    "Accept-Encoding",
    "X-CSRF-Token",
    "Authorization",
)
ALLOWED_ORIGINS = ("*",)
ALLOWED_METHODS = ("GET", "HEAD", "POST", "PUT", "OPTIONS", "DELETE")

_DEFAULT_CORS_HEADERS = ("Accept", "Accept-Language", "Content-Language", "Origin")
_DEFAULT_CORS_METHODS = ("GET", "HEAD", "POST")
_BASE_FIELDS = ("result", "page", "id")
_JSON_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)


@dataclass
class Route:
    """One path and method served by a handler, wrapped by its middlewares."""

    path: str
    method: str
    handler: Handler
    middlewares: list[Middleware] = field(default_factory=list)


def _marshal(data: Any) -> bytes:
    if dataclasses.is_dataclass(data) and not isinstance(data, type):
        data = dataclasses.asdict(data)
    text = json.dumps(
        data, separators=(",", ":"), ensure_ascii=False, allow_nan=False, sort_keys=True
    )
    for char, escaped in _JSON_ESCAPES:
        text = text.replace(char, escaped)
    return text.encode("utf-8")


def _plain_error(message: str, status: int) -> Response:
    return Response(
        message + "\n",
        status=status,
        content_type="text/plain; charset=utf-8",
        headers={"X-Content-Type-Options": "nosniff"},
    )


def json_response(status: int, data: Any) -> Response:
    """Reply with data as compact JSON; a value that cannot be encoded gives a 500 text reply."""
    try:
        body = _marshal(data)
    except (TypeError, ValueError) as exc:
        return _plain_error(str(exc), HTTPStatus.INTERNAL_SERVER_ERROR)
    return Response(body, status=status, content_type="application/json")


def error_response(error: BaseException, status: int) -> Response:
    """Reply with {"code": ..., "message": ...}; errors carrying code() and message() supply their own."""
    code = getattr(error, "code", None)
    message = getattr(error, "message", None)
    if callable(code) and callable(message):
        payload = {"code": code(), "message": message()}
    else:
        payload = {"code": status, "message": str(error)}
    return json_response(status, payload)


def _decode_base(content: bytes) -> dict[str, Any]:
    """Keep the result, page and id members of a JSON reply; anything undecodable gives {}."""
    try:
        data = json.loads(content)
    except ValueError:
        return {}
    if not isinstance(data, dict):
        return {}
    base: dict[str, Any] = {}
    for key, value in data.items():
        name = key.lower()
        if name not in _BASE_FIELDS:
            continue
        if value is None:
            base.pop(name, None)
        else:
            base[name] = value
    return base


def get_json(url: str) -> Any:
    """GET url and return its decoded JSON body; raise ValueError when it is not JSON."""
    reply = requests.get(url)
    return json.loads(reply.content)


def post_json(url: str, body: bytes) -> dict[str, Any]:
    """POST a JSON body; return the reply's result, page and id members that are present."""
    reply = requests.post(url, data=body, headers={"Content-Type": "application/json"})
    return _decode_base(reply.content)


def put_json(url: str, body: bytes) -> dict[str, Any]:
    """PUT body; return the reply's result, page and id members that are present."""
    reply = requests.put(url, data=body)
    return _decode_base(reply.content)


def _canonical(name: str) -> str:
    return "-".join(part[:1].upper() + part[1:].lower() for part in name.split("-"))


def cors(app: WSGIApp) -> WSGIApp:
    """Wrap app with CORS handling: any origin, the usual headers and methods."""
    allowed_headers = {_canonical(name) for name in ALLOWED_HEADERS}

    def middleware(environ: dict, start_response: Callable) -> Iterable[bytes]:
        request = Request(environ)
        origin = request.headers.get("Origin", "")
        if not origin:
            if request.method != "OPTIONS":
                return app(environ, start_response)
            return Response()(environ, start_response)

        if request.method == "OPTIONS":
            if "Access-Control-Request-Method" not in request.headers:
                return Response(status=HTTPStatus.BAD_REQUEST)(environ, start_response)
            method = request.headers["Access-Control-Request-Method"]
            if method not in ALLOWED_METHODS:
                return Response(status=HTTPStatus.METHOD_NOT_ALLOWED)(environ, start_response)
            granted = []
            requested = request.headers.get("Access-Control-Request-Headers", "")
            for raw in requested.split(","):
                name = _canonical(raw.strip())
                if not name or name in _DEFAULT_CORS_HEADERS:
                    continue
                if name not in allowed_headers:
                    return Response(status=HTTPStatus.FORBIDDEN)(environ, start_response)
                granted.append(name)
            headers = {}
            if granted:
                headers["Access-Control-Allow-Headers"] = ",".join(granted)
            if method not in _DEFAULT_CORS_METHODS:
                headers["Access-Control-Allow-Methods"] = method
            headers["Access-Control-Allow-Origin"] = "*"
            return Response(headers=headers)(environ, start_response)

        def start(status: str, response_headers: list, exc_info: Any = None) -> Any:
            if not any(k.lower() == "access-control-allow-origin" for k, _ in response_headers):
                response_headers = [*response_headers, ("Access-Control-Allow-Origin", "*")]
            return start_response(status, response_headers, exc_info)

        return app(environ, start)

    return middleware


def build_app(routes: Iterable[Route]) -> WSGIApp:
    """Build a WSGI application dispatching each route's path and method to its handler."""
    rules = []
    for route in routes:
        handler = route.handler
        for middleware in reversed(route.middlewares):
            handler = middleware(handler)
        rules.append(Rule(route.path, methods=[route.method], endpoint=handler))
    url_map = Map(rules)

    def app(environ: dict, start_response: Callable) -> Iterable[bytes]:
        request = Request(environ)
        adapter = url_map.bind_to_environ(environ)
        try:
            endpoint, _ = adapter.match()
            response = endpoint(request)
        except HTTPException as exc:
            return exc(environ, start_response)
        return response(environ, start_response)

    return app