"""WSGI middleware that refuses metric query endpoints."""

from __future__ import annotations

import json
from typing import Callable, Iterable

_QUERY_PREFIX = "/api/v1/query"

_BODY = json.dumps(
    {
        "status": "error",
        "errorType": "bad_data",
        "error": "Metrics not available",
    }
).encode("utf-8")

WSGIApp = Callable[[dict, Callable], Iterable[bytes]]


def unimplemented_middleware(app: WSGIApp) -> WSGIApp:
    """Wrap ``app`` so that query paths answer 501 and everything else passes through."""

    def wrapped(environ: dict, start_response: Callable) -> Iterable[bytes]:
        if environ.get("PATH_INFO", "").startswith(_QUERY_PREFIX):
            start_response(
                "501 Not Implemented",
                [
                    ("Content-Type", "application/json"),
                    ("Content-Length", str(len(_BODY))),
                ],
            )
            return [_BODY]
        return app(environ, start_response)

    return wrapped