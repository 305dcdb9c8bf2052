"""Telemetry record types and the record builder."""

from __future__ import annotations

import os
import socket
import time
import traceback
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable

if TYPE_CHECKING:
    from .config import BananasConfig


class EventKind(str, Enum):
    """Kind of event a record describes."""
    SERVER = "server"
    RESPONSE = "response"
    ERROR = "error"


def now_msec() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class RequestContext:
    """
    What the host knows about one request.

    Built by the framework glue from the request scope; the shipper only
    reads it.
    """
    path: str
    method: str
    received: int  # epoch msec

    route_path: str | None = None
    query: dict[str, Any] = field(default_factory=dict)
    params: dict[str, Any] = field(default_factory=dict)
    request_id: str | None = None
    remote_address: str | None = None

    # Authentication as reported by the host
    authenticated: bool = False
    credentials: Any = None

    # Filled in once the response is known
    status_code: int | None = None
    response_body: Any = None

    # Per-route opt-out flag
    excluded: bool = False


@dataclass(frozen=True, slots=True)
class Record:
    """
    A single normalized telemetry record.

    Immutable once built. Global tags are applied by producing a new
    record (see ``with_tag_prefix``).
    """
    event: EventKind
    timestamp: int
    host: str
    tags: tuple[str, ...] = ()

    # Request detail
    path: str | None = None
    route_path: str | None = None
    method: str | None = None
    query: dict[str, Any] | None = None
    params: dict[str, Any] | None = None
    request: dict[str, Any] | None = None
    auth: Any = None

    # Payload
    error: Any = None
    data: Any = None
    code: int | None = None
    env: dict[str, str] | None = None

    def with_tag_prefix(self, prefix: Iterable[str] | None) -> Record:
        """Return a copy with ``prefix`` placed before this record's own tags."""
        if prefix is None:
            return self
        return replace(self, tags=tuple(prefix) + self.tags)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire document. Absent optional fields are omitted."""
        d: dict[str, Any] = {
            "event": self.event.value,
            "timestamp": self.timestamp,
            "host": self.host,
            "tags": list(self.tags),
        }

        optional = (
            ("path", self.path),
            ("query", self.query),
            ("params", self.params),
            ("routePath", self.route_path),
            ("method", self.method),
            ("request", self.request),
            ("auth", self.auth),
            ("error", self.error),
            ("data", self.data),
            ("code", self.code),
            ("env", self.env),
        )
        for key, value in optional:
            if value is not None:
                d[key] = value

        return d


def normalize_error(value: Any) -> Any:
    """
    Resolve an error payload once, at build time.

    Exceptions are structured faults and become ``{message, stack, data?}``.
    Anything else is carried unchanged.
    """
    if not isinstance(value, BaseException):
        return value

    error = {
        "message": str(value),
        "stack": "".join(
            traceback.format_exception(type(value), value, value.__traceback__)
        ),
    }

    data = getattr(value, "data", None)
    if data:
        error["data"] = data

    return error


def build_record(
    kind: EventKind,
    context: RequestContext | None = None,
    config: BananasConfig | None = None,
    *,
    tags: Iterable[str] = (),
    error: Any = None,
    data: Any = None,
    code: int | None = None,
    env: dict[str, str] | None = None,
) -> Record:
    """
    Build a record for ``kind``.

    Timestamp and host are sampled here. With a request context the record
    carries the request detail; ``auth`` is filled only for authenticated
    requests when a credential extractor is configured. Extractor errors
    are not caught.
    """
    now = now_msec()

    detail: dict[str, Any] = {}
    if context is not None:
        detail.update(
            path=context.path,
            query=dict(context.query),
            params=dict(context.params),
            route_path=context.route_path,
            method=context.method,
            request={
                "id": context.request_id,
                "received": context.received,
                "elapsed": now - context.received,
                "remoteIP": context.remote_address,
            },
        )

        if context.authenticated and config is not None and config.credentials:
            detail["auth"] = config.credentials(context)

    return Record(
        event=EventKind(kind),
        timestamp=now,
        host=socket.gethostname(),
        tags=tuple(tags),
        error=normalize_error(error) if error is not None else None,
        data=data,
        code=code,
        env=env,
        **detail,
    )


def environment_snapshot() -> dict[str, str]:
    """Copy of the process environment at call time."""
    return dict(os.environ)
