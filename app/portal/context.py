"""
Explicit per-request context for the session layer.

Handlers build one RequestContext per request and pass it into the session
store and auth service. Cookie reads come from the incoming request; cookie
writes are queued and applied to the outgoing response by `apply()`.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime

from flask import Request
from werkzeug.wrappers import Response

from app.portal.rate_limit import client_ip


@dataclass(frozen=True)
class PendingCookie:
    name: str
    value: str = ""
    expires: datetime | None = None
    delete: bool = False


@dataclass
class RequestContext:
    cookies: dict[str, str] = field(default_factory=dict)
    ip: str | None = None
    user_agent: str | None = None
    secure_cookies: bool = False
    pending: list[PendingCookie] = field(default_factory=list)

    @classmethod
    def from_request(cls, req: Request, *, secure_cookies: bool = False) -> "RequestContext":
        ip = client_ip(req)
        return cls(
            cookies=dict(req.cookies),
            ip=None if ip == "unknown" else ip,
            user_agent=req.headers.get("User-Agent") or None,
            secure_cookies=secure_cookies,
        )

    @classmethod
    def with_cookies(cls, cookies: Mapping[str, str] | None = None, **kwargs) -> "RequestContext":
        return cls(cookies=dict(cookies or {}), **kwargs)

    def get_cookie(self, name: str) -> str | None:
        return self.cookies.get(name) or None

    def set_cookie(self, name: str, value: str, *, expires: datetime) -> None:
        self.cookies[name] = value
        self.pending.append(PendingCookie(name=name, value=value, expires=expires))

    def delete_cookie(self, name: str) -> None:
        self.cookies.pop(name, None)
        self.pending.append(PendingCookie(name=name, delete=True))

    def apply(self, response: Response) -> Response:
        """Write queued cookie changes onto the response (last write per cookie wins)."""
        latest: dict[str, PendingCookie] = {}
        for c in self.pending:
            latest.pop(c.name, None)
            latest[c.name] = c
        for c in latest.values():
            if c.delete:
                response.delete_cookie(
                    c.name,
                    path="/",
                    secure=self.secure_cookies,
                    httponly=True,
                    samesite="Lax",
                )
            else:
                response.set_cookie(
                    c.name,
                    c.value,
                    expires=c.expires,
                    path="/",
                    secure=self.secure_cookies,
                    httponly=True,
                    samesite="Lax",
                )
        self.pending.clear()
        return response
