"""
Outgoing response builder

Collects the session cookies produced while a request is checked, so they
can be applied to whichever response is finally returned (redirect, rewrite
or pass-through). The builder is a value: each request starts from an empty
one and every change returns a new builder.
"""
from dataclasses import dataclass
from typing import Mapping, Tuple

from starlette.responses import Response

from .models import CookieSpec


@dataclass(frozen=True)
class ResponseBuilder:
    """Pending cookie mutations for one response"""
    cookies: Tuple[CookieSpec, ...] = ()

    def with_cookies(self, *specs: CookieSpec) -> "ResponseBuilder":
        """Return a builder with specs added; a later spec replaces an earlier one of the same name"""
        if not specs:
            return self
        replaced = {spec.name for spec in specs}
        kept = tuple(c for c in self.cookies if c.name not in replaced)
        return ResponseBuilder(cookies=kept + tuple(specs))

    @property
    def is_empty(self) -> bool:
        return not self.cookies

    def apply(self, response: Response) -> Response:
        """Write every pending cookie onto a Starlette response"""
        for spec in self.cookies:
            if spec.is_deletion:
                response.delete_cookie(
                    spec.name,
                    path=spec.path,
                    domain=spec.domain,
                    secure=spec.secure,
                    httponly=spec.httponly,
                    samesite=spec.samesite,
                )
            else:
                response.set_cookie(
                    spec.name,
                    spec.value,
                    max_age=spec.max_age,
                    path=spec.path,
                    domain=spec.domain,
                    secure=spec.secure,
                    httponly=spec.httponly,
                    samesite=spec.samesite,
                )
        return response

    def merge_request_cookies(self, existing: Mapping[str, str]) -> str:
        """
        Cookie header for the forwarded request

        Downstream handlers must see the refreshed session, not the stale one.
        """
        merged = dict(existing)
        for spec in self.cookies:
            if spec.is_deletion:
                merged.pop(spec.name, None)
            else:
                merged[spec.name] = spec.value
        return "; ".join(f"{name}={value}" for name, value in merged.items())
