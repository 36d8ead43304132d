"""
Request-scoped context.

Built once per request from the incoming headers and passed explicitly
into every service call that writes audit data. Nothing reads the
"current request" from a global.

Client IP resolution order (first hit wins):
    cf-connecting-ip → x-real-ip → first hop of x-forwarded-for
    → socket peer → "unknown"
"""

import uuid
from dataclasses import dataclass

from fastapi import Request

UNKNOWN = "unknown"


@dataclass(frozen=True)
class RequestContext:
    ip_address: str
    user_agent: str
    request_id: str
    actor_id: uuid.UUID | None = None

    @classmethod
    def system(cls, label: str = "system") -> "RequestContext":
        """Context for batch jobs and scripts with no HTTP request."""
        return cls(ip_address=label, user_agent=label, request_id=uuid.uuid4().hex)

    def with_actor(self, actor_id: uuid.UUID) -> "RequestContext":
        return RequestContext(
            ip_address=self.ip_address,
            user_agent=self.user_agent,
            request_id=self.request_id,
            actor_id=actor_id,
        )


def resolve_client_ip(request: Request) -> str:
    headers = request.headers
    cf_ip = headers.get("cf-connecting-ip")
    if cf_ip:
        return cf_ip.strip()
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN


async def get_request_context(request: Request) -> RequestContext:
    """FastAPI dependency: resolve IP / user-agent for this request."""
    return RequestContext(
        ip_address=resolve_client_ip(request)[:64],
        user_agent=(request.headers.get("user-agent") or UNKNOWN)[:512],
        request_id=request.headers.get("x-request-id") or uuid.uuid4().hex,
    )
