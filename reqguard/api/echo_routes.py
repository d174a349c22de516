"""Echo and contact preview endpoints that show the guard pipeline at work."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from reqguard.config.loader import get_settings
from reqguard.middleware.asgi import REQUEST_CONTEXT_KEY, guarded_request
from reqguard.middleware.body_cache import content_charset
from reqguard.middleware.request_view import innermost
from reqguard.models.echo import ContactCard, EchoResponse
from reqguard.utils.network import client_ip, device_fingerprint
from reqguard.utils.urlcodec import url_decode_safe

logger = structlog.get_logger()

router = APIRouter(prefix="/api", tags=["echo"])


@router.api_route("/echo", methods=["GET", "POST"], response_model=EchoResponse)
async def echo(request: Request) -> EchoResponse:
    """Echo sanitized parameters and headers and re-read the body.

    The body is read twice: once through the guarded view and once through
    the framework request. Both reads come from the buffered copy.
    """
    view = guarded_request(request)
    context = request.scope.get("state", {}).get(REQUEST_CONTEXT_KEY)

    raw_headers = innermost(view).headers()
    second = await request.body()
    first = await view.body() if view.body_cached else second
    resolved_ip = context.client_ip if context is not None else ""
    if not resolved_ip:
        resolved_ip = client_ip(raw_headers, view.client_host, get_settings().extra_ip_headers)
    body = second.decode(content_charset(raw_headers.get("content-type")), errors="replace") if second else None

    return EchoResponse(
        method=view.method,
        path=view.path,
        query=url_decode_safe(view.query_string) or None,
        params=view.parameter_map(),
        headers=view.headers(),
        client_ip=resolved_ip,
        fingerprint=device_fingerprint(raw_headers),
        body=body,
        body_cached=view.body_cached,
        body_replayed=view.body_cached and first == second,
    )


@router.post("/contacts/preview")
async def preview_contact(card: ContactCard) -> JSONResponse:
    """Return the contact as it would be serialized, with sensitive fields masked."""
    logger.debug("contact_preview", masked_fields=sorted(ContactCard.mask_rules))
    return JSONResponse(content=card.model_dump(mode="json"))
