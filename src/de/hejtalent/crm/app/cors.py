from typing import Dict

from aiohttp import web

CORS_HEADERS: Dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "GET, POST, DELETE, OPTIONS",
}


def get_cors_headers() -> Dict[str, str]:
    """Return the permissive CORS headers every endpoint answers with."""
    return dict(CORS_HEADERS)


@web.middleware
async def cors_middleware(request: web.Request, handler):
    # Preflight requests never reach a handler, even for routes without an OPTIONS method.
    if request.method == "OPTIONS":
        return web.Response(status=200, headers=get_cors_headers())

    try:
        response = await handler(request)
    except web.HTTPException as e:
        e.headers.update(get_cors_headers())
        raise
    response.headers.update(get_cors_headers())
    return response
