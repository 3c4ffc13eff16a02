import argparse
import asyncio
import logging
import sys

from aiohttp import web

import pages
from resource_accessor import (
    AllowlistError,
    ResourceAccessor,
    UntrustedKey,
    load_allowlist,
)

logger = logging.getLogger(__name__)

ACCESSOR = web.AppKey('accessor', ResourceAccessor)

# --- Handlers ---

def _page(status, body):
    return web.Response(
        status=status,
        body=body,
        content_type='text/html',
        charset='utf-8',
        headers=pages.SECURITY_HEADERS,
    )


async def handle_root(request):
    """Handles the root URL '/' with the usage page."""
    accessor = request.app[ACCESSOR]
    return _page(200, pages.render_index(accessor.allowlist.keys()))


async def handle_read(request):
    """Handles '/read?file=<key>'. The key is only used as an allowlist lookup."""
    values = request.query.getall('file', [])
    if not values:
        return _page(400, pages.render_message(pages.USAGE))

    accessor = request.app[ACCESSOR]
    key = UntrustedKey(values[0])

    # The read blocks, so keep it off the event loop
    loop = asyncio.get_running_loop()
    result = await loop.run_in_executor(None, accessor.resolve, key)

    if result.ok:
        return _page(200, pages.render_content(result.content))

    logger.warning('Rejected %s from %s: %s', request.path, request.remote, result.error.value)
    return _page(*pages.error_response(result.error))


async def handle_not_found(request):
    return _page(404, pages.render_message('Not found'))

# --- Application Setup ---

def create_app(accessor):
    """Configures and returns the aiohttp application."""
    app = web.Application()
    app[ACCESSOR] = accessor

    app.router.add_get('/', handle_root)
    app.router.add_get(pages.READ_PATH, handle_read)
    app.router.add_get('/{tail:.*}', handle_not_found)

    return app

# --- Execution ---

def main(argv=None):
    parser = argparse.ArgumentParser(description='Allowlist file server (aiohttp)')
    parser.add_argument('--config', required=True, help='Allowlist JSON file')
    parser.add_argument('--host', default='127.0.0.1', help='Host to bind to (default: 127.0.0.1)')
    parser.add_argument('--port', type=int, default=8080, help='Port to bind to (default: 8080)')
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(message)s')

    try:
        allowlist = load_allowlist(args.config)
    except AllowlistError as e:
        print(f"Error: {e}")
        sys.exit(1)

    app = create_app(ResourceAccessor(allowlist))
    print(f"Serving {len(allowlist)} allowlisted files from: {allowlist.base_dir}")

    # Note: For production use, run behind a production-ready server such as Gunicorn
    web.run_app(app, host=args.host, port=args.port)


if __name__ == '__main__':
    main()
