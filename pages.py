"""HTML rendering shared by the HTTP front ends."""

import html

from resource_accessor import ErrorKind

READ_PATH = '/read'
USAGE = f'Usage: {READ_PATH}?file=<key>'

# Generic messages only: never echo the key, the path or the OS error.
ERROR_RESPONSES = {
    ErrorKind.NOT_ALLOWED: (403, 'Access denied'),
    ErrorKind.READ_FAILED: (404, 'Could not open file'),
}

SECURITY_HEADERS = {
    'X-Content-Type-Options': 'nosniff',
}

CONTENT_TYPE = 'text/html; charset=utf-8'


def render_content(content):
    """Embed file bytes in a <pre> block, escaped"""
    text = content.decode('utf-8', errors='replace')
    return ('<pre>' + html.escape(text) + '</pre>').encode('utf-8')


def render_message(message):
    return html.escape(message).encode('utf-8')


def render_index(keys):
    """Usage page listing the allowlisted keys (never their paths)"""
    lines = ['<!DOCTYPE html>',
             '<html><head>',
             '<meta charset="utf-8">',
             '<title>Allowlisted files</title>',
             '</head><body>',
             '<h1>Allowlisted files</h1>',
             '<p>{}</p>'.format(html.escape(USAGE)),
             '<ul>']
    for key in keys:
        lines.append('<li>{}</li>'.format(html.escape(key)))
    lines.append('</ul></body></html>')
    return '\n'.join(lines).encode('utf-8')


def error_response(error):
    """Map an ErrorKind to (status, body)"""
    status, message = ERROR_RESPONSES[error]
    return status, render_message(message)
