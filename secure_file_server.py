#!/usr/bin/env python3
"""
Allowlist HTTPS File Server with:
- Files exposed by key only, through a fixed allowlist
- SSL/TLS encryption
- Comprehensive audit logging
- One thread per request
"""

import os
import ssl
import json
import logging
from datetime import datetime, timezone
from functools import partial
from http.server import ThreadingHTTPServer, BaseHTTPRequestHandler
from urllib.parse import urlsplit, parse_qs
from pathlib import Path
import argparse
import signal
import sys
import socket

import pages
from resource_accessor import (
    AllowlistError,
    ErrorKind,
    ResourceAccessor,
    UntrustedKey,
    load_allowlist,
)

# Longest repr of a rejected key written to the audit log
MAX_LOGGED_KEY = 200


class AuditLogger:
    """Handles comprehensive audit logging"""

    def __init__(self, log_dir='./logs', log_to_console=True):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.log_to_console = log_to_console

        # Setup file handler for audit log
        self.audit_file = self.log_dir / f'audit_{datetime.now().strftime("%Y%m%d")}.log'
        self.logger = logging.getLogger('audit')
        self.logger.setLevel(logging.INFO)
        self.logger.propagate = False
        self._handlers = []

        # File handler (JSON format)
        fh = logging.FileHandler(self.audit_file, encoding='utf-8')
        fh.setLevel(logging.INFO)
        self._add_handler(fh)

        # Console handler (human readable)
        if self.log_to_console:
            ch = logging.StreamHandler()
            ch.setLevel(logging.INFO)
            ch.setFormatter(logging.Formatter('%(asctime)s - %(message)s'))
            self._add_handler(ch)

    def _add_handler(self, handler):
        self.logger.addHandler(handler)
        self._handlers.append(handler)

    def close(self):
        for handler in self._handlers:
            self.logger.removeHandler(handler)
            handler.close()
        self._handlers = []

    @staticmethod
    def _timestamp():
        return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')

    def log_request(self, event_type, client_ip, method, path, status_code,
                    bytes_sent=0, error=None, user_agent=None):
        """Log request with comprehensive details"""
        log_entry = {
            'timestamp': self._timestamp(),
            'event_type': event_type,
            'client_ip': client_ip,
            'method': method,
            'path': path,
            'status_code': status_code,
            'bytes_sent': bytes_sent,
            'user_agent': user_agent,
        }

        if error:
            log_entry['error'] = error.value if isinstance(error, ErrorKind) else str(error)

        self.logger.info(json.dumps(log_entry))

    def log_security_event(self, event_type, client_ip, details):
        """Log security-related events"""
        log_entry = {
            'timestamp': self._timestamp(),
            'event_type': 'SECURITY_' + event_type,
            'client_ip': client_ip,
            'details': details
        }
        self.logger.warning(json.dumps(log_entry))


class AllowlistFileHandler(BaseHTTPRequestHandler):
    """Serves allowlisted files by key: GET /read?file=<key>"""

    def __init__(self, *args, accessor, audit_logger=None, hsts=False, **kwargs):
        # BaseHTTPRequestHandler handles the request inside __init__
        self.accessor = accessor
        self.audit_logger = audit_logger
        self.hsts = hsts
        super().__init__(*args, **kwargs)

    def do_GET(self):
        """Handle GET requests"""
        bytes_sent = 0
        status_code = 200
        error = None

        try:
            url = urlsplit(self.path)

            if url.path == '/':
                body = pages.render_index(self.accessor.allowlist.keys())
            elif url.path == pages.READ_PATH:
                status_code, body, error = self.read_file(url.query)
            else:
                status_code, body = 404, pages.render_message('Not found')

            bytes_sent = self.send_page(status_code, body)

        except Exception as e:
            error = e
            status_code = 500
            self.log_error(f"Error handling request: {e}")
            self.send_error(500, "Internal server error")
        finally:
            # Audit log
            if self.audit_logger:
                self.audit_logger.log_request(
                    'FILE_ACCESS',
                    self.client_address[0],
                    'GET',
                    self.path,
                    status_code,
                    bytes_sent=bytes_sent,
                    error=error,
                    user_agent=self.headers.get('User-Agent')
                )

    def read_file(self, query):
        """Resolve the ``file`` parameter; returns (status, body, error kind)"""
        values = parse_qs(query, keep_blank_values=True).get('file')
        if not values:
            return 400, pages.render_message(pages.USAGE), None

        key = UntrustedKey(values[0])
        result = self.accessor.resolve(key)
        if result.ok:
            return 200, pages.render_content(result.content), None

        if result.error is ErrorKind.NOT_ALLOWED and self.audit_logger:
            self.audit_logger.log_security_event(
                'KEY_REJECTED',
                self.client_address[0],
                f'Rejected key: {repr(key)[:MAX_LOGGED_KEY]}'
            )
        status_code, body = pages.error_response(result.error)
        return status_code, body, result.error

    def send_page(self, status_code, body):
        self.send_response(status_code)
        self.send_header('Content-Type', pages.CONTENT_TYPE)
        self.send_header('Content-Length', str(len(body)))
        for name, value in pages.SECURITY_HEADERS.items():
            self.send_header(name, value)
        if self.hsts:
            self.send_header('Strict-Transport-Security', 'max-age=31536000')  # HSTS
        self.end_headers()
        self.wfile.write(body)
        return len(body)

    def log_message(self, format, *args):
        """Override to add timestamps to logs"""
        sys.stderr.write("%s - - [%s] %s\n" %
                         (self.address_string(),
                          self.log_date_time_string(),
                          format % args))


class SecureHTTPServer(ThreadingHTTPServer):
    """Threaded HTTPServer with SSL and improved socket options"""

    daemon_threads = True

    def __init__(self, server_address, RequestHandlerClass,
                 certfile=None, keyfile=None, ssl_enabled=False):
        # Checked before binding so a bad call does not leave a socket open
        if ssl_enabled and (not certfile or not keyfile):
            raise ValueError("SSL enabled but certificate/key files not provided")

        super().__init__(server_address, RequestHandlerClass)
        self.ssl_context = None

        if ssl_enabled:
            try:
                # Create SSL context
                context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
                context.load_cert_chain(certfile, keyfile)

                # Security settings
                context.minimum_version = ssl.TLSVersion.TLSv1_2
                context.set_ciphers('ECDHE+AESGCM:ECDHE+CHACHA20:DHE+AESGCM:DHE+CHACHA20:!aNULL:!MD5:!DSS')

                # Wrap socket with SSL
                self.socket = context.wrap_socket(self.socket, server_side=True)
            except (OSError, ValueError):
                self.server_close()
                raise
            self.ssl_context = context

    def server_bind(self):
        """Override to set socket options"""
        # Reuse address to avoid "Address already in use" errors
        self.socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        # Enable TCP keepalive to detect broken connections
        self.socket.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)

        super().server_bind()


def create_server(server_address, accessor, audit_logger=None,
                  certfile=None, keyfile=None, ssl_enabled=False):
    """Build a server whose handlers share one read-only accessor"""
    handler = partial(
        AllowlistFileHandler,
        accessor=accessor,
        audit_logger=audit_logger,
        hsts=ssl_enabled,
    )
    return SecureHTTPServer(
        server_address,
        handler,
        certfile=certfile,
        keyfile=keyfile,
        ssl_enabled=ssl_enabled
    )


def signal_handler(sig, frame):
    """Handle Ctrl+C / SIGTERM gracefully"""
    print("\n\nShutting down server...")
    sys.exit(0)


def main(argv=None):
    parser = argparse.ArgumentParser(description='Allowlist HTTPS File Server with Audit Logging')
    parser.add_argument('--config', required=True, help='Allowlist JSON file ({"base_dir": ..., "files": {...}})')
    parser.add_argument('--host', default='127.0.0.1', help='Host to bind to (default: 127.0.0.1)')
    parser.add_argument('--port', type=int, default=8443, help='Port to bind to (default: 8443)')
    parser.add_argument('--ssl', action='store_true', help='Enable SSL/TLS')
    parser.add_argument('--cert', help='SSL certificate file path')
    parser.add_argument('--key', help='SSL private key file path')
    parser.add_argument('--log-dir', default='./logs', help='Audit log directory (default: ./logs)')
    parser.add_argument('--quiet', action='store_true', help='Disable console logging')

    args = parser.parse_args(argv)

    # Validate SSL arguments
    if args.ssl:
        if not args.cert or not args.key:
            print("Error: --cert and --key required when --ssl is enabled")
            sys.exit(1)
        if not os.path.exists(args.cert):
            print(f"Error: Certificate file not found: {args.cert}")
            sys.exit(1)
        if not os.path.exists(args.key):
            print(f"Error: Key file not found: {args.key}")
            sys.exit(1)

    # Build the allowlist once; it is never modified afterwards
    try:
        allowlist = load_allowlist(args.config)
    except AllowlistError as e:
        print(f"Error: {e}")
        sys.exit(1)
    accessor = ResourceAccessor(allowlist)

    # Initialize audit logger
    audit_logger = AuditLogger(log_dir=args.log_dir, log_to_console=not args.quiet)

    # Setup signal handlers for graceful shutdown
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    # Create and start server
    httpd = create_server(
        (args.host, args.port),
        accessor,
        audit_logger=audit_logger,
        certfile=args.cert if args.ssl else None,
        keyfile=args.key if args.ssl else None,
        ssl_enabled=args.ssl
    )

    protocol = 'https' if args.ssl else 'http'
    print(f"Starting allowlist file server...")
    print(f"Protocol: {protocol.upper()}")
    print(f"Base directory: {allowlist.base_dir}")
    print(f"Allowlisted keys: {', '.join(allowlist.keys()) or '(none)'}")
    print(f"Server running at {protocol}://{args.host}:{args.port}{pages.READ_PATH}?file=<key>")
    print(f"Audit logs: {args.log_dir}")
    if args.ssl:
        print(f"SSL Certificate: {args.cert}")
        print(f"SSL Key: {args.key}")
    print(f"Press Ctrl+C to stop\n")

    # Log server start
    audit_logger.log_request(
        'SERVER_START',
        'localhost',
        'SYSTEM',
        '/',
        200,
        user_agent='System'
    )

    try:
        httpd.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        # Log server stop
        audit_logger.log_request(
            'SERVER_STOP',
            'localhost',
            'SYSTEM',
            '/',
            200,
            user_agent='System'
        )
        httpd.server_close()
        audit_logger.close()
        print("Server stopped.")


if __name__ == '__main__':
    main()
