#!/usr/bin/env python3
"""Stand-in service for integration tests.

Serves ``GET /ready`` on 127.0.0.1. The endpoint answers 503 until
``--ready-after`` seconds have passed, then 200. ``--exit-after`` makes the
process exit on its own with ``--exit-code``.
"""

from __future__ import annotations

import argparse
import sys
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fake service for healthgate integration tests")
    parser.add_argument("--port", type=int, required=True)
    parser.add_argument("--ready-after", type=float, default=0.0)
    parser.add_argument("--exit-after", type=float)
    parser.add_argument("--exit-code", type=int, default=1)
    parser.add_argument("--touch", type=Path, help="file to create once listening")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    started = time.monotonic()

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:  # noqa: N802
            ready = time.monotonic() - started >= args.ready_after
            if self.path != "/ready":
                self.send_response(404)
            else:
                self.send_response(200 if ready else 503)
            self.end_headers()

        def log_message(self, format: str, *args: object) -> None:
            sys.stderr.write("request " + (format % args) + "\n")

    server = ThreadingHTTPServer(("127.0.0.1", args.port), Handler)
    if args.touch is not None:
        args.touch.write_text("listening\n", encoding="utf-8")
    if args.exit_after is not None:
        timer = threading.Timer(args.exit_after, server.shutdown)
        timer.daemon = True
        timer.start()
    try:
        server.serve_forever(poll_interval=0.05)
    finally:
        server.server_close()
    return args.exit_code if args.exit_after is not None else 0


if __name__ == "__main__":
    raise SystemExit(main())
