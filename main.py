#!/usr/bin/env python3
"""
EdgeGate -- challenge-and-verify access gate for an origin service.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8000
  python main.py gen-secret
  python main.py check-cookie '<cookie value>' --ip 203.0.113.7

Environment variables (see core/config.py for the full list):
  COOKIE_SECRET   Hex key for the session cookie, 32 bytes. `gen-secret` prints one.
  COOKIE_SCHEME   aead (default) or mac.
  VERIFIER_MODE   remote (default, needs VERIFY_TOKEN) or local (needs PRIVATE_KEY).
  ORIGIN_URL      Base URL requests are proxied to once the caller holds a pass.
"""

import argparse
import secrets
import sys
from datetime import datetime, timezone

from auth.tokens import InvalidToken, build_codec
from core.config import get_settings


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, proxy_headers=True)
    return 0


def _cmd_gen_secret(args: argparse.Namespace) -> int:
    print(secrets.token_hex(32))
    return 0


def _cmd_check_cookie(args: argparse.Namespace) -> int:
    """Validate a cookie value with the configured codec and report why it fails."""
    codec = build_codec(get_settings())
    try:
        token = codec.validate(args.value, args.ip)
    except InvalidToken as e:
        print(f"  [!] invalid ({e.reason}): {e}")
        return 1
    expires = datetime.fromtimestamp(token.expires_at, tz=timezone.utc)
    print(f"  valid: identity={token.client_identity} expires={expires.isoformat()} scheme={codec.scheme}")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="edgegate",
        description="Challenge-and-verify access gate in front of an origin service.",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the gate under uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.set_defaults(func=_cmd_serve)

    gen = sub.add_parser("gen-secret", help="Print a fresh 256-bit COOKIE_SECRET")
    gen.set_defaults(func=_cmd_gen_secret)

    check = sub.add_parser("check-cookie", help="Validate a session cookie value")
    check.add_argument("value", help="Cookie value (without the name= prefix)")
    check.add_argument("--ip", required=True, help="Client IP the cookie should be bound to")
    check.set_defaults(func=_cmd_check_cookie)

    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
