"""
OSINTForge CLI.

Usage examples:
    osintforge serve
    osintforge tools
    osintforge verify --secret s3cr3t --signature sha256=... body.json
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional


def _serve(args: argparse.Namespace) -> int:
    import uvicorn
    from osintforge.base.config import get_config, setup_logging
    from osintforge.server.api import create_app

    config = get_config()
    setup_logging(config)
    print("🚀 Starting OSINTForge intake and worker pool...")
    uvicorn.run(
        create_app(),
        host=args.host or config.api_host,
        port=args.port or config.api_port,
    )
    return 0


def _tools(args: argparse.Namespace) -> int:
    from osintforge.engine.sandbox import SandboxRunner
    from osintforge.toolkit.registry import build_default_registry

    registry = build_default_registry(SandboxRunner())
    rows = [meta.to_dict() for meta in registry.all_metadata()]
    if args.json:
        print(json.dumps(rows, indent=2))
        return 0
    for meta in rows:
        limit = meta["rate_limit"]
        budget = f"{limit['max_requests']}/{limit['window_ms'] // 1000}s" if limit else "-"
        print(f"{meta['name']:<20} {meta['category']:<9} {meta['sandbox_image']:<26} {budget}")
    return 0


def _verify(args: argparse.Namespace) -> int:
    from osintforge.webhooks.signing import verify_signature

    body = Path(args.body).read_text(encoding="utf-8") if args.body != "-" else sys.stdin.read()
    if verify_signature(body, args.signature, args.secret):
        print("✅ Signature valid")
        return 0
    print("❌ Signature mismatch")
    return 1


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="osintforge", description="OSINTForge Command Interface")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP intake, worker pool and webhook retries")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.set_defaults(func=_serve)

    tools = sub.add_parser("tools", help="List registered tools")
    tools.add_argument("--json", action="store_true")
    tools.set_defaults(func=_tools)

    verify = sub.add_parser("verify", help="Check a webhook signature against a raw body")
    verify.add_argument("--secret", required=True)
    verify.add_argument("--signature", required=True)
    verify.add_argument("body", help="File holding the exact request body, or - for stdin")
    verify.set_defaults(func=_verify)

    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
