#!/usr/bin/env python3
"""
moltmark CLI — Command-line access to the certification ledger.

Data commands run against the configured store directly (see moltmark.config).

Commands:
    serve    - Run the HTTP tool server
    init-db  - Create the PostgreSQL schema
    status   - Certification status of an agent
    declare  - Declare a capability
    report   - Report a test result
    verify   - Check an agent against a trust threshold
    list     - List certified agents
"""

import argparse
import asyncio
import json
import os
import sys
from typing import Any, Optional

from moltmark.config import Settings, build_store
from moltmark.errors import CertificationError
from moltmark.gateway import CertificationGateway
from moltmark.logs import setup_structured_logging
from moltmark.service import CertificationService


def _output(data: dict, args: argparse.Namespace, human_fn=None):
    """Output data as JSON or pretty-printed."""
    if getattr(args, 'json', False):
        print(json.dumps(data, indent=2, default=str))
    elif human_fn:
        human_fn(data)
    else:
        print(json.dumps(data, indent=2, default=str))


def _settings(args: argparse.Namespace) -> Settings:
    env = dict(os.environ)
    if args.store:
        env["MOLTMARK_STORE"] = args.store
    return Settings.from_env(env)


async def _call(settings: Settings, tool: str, arguments: dict[str, Any]) -> dict:
    store = build_store(settings)
    async with store:
        gateway = CertificationGateway(CertificationService(store))
        envelope = await gateway.call_tool(tool, arguments)
    payload = json.loads(envelope["content"][0]["text"])
    if envelope.get("isError"):
        raise _ToolFailed(payload)
    return payload


class _ToolFailed(Exception):
    def __init__(self, payload: dict):
        self.payload = payload
        super().__init__(payload["error"]["message"])


def _run_tool(args: argparse.Namespace, tool: str, arguments: dict[str, Any], human_fn=None) -> dict:
    settings = _settings(args)
    setup_structured_logging(settings.log_level)
    result = asyncio.run(_call(settings, tool, arguments))
    _output(result, args, human_fn)
    return result


# ─── Commands ──────────────────────────────────────────────────────

def cmd_serve(args):
    """Run the HTTP tool server under uvicorn."""
    import uvicorn
    from moltmark.api import create_app

    settings = _settings(args).with_overrides(host=args.host, port=args.port)
    app = create_app(settings=settings)
    print(f"🔐 moltmark server on {settings.host}:{settings.port}", file=sys.stderr)
    print("   Tools: /mcp/tools | Call: /mcp/call | Health: /health", file=sys.stderr)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level="warning")
    return {"host": settings.host, "port": settings.port}


def cmd_init_db(args):
    """Connect once so the schema gets created."""
    settings = _settings(args)
    store = build_store(settings)

    async def _init():
        async with store:
            return await store.health_check()

    healthy = asyncio.run(_init())
    result = {"store": settings.store_backend, "initialized": healthy}
    _output(result, args, lambda d: print(f"✅ Schema ready ({d['store']})"))
    return result


def cmd_status(args):
    def human(d):
        if not d["found"]:
            print(f"❓ {d['message']}")
            return
        a = d["agent"]
        mark = "✅ certified" if a["certified"] else "⬜ not certified"
        print(f"{a['id']}: {a['trust_score']:.2f}% ({mark})")
        if a["certified_at"]:
            print(f"   First certified: {a['certified_at']}")
        s = d["summary"]
        print(f"   Tests: {s['total']} total, {s['passed']} passed, {s['failed']} failed")
        for c in d["capabilities"]:
            print(f"   • {c['name']}: {c['description']}")
        for t in d["recent_tests"]:
            icon = "✓" if t["result"] == "pass" else "✗"
            print(f"   {icon} {t['capability']} @ {t['tested_at']}")

    return _run_tool(args, "get_certification", {"agent_id": args.agent_id}, human)


def cmd_declare(args):
    return _run_tool(args, "declare_capability", {
        "agent_id": args.agent_id,
        "capability_name": args.name,
        "description": args.description,
    }, lambda d: print(f"✅ {d['message']}"))


def cmd_report(args):
    def human(d):
        st = d["agent_status"]
        mark = "certified" if st["certified"] else "not certified"
        print(f"✅ Recorded #{d['test_result']['id']}: {d['test_result']['result']}")
        print(f"   Trust score: {st['trust_score']:.2f}% ({mark})")

    return _run_tool(args, "report_test_result", {
        "agent_id": args.agent_id,
        "capability": args.capability,
        "result": args.result,
        "evidence": args.evidence,
    }, human)


def cmd_verify(args):
    def human(d):
        icon = "✅" if d["verified"] else "❌"
        print(f"{icon} {d['reason']}")

    return _run_tool(args, "verify_agent", {
        "agent_id": args.agent_id,
        "min_trust_score": args.min_trust_score,
    }, human)


def cmd_list(args):
    def human(d):
        scope = f" matching '{d['filter']}'" if d["filter"] else ""
        print(f"🏅 {d['count']} certified agent(s){scope}")
        for a in d["agents"]:
            print(f"   {a['id']:<32} {a['trust_score']:6.2f}%  since {a['certified_at']}")

    arguments = {}
    if args.capability:
        arguments["capability_filter"] = args.capability
    return _run_tool(args, "list_verified_agents", arguments, human)


# ─── Parser ────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="moltmark",
        description="moltmark — capability certification ledger for AI agents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--json", action="store_true", help="Machine-readable JSON output")
    parser.add_argument("--store", choices=["postgres", "memory"],
                        help="Override MOLTMARK_STORE")

    sub = parser.add_subparsers(dest="command", help="Available commands")

    p = sub.add_parser("serve", help="Run the HTTP tool server")
    p.add_argument("--host", help="Bind address (default: MOLTMARK_HOST)")
    p.add_argument("--port", type=int, help="Port (default: MOLTMARK_PORT)")

    sub.add_parser("init-db", help="Create the database schema")

    p = sub.add_parser("status", help="Certification status of an agent")
    p.add_argument("agent_id", help="Agent ID")

    p = sub.add_parser("declare", help="Declare a capability")
    p.add_argument("agent_id", help="Agent ID")
    p.add_argument("name", help="Capability name")
    p.add_argument("description", help="What the capability does")

    p = sub.add_parser("report", help="Report a test result")
    p.add_argument("agent_id", help="Agent ID")
    p.add_argument("capability", help="Capability tested")
    p.add_argument("result", choices=["pass", "fail"], help="Test outcome")
    p.add_argument("-e", "--evidence", default="", help="Evidence of the test run")

    p = sub.add_parser("verify", help="Check an agent against a trust threshold")
    p.add_argument("agent_id", help="Agent ID")
    p.add_argument("min_trust_score", type=float, help="Minimum trust score (0-100)")

    p = sub.add_parser("list", help="List certified agents")
    p.add_argument("-c", "--capability", help="Capability name substring filter")

    return parser


def main(argv: Optional[list[str]] = None) -> Optional[dict]:
    """CLI entry point. Returns result dict for testing."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "serve": cmd_serve,
        "init-db": cmd_init_db,
        "status": cmd_status,
        "declare": cmd_declare,
        "report": cmd_report,
        "verify": cmd_verify,
        "list": cmd_list,
    }

    try:
        return commands[args.command](args)
    except _ToolFailed as e:
        print(json.dumps(e.payload, indent=2), file=sys.stderr)
        sys.exit(1)
    except CertificationError as e:
        print(json.dumps(e.to_dict(), indent=2), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
