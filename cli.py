from __future__ import annotations

import argparse
import json
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _parse_selector(pairs: list[str]) -> dict[str, str]:
    out: dict[str, str] = {}
    for p in pairs:
        key, sep, value = p.partition("=")
        if not sep or not key.strip():
            raise SystemExit(f"invalid selector {p!r}, expected key=value")
        out[key.strip()] = value.strip()
    return out


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Rolling Restart Controller CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("records", help="List records with their observed state")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)

    s_apply = sub.add_parser("apply", help="Register/update a record (sqlite backend)")
    s_apply.add_argument("--namespace", required=True)
    s_apply.add_argument("--name", required=True)
    s_apply.add_argument("--selector", action="append", default=[], metavar="KEY=VALUE")
    s_apply.add_argument("--interval", default="24h", help="e.g. 30m, 12h, 7d, 2w")

    s_del = sub.add_parser("delete", help="Delete a record (sqlite backend)")
    s_del.add_argument("--namespace", required=True)
    s_del.add_argument("--name", required=True)

    s_rec = sub.add_parser("reconcile", help="Reconcile a record now")
    s_rec.add_argument("--namespace", required=True)
    s_rec.add_argument("--name", required=True)

    s_serve = sub.add_parser("serve", help="Run the controller and its API")
    s_serve.add_argument("--host", default="0.0.0.0")
    s_serve.add_argument("--port", type=int, default=8000)

    args = p.parse_args(argv)

    base = args.api.rstrip("/")

    if args.cmd == "serve":
        import uvicorn

        uvicorn.run("main:app", host=args.host, port=args.port)
        return 0

    if args.cmd == "records":
        _print(requests.get(f"{base}/records", timeout=10).json())
        return 0

    if args.cmd == "events":
        _print(requests.get(f"{base}/events", params={"limit": args.limit}, timeout=10).json())
        return 0

    if args.cmd == "apply":
        payload = {"selector": _parse_selector(args.selector), "interval": args.interval}
        r = requests.put(f"{base}/records/{args.namespace}/{args.name}", json=payload, timeout=30)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "delete":
        r = requests.delete(f"{base}/records/{args.namespace}/{args.name}", timeout=30)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "reconcile":
        # Rollouts may retry conflicting writes; allow more time than a read.
        r = requests.post(f"{base}/records/{args.namespace}/{args.name}/reconcile", timeout=120)
        _print(r.json())
        return 0 if r.ok else 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
