#!/usr/bin/env python3
"""
portal — Command-line interface for the Rafiq citizen portal.

Every command except ``serve`` goes through the offline client, so it keeps
working (from the local cache and the offline FAQ) when the API is down.

Usage:
    portal serve --port 4001
    portal status
    portal services --category documents
    portal ask "Pièces pour passeport ?" --lang ar
    portal feedback 5 --comment "Très utile"
    portal sync
"""
import argparse
import asyncio
import json
import sys

from portal.config import settings
from portal.logging_config import setup_logging
from portal.client import OfflinePortal, PortalClientError


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


async def _with_portal(args, action):
    portal = OfflinePortal.from_settings(settings)
    if args.url:
        portal.api.base_url = args.url.rstrip("/")
    try:
        await portal.start()
        return await action(portal)
    finally:
        await portal.close()


def cmd_serve(args):
    """Run the API server."""
    import uvicorn

    uvicorn.run("portal.main:app", host=args.host, port=args.port, reload=args.reload)


async def cmd_status(args):
    """Connectivity, queue depth and the last sync."""
    async def action(portal: OfflinePortal):
        online = portal.monitor.is_online
        print(f"API: {'✅ online' if online else '❌ offline'} ({portal.api.base_url})")
        print(f"Local cache: {'ok' if portal.store.available else 'unavailable'}")
        print(f"Queued writes: {await portal.store.queue.size()}")
        report = portal.coordinator.last_report
        if report is not None:
            print(f"Last sync: removed={report.removed} kept={report.retained} error={report.error or '-'}")
    await _with_portal(args, action)


async def cmd_services(args):
    """List services (remote, or cached when offline)."""
    async def action(portal: OfflinePortal):
        data = await portal.list_services(category=args.category, search=args.search)
        print(f"{data['total']} service(s) [{data['source']}]")
        for svc in data["services"]:
            print(f"  {svc.get('id', '?'):28s} {svc.get('category', ''):12s} {svc.get('title', '')}")
    await _with_portal(args, action)


async def cmd_ask(args):
    """Ask the assistant."""
    async def action(portal: OfflinePortal):
        reply = await portal.ask(args.question, language=args.lang)
        print(reply["message"])
        if args.verbose:
            print(f"\n--- source: {reply.get('source')} | recommendations: {reply.get('recommendations')} ---")
    await _with_portal(args, action)


async def cmd_feedback(args):
    """Submit feedback (queued when offline)."""
    async def action(portal: OfflinePortal):
        result = await portal.submit_feedback(
            args.rating, comment=args.comment, suggestion=args.suggestion, service_id=args.service,
        )
        if result["status"] == "sent":
            print("✅ Feedback sent")
        elif result["status"] == "queued":
            print(f"📥 Offline: feedback queued (#{result['queue_id']}), it will sync on reconnect")
        else:
            print("❌ Feedback could not be saved")
            sys.exit(1)
    await _with_portal(args, action)


async def cmd_sync(args):
    """Drain the offline queue now."""
    async def action(portal: OfflinePortal):
        # start() already drained if the API came back; drain again for what remains
        report = await portal.sync_now()
        if args.verbose:
            _print_json(report.to_dict())
        elif report.error:
            print(f"❌ Sync failed: {report.error} ({report.retained} item(s) kept)")
        else:
            print(f"✅ Synced: {report.removed} removed, {report.retained} kept for retry")
    await _with_portal(args, action)


def main():
    parser = argparse.ArgumentParser(
        prog="portal",
        description="Rafiq portal CLI — offline-first access to the citizen portal",
    )
    parser.add_argument("--url", default=None, help=f"API base URL (default: {settings.client_api_url})")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    sub = parser.add_subparsers(dest="command", help="Command")

    # serve
    p_serve = sub.add_parser("serve", help="Run the API server")
    p_serve.add_argument("--host", default="0.0.0.0")
    p_serve.add_argument("--port", type=int, default=4001)
    p_serve.add_argument("--reload", action="store_true")
    p_serve.set_defaults(func=cmd_serve)

    # status
    p_status = sub.add_parser("status", help="Connectivity and queue status")
    p_status.set_defaults(func=cmd_status)

    # services
    p_services = sub.add_parser("services", help="List services")
    p_services.add_argument("--category", "-c", default=None)
    p_services.add_argument("--search", "-s", default=None)
    p_services.set_defaults(func=cmd_services)

    # ask
    p_ask = sub.add_parser("ask", help="Ask the assistant")
    p_ask.add_argument("question")
    p_ask.add_argument("--lang", choices=["fr", "ar"], default="fr")
    p_ask.set_defaults(func=cmd_ask)

    # feedback
    p_feedback = sub.add_parser("feedback", help="Submit feedback")
    p_feedback.add_argument("rating", type=int, choices=range(1, 6))
    p_feedback.add_argument("--comment", default=None)
    p_feedback.add_argument("--suggestion", default=None)
    p_feedback.add_argument("--service", default=None, help="Service id")
    p_feedback.set_defaults(func=cmd_feedback)

    # sync
    p_sync = sub.add_parser("sync", help="Replay queued offline writes")
    p_sync.set_defaults(func=cmd_sync)

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        return

    setup_logging(settings.log_level, settings.log_json)

    if not asyncio.iscoroutinefunction(args.func):
        args.func(args)
        return
    try:
        asyncio.run(args.func(args))
    except PortalClientError as e:
        print(f"❌ {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
