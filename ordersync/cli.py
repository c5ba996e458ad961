"""Command-line interface for ordersync."""

from __future__ import annotations

import argparse
from pathlib import Path

from ordersync.config import TrackingConfig, load_tracking_config
from ordersync.connectors.api import OrderApiClient
from ordersync.core.models import OrderSnapshot
from ordersync.core.scheduling import RealTimeScheduler
from ordersync.core.timeline import TimelineView, build_timeline_view
from ordersync.ops.logging import EventLogger, JsonEventLogger, NullEventLogger
from ordersync.ops.secrets import read_secret_env
from ordersync.session import OrderTracker, SyncSession

TOKEN_ENV_VAR = "ORDERSYNC_TOKEN"


def render_timeline(view: TimelineView) -> str:
    """Plain-text rendering of one timeline view."""
    lines = [f"{view.step_caption} ({view.mobile_percent}%)"]
    for index, step in enumerate(view.steps):
        if index == view.current_index:
            marker = ">"
        elif view.is_completed(index):
            marker = "x"
        else:
            marker = " "
        icon = f"{step.icon} " if step.icon else ""
        lines.append(f"[{marker}] {index + 1}. {icon}{step.label} - {step.description}")
    return "\n".join(lines)


def run_timeline(fulfillment_type: str, payment_method: str, status: str) -> str:
    return render_timeline(build_timeline_view(fulfillment_type, payment_method, status))


def _describe_snapshot(snapshot: OrderSnapshot, source: str) -> str:
    return f"[{source}] order {snapshot.order_no}: {snapshot.status}"


def run_track(
    *,
    config: TrackingConfig,
    order_no: str,
    token: str,
    duration_seconds: float | None = None,
) -> int:
    """Track one order on the calling thread until it goes idle or time runs out."""
    logger: EventLogger = NullEventLogger()
    if config.log_path is not None:
        logger = JsonEventLogger(config.log_path)

    client = OrderApiClient(
        base_url=config.api_base_url,
        timeout_seconds=config.request_timeout_seconds,
        orders_path=config.orders_path,
    )
    scheduler = RealTimeScheduler()
    tracker = OrderTracker(
        fetch_order=client.fetch_order,
        scheduler=scheduler,
        push_config=config.push_config(),
        poll_config=config.poll,
        expiry_config=config.expiry,
        logger=logger,
    )

    session = tracker.track(order_no, token)
    try:
        snapshot = session.current_snapshot
        if snapshot is not None:
            print(_describe_snapshot(snapshot, "initial"))
        session.store.subscribe(
            lambda changed, source: print(_describe_snapshot(changed, source))
        )
        finished = scheduler.run_until(
            stop_condition=lambda: session.is_idle,
            timeout_seconds=duration_seconds,
        )
        return _report_outcome(session, timed_out=not finished)
    finally:
        tracker.close()


def _report_outcome(session: SyncSession, *, timed_out: bool) -> int:
    if timed_out:
        print(f"Stopped after duration; state={session.state}")
    else:
        print(f"Session finished; state={session.state}")
    if session.error is not None:
        print(session.error.user_message)
    timeline = session.current_timeline
    if timeline is not None:
        print(render_timeline(timeline))
    return 1 if session.state == "failed" else 0


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser."""
    parser = argparse.ArgumentParser(
        prog="ordersync",
        description="Keep a remote order's status in sync over push and adaptive polling.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    timeline_parser = subparsers.add_parser(
        "timeline",
        help="Print the progress timeline for one status.",
    )
    timeline_parser.add_argument(
        "--type",
        default="pickup",
        help="Fulfillment type: delivery, dine_in or pickup. Default: pickup",
    )
    timeline_parser.add_argument(
        "--payment",
        default="cash",
        help="Payment method, e.g. qris or cash. Default: cash",
    )
    timeline_parser.add_argument(
        "--status",
        required=True,
        help="Backend order status.",
    )

    track_parser = subparsers.add_parser(
        "track",
        help="Track one order live until it finishes.",
    )
    track_parser.add_argument("--order", required=True, help="Order number.")
    track_parser.add_argument(
        "--token",
        default=None,
        help=f"Order access token. Default: ${TOKEN_ENV_VAR}",
    )
    track_parser.add_argument(
        "--config",
        default=None,
        help="Path to ordersync.toml",
    )
    track_parser.add_argument(
        "--api-base-url",
        default=None,
        help="API base URL when no config file is given.",
    )
    track_parser.add_argument(
        "--ws-base-url",
        default=None,
        help="Push base URL when no config file is given. Push is off without it.",
    )
    track_parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after this many seconds. Default: run until idle",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == "timeline":
            print(
                run_timeline(
                    fulfillment_type=str(args.type),
                    payment_method=str(args.payment),
                    status=str(args.status),
                )
            )
            return 0

        if args.command == "track":
            config = _resolve_track_config(args)
            token = args.token or read_secret_env(TOKEN_ENV_VAR, required=True)
            return run_track(
                config=config,
                order_no=str(args.order),
                token=str(token),
                duration_seconds=args.duration,
            )
    except Exception as error:
        parser.exit(status=1, message=f"Error: {error}\n")

    parser.print_help()
    return 1


def _resolve_track_config(args: argparse.Namespace) -> TrackingConfig:
    if args.config:
        config = load_tracking_config(Path(args.config))
        if args.api_base_url:
            config.api_base_url = str(args.api_base_url).rstrip("/")
        if args.ws_base_url:
            config.ws_base_url = str(args.ws_base_url).rstrip("/")
        return config
    if not args.api_base_url:
        msg = "track needs --config or --api-base-url."
        raise ValueError(msg)
    return TrackingConfig(api_base_url=str(args.api_base_url), ws_base_url=args.ws_base_url)
