import argparse
import logging
import sys


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="groupchat", description="Multi-agent group chat with a human in the loop")
    parser.add_argument(
        "-a",
        "--agents",
        default=None,
        help="Comma-separated model ids for new rooms (default: agents.enabled setting)",
    )
    parser.add_argument("-e", "--endpoint", default=None, help="Streaming completion endpoint URL")
    parser.add_argument("-t", "--timeout", type=float, default=None, help="Per-request stream timeout in seconds (default: 10)")
    parser.add_argument("--send-timeout", type=float, default=120.0, help="WebSocket send timeout in seconds (default: 120)")
    parser.add_argument("--host", default="127.0.0.1", help="Host (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8422, help="Port (default: 8422)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log scheduler decisions at DEBUG")
    return parser


def main():
    args = build_parser().parse_args()
    log = logging.getLogger("groupchat")
    log.setLevel(logging.DEBUG)
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(logging.DEBUG if args.verbose else logging.INFO)
    handler.setFormatter(fmt)
    log.addHandler(handler)

    overrides = {
        "completion.endpoint": args.endpoint,
        "stream.request_timeout": args.timeout,
    }
    if args.agents:
        overrides["agents.enabled"] = [a.strip() for a in args.agents.split(",") if a.strip()]

    import uvicorn
    from .server.app import create_app

    app = create_app(send_timeout=args.send_timeout, cli_overrides=overrides)
    print(f"  Local:   http://localhost:{args.port}")
    print()
    log.info(
        "starting groupchat: agents=%s endpoint=%s timeout=%s",
        args.agents or "(settings)",
        args.endpoint or "(settings)",
        args.timeout if args.timeout is not None else "(settings)",
    )
    uvicorn.run(app, host=args.host, port=args.port, log_level="warning", log_config=None)


if __name__ == "__main__":
    main()
