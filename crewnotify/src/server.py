"""
Run the Crew Notify API under uvicorn.

    crew-notify-server [--host HOST] [--port PORT] [--reload] [--no-timer]

Settings come from the environment, with crewnotify/.env filling in
anything unset (CREWNOTIFY_DB_URL, CREWNOTIFY_LOG_LEVEL, VAPID_*,
TIMER_ENABLED). ``--no-timer`` serves the API without the periodic
sweeps, for replicas behind a load balancer where a single worker owns
the timer.
"""

import argparse
import os
import sys
from pathlib import Path

import uvicorn
from dotenv import load_dotenv


APP_PATH = "crewnotify.src.main:app"
ENV_FILE = Path(__file__).resolve().parent.parent / ".env"


def load_env_file() -> None:
    if ENV_FILE.exists():
        load_dotenv(dotenv_path=ENV_FILE, override=False)


def warn_if_web_push_unconfigured() -> None:
    """Web push needs both VAPID keys; mobile push works without them."""
    if os.environ.get("VAPID_PUBLIC_KEY") and os.environ.get("VAPID_PRIVATE_KEY"):
        return
    print(
        "WARNING: VAPID keys missing. Web push delivery is disabled; "
        "mobile push is unaffected.",
        file=sys.stderr,
    )


def parse_arguments(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="crew-notify-server",
        description="Serve the Crew Notify API.",
    )
    parser.add_argument("--host", default="127.0.0.1",
                        help="interface to bind; 0.0.0.0 for all (default: %(default)s)")
    parser.add_argument("--port", type=int, default=8000,
                        help="TCP port (default: %(default)s)")
    parser.add_argument("--reload", action="store_true",
                        help="restart on code changes (development only)")
    parser.add_argument("--no-timer", action="store_true",
                        help="skip the scheduled dispatch and trigger sweeps in this process")
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_arguments(argv)

    load_env_file()
    if args.no_timer:
        os.environ["TIMER_ENABLED"] = "false"
    warn_if_web_push_unconfigured()

    base_url = f"http://{args.host}:{args.port}"
    print(f"Crew Notify listening on {base_url} (docs at {base_url}/docs, reload={args.reload})")

    try:
        uvicorn.run(APP_PATH, host=args.host, port=args.port, reload=args.reload, log_level="info")
    except KeyboardInterrupt:
        print("Stopped.")
        sys.exit(0)


if __name__ == "__main__":
    main()
