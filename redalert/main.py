from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from .config import load_config
from .monitor import Monitor

log = logging.getLogger("redalert")


def _setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
    )


async def _run(monitor: Monitor) -> None:
    loop = asyncio.get_running_loop()
    try:
        # SIGUSR1 = manual test alert
        loop.add_signal_handler(signal.SIGUSR1, monitor.trigger_test)
    except (NotImplementedError, AttributeError):
        log.info("SIGUSR1 test trigger unavailable on this platform")
    await monitor.run()


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Red alert monitor")
    ap.add_argument("--config", default="/etc/redalert/config.yaml")
    ap.add_argument("--log-level", default="INFO")
    args = ap.parse_args(argv)

    _setup_logging(args.log_level)

    cfg = load_config(args.config)
    monitor = Monitor(cfg)
    try:
        asyncio.run(_run(monitor))
    except KeyboardInterrupt:
        log.info("Interrupted; shutting down")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
