"""Standalone polling worker: `python -m voice_inbox.worker`."""
import signal
import threading

from voice_inbox.core.logging import configure_logging
from voice_inbox.worker.runner import build_runner


def main() -> None:
    configure_logging()
    stop = threading.Event()

    def _stop(_signum, _frame):
        stop.set()

    signal.signal(signal.SIGTERM, _stop)
    signal.signal(signal.SIGINT, _stop)

    runner = build_runner()
    runner.run_forever(stop)


if __name__ == "__main__":
    main()
