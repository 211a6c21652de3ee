"""
Run one reconciliation pass against the configured storage backends.

New blobs are registered as photos; the JSON result has the same shape as
``POST /rescan``.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from tagline.config import get_settings
from tagline.dependencies import configure, get_reconciler
from tagline.errors import TaglineError

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Tagline storage rescan")
    parser.add_argument(
        "--indent",
        type=int,
        default=2,
        help="Indentation of the JSON result (0 for a single line)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        help="Logging level",
    )
    args = parser.parse_args()

    logging.basicConfig(level=args.log_level.upper())
    configure(get_settings())

    try:
        result = get_reconciler().run()
    except TaglineError as exc:
        logger.error("Rescan failed: %s", exc.detail)
        return 1

    print(json.dumps(result.as_dict(), indent=args.indent or None))
    return 2 if result.errors else 0


if __name__ == "__main__":
    raise SystemExit(main())
