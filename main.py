#!/usr/bin/env python3
"""
Organizer backend entrypoint.

  python main.py --serve [--host 0.0.0.0] [--port 8080]
  python main.py --init-db
"""

import argparse
import logging
import sys
from typing import List, Optional

logger = logging.getLogger("organizer.main")

#
# NOTE: Keep organizer imports lazy (inside functions) so `--help` works without the
# server dependencies configured.
#


def init_db() -> int:
    """Create the schema (idempotent) and exit."""
    from organizer.config import load_settings
    from organizer.storage import open_backends

    settings = load_settings()
    if settings.database.in_memory:
        logger.error("--init-db needs a Postgres database (ORGANIZER_IN_MEMORY_BACKENDS is set)")
        return 2
    backends = open_backends(settings)
    backends.close()
    logger.info("Schema is up to date")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Organizer API: Google sign-in with per-user notes, reminders and contacts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--serve", action="store_true", help="Run the HTTP API server")
    parser.add_argument("--init-db", action="store_true", help="Create database tables if absent, then exit")
    parser.add_argument("--host", default="0.0.0.0", help="Server bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8080, help="Server listen port (default: 8080)")
    args = parser.parse_args(argv)

    from organizer.api.app import configure_logging
    from organizer.errors import ConfigError, StorageError

    configure_logging()
    try:
        if args.init_db:
            return init_db()
        if args.serve:
            from organizer.api.app import run

            run(host=args.host, port=args.port)
            return 0
    except ConfigError as e:
        logger.critical("Configuration error, refusing to start: %s", e.message)
        return 1
    except StorageError as e:
        logger.critical("Database unavailable at startup: %s", e.message)
        return 1

    parser.print_help()
    return 2


if __name__ == "__main__":
    sys.exit(main())
