# SCOOL LTI Launch and Identity Service
# Copyright (c) 2021-2024  Fresno State University, SCOOL Project Team
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Main entrypoint

Starts the application server:

    python -m ltiauth

Other commands:

    python -m ltiauth initdb <seed.json>
    python -m ltiauth sync-members
    python -m ltiauth sync-grades
"""

import asyncio
import logging
import sys
from pathlib import Path

from . import server, settings

logger = logging.getLogger(f"{__package__}.main")


async def _initdb(seed_file: Path) -> None:
    from . import db
    from .db import seed

    try:
        await seed.run(seed_file)
    finally:
        await db.engine.dispose()


async def _sync_members() -> None:
    from . import aio, db
    from .lti.sync import sync_members

    try:
        async with aio.http_client:
            report = await sync_members()
        logger.warning("member sync: %r", report)
    finally:
        await db.engine.dispose()


async def _sync_grades() -> None:
    from . import aio, db
    from .lti.sync import sync_grades

    try:
        async with aio.http_client:
            report = await sync_grades()
        logger.warning("grade sync: %r", report)
    finally:
        await db.engine.dispose()


def main(argv: list[str]) -> int:
    command = argv[0] if argv else "serve"
    if command in ("serve", "prod"):
        server.start()
    elif command == "initdb":
        seed_file = Path(argv[1] if len(argv) > 1 else settings.BASE_PATH / "seed.json")
        asyncio.run(_initdb(seed_file))
    elif command == "sync-members":
        asyncio.run(_sync_members())
    elif command == "sync-grades":
        asyncio.run(_sync_grades())
    else:
        print(__doc__, file=sys.stderr)  # noqa: T201
        return 2
    return 0


def run() -> None:
    sys.exit(main(sys.argv[1:]))


if __name__ == "__main__":
    run()
