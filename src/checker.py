"""
checker.py

Polls the vaccine spotter API for appointments near the given location and
hits a notification URL (a virtual button by default) when new ones show up.

    python checker.py --latitude 37.77 --longitude -122.42 --search-params CA
"""

from typing import Optional, Sequence

import asyncio
import sys
from dotenv import load_dotenv
from checker_config import load_settings
from checker_constants import (
    DOTENV_PATH,
    EXIT_CONFIG_FILE,
    EXIT_INVALID_PARAMS,
    EXIT_OK,
)
from checker_errors import ConfigError, ConfigFileError
from checker_logger import configureCheckerLogging, getCheckerLogger
from checker_utils import run_checker


logger = getCheckerLogger("checker")


def main(argv: Optional[Sequence[str]] = None) -> int:
    # Real environment variables win over .env
    load_dotenv(DOTENV_PATH, override=False)

    try:
        settings = load_settings(argv)
    except ConfigFileError as e:
        logger.fatal(str(e))
        return EXIT_CONFIG_FILE
    except ConfigError as e:
        for error in e.errors:
            logger.fatal(f"invalid params: {error}")
        return EXIT_INVALID_PARAMS

    configureCheckerLogging(settings.log_level, settings.log_file or None)
    logger.info(
        f"Checking within {settings.distance:g} km of "
        f"{settings.latitude},{settings.longitude} every "
        f"{settings.check_interval:g}s"
    )

    try:
        asyncio.run(run_checker(settings))
    except KeyboardInterrupt:
        logger.info("interrupted, done.")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
