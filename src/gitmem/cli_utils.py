"""Shared CLI utility functions for gitmem."""

import logging
import sys


def setup_logging(log: str, module_name: str = __name__) -> logging.Logger:
    """Configure logging for the CLI based on the --log option value.

    Args:
        log: Value of the --log CLI option. One of "none", "INFO", "DEBUG"
             (case-insensitive).
        module_name: The ``__name__`` of the calling module.

    Returns:
        A configured :class:`logging.Logger` for the calling module.
    """
    if log.upper() != "NONE":
        log_level = getattr(logging, log.upper())
        logging.basicConfig(
            level=log_level,
            format="[%(levelname)s] %(filename)s:%(lineno)d - %(message)s",
            handlers=[logging.StreamHandler(sys.stderr)],
            force=True,
        )
        logging.getLogger("gitmem").setLevel(log_level)

        module_logger = logging.getLogger(module_name)
        module_logger.info("Logging enabled at %s level", log.upper())
    else:
        # Warnings for skipped items still reach stderr
        logging.basicConfig(
            level=logging.WARNING,
            format="%(levelname)s: %(message)s",
            handlers=[logging.StreamHandler(sys.stderr)],
            force=True,
        )
        logging.getLogger("gitmem").setLevel(logging.WARNING)
        module_logger = logging.getLogger(module_name)

    return module_logger
