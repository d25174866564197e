import logging
import platform
import sys
from typing import Optional

from config import settings

logger = logging.getLogger("edge.backend")


def check_runtime_version(required: str, current: Optional[str] = None) -> bool:
    current = current if current is not None else platform.python_version()
    return current == required


def enforce_runtime_version(
    required: Optional[str] = None,
    current: Optional[str] = None,
) -> None:
    """
    Fail fast before any socket is opened. Exit code 1 on mismatch.
    """
    required = required or settings.REQUIRED_RUNTIME_VERSION
    current = current if current is not None else platform.python_version()

    if not check_runtime_version(required, current):
        logger.error(
            f"Wrong Python version! Required {required}, but running {current}"
        )
        sys.exit(1)
