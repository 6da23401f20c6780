import logging
import os
import sys
import traceback
from pathlib import Path

import pendulum

from lockbox.config.config_lockbox import LOG_FILE_NAME, STATE_ENV, STATE_HOME


def log_file() -> Path:
    """Location of the error log, under the XDG state directory."""
    state = os.environ.get(STATE_ENV, "")
    root = Path(state) if state else Path.home() / STATE_HOME
    return root / LOG_FILE_NAME


def setup_logging() -> None:

    if logging.getLogger().handlers:
        return  # already configured

    path = log_file()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError:
        # unwritable state dir, errors still reach stderr
        logging.basicConfig(level=logging.ERROR, format="%(message)s")
    else:
        logging.basicConfig(
            filename=path,
            filemode="a",
            level=logging.ERROR,
            format="%(message)s",
        )

    sys.excepthook = log_uncaught_exceptions


def log_uncaught_exceptions(exctype, value, tb):
    if issubclass(exctype, KeyboardInterrupt):
        sys.__excepthook__(exctype, value, tb)
        return

    now = pendulum.now().to_iso8601_string()

    lines = []
    for frame in traceback.extract_tb(tb):
        filename = os.path.basename(frame.filename)
        lines.append(
            f'  File "{filename}", line {frame.lineno}, in {frame.name}'
        )

    trace_summary = "\n".join(reversed(lines)) if lines else "  <no traceback>"
    error_msg = f"{exctype.__name__}: {value}"

    logging.error(
        f"[{now}] Uncaught exception: {error_msg}\n"
        f"Traceback (most recent call last):\n"
        f"{trace_summary}\n"
        f"{error_msg}\n"
    )

    print(f"unexpected error: {error_msg}", file=sys.stderr)
    print(f"details saved to {log_file()}", file=sys.stderr)
