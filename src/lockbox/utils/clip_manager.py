import hashlib
import logging
import os
import subprocess
import sys
import time
from typing import Callable

import pendulum

from lockbox.config.config_lockbox import *
from lockbox.exceptions import ClipboardError
from lockbox.utils.clipboard_utils import Clipboard

logger = logging.getLogger(__name__)

CLIP_MANAGER_COMMAND = "clipmanager"


def content_hash(value: str) -> str:
    """SHA-256 of stripped clipboard content, '' for empty content."""
    value = value.strip()
    if not value:
        return ""
    return hashlib.sha256(value.encode(UTF8)).hexdigest()


def spawn(clipboard: Clipboard, value: str) -> bool:
    """
    Start a detached clip manager watching `value`.

    Nothing is started when no pidfile is configured.

    Returns:
        True if a manager was started.

    Security Notes:
        - Only the hash of the value is handed to the child.
    """
    if not clipboard.pidfile:
        return False
    proc = subprocess.Popen(
        [sys.executable, "-m", "lockbox.Lockbox_CLI", CLIP_MANAGER_COMMAND],
        stdin=subprocess.PIPE,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
    )
    proc.stdin.write(content_hash(value).encode(UTF8))
    proc.stdin.close()
    return True


class ClipManager:
    """
    Clears the clipboard once a copied value has sat there too long.

    The pidfile is the only coordination, the newest manager wins and
    older ones exit when they see a foreign pid.
    """

    def __init__(
        self,
        clipboard: Clipboard,
        expected: str,
        sleep: Callable[[float], None] = time.sleep,
        getpid: Callable[[], int] = os.getpid,
    ):
        self.clipboard = clipboard
        self.expected = expected
        self.sleep = sleep
        self.pid = str(getpid())

    def paste(self) -> str:
        return content_hash(self.clipboard.paste())

    def copy(self, value: str) -> None:
        self.clipboard.copy_to(value)

    def is_current(self) -> bool:
        with open(self.clipboard.pidfile, "r", encoding=UTF8) as f:
            return f.read().strip() == self.pid

    def claim(self) -> None:
        with open(self.clipboard.pidfile, "w", encoding=UTF8) as f:
            f.write(self.pid)

    def run(self) -> None:
        """
        Poll until the clipboard changes, another manager takes over, or
        the timeout passes (then the clipboard is emptied).

        Raises:
            ClipboardError: If no pidfile is set, or after more than
                CLIP_MAX_ERRORS successive failures.
        """
        if not self.clipboard.pidfile:
            raise ClipboardError("pidfile is unset")
        self.claim()
        errors: list[str] = []
        waited = 0
        while True:
            if len(errors) > CLIP_MAX_ERRORS:
                raise ClipboardError("; ".join(errors))
            self.sleep(CLIP_POLL)
            try:
                if not self.is_current():
                    return
                if self.paste() != self.expected:
                    return
                waited += CLIP_POLL
                if waited >= self.clipboard.max_time:
                    self.copy("")
                    return
            except (OSError, ClipboardError) as e:
                logger.error(f"[{pendulum.now().to_iso8601_string()}] clip manager: {e}\n")
                errors.append(str(e))
                continue
            errors = []
