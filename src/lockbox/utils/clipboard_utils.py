import logging
import os
import subprocess
import sys

import pendulum
import pyperclip

from lockbox.config.config_lockbox import *
from lockbox.config.settings import Settings
from lockbox.exceptions import ClipboardError

logger = logging.getLogger(__name__)

# marks the pyperclip backend in place of a command
PYPERCLIP = "pyperclip"


class DefaultLoader:
    """
    Describes the running system for clipboard detection.

    `complete` is set when paste is needed as well as copy (the clip
    manager polls the clipboard).
    """

    def __init__(self, complete: bool = False):
        self.complete = complete

    def name(self) -> str:
        """uname output, used to spot WSL."""
        try:
            result = subprocess.run(["uname", "-a"], capture_output=True, check=True)
        except (OSError, subprocess.CalledProcessError) as e:
            raise ClipboardError(f"unable to read system name: {e}")
        return result.stdout.decode(UTF8)

    def runtime(self) -> str:
        return sys.platform


def detect(loader) -> tuple[list[str], list[str]]:
    """
    Pick copy and paste commands for the current platform.

    Returns:
        A (copy argv, paste argv) tuple.

    Raises:
        ClipboardError: If no clipboard can be found.
    """
    runtime = loader.runtime()
    if runtime == "darwin":
        return ["pbcopy"], ["pbpaste"]
    if runtime == "win32":
        return [PYPERCLIP], [PYPERCLIP]
    if not runtime.startswith("linux"):
        raise ClipboardError("unable to detect clipboard")

    if "microsoft" in loader.name().lower():
        return ["clip.exe"], ["powershell.exe", "-command", "Get-Clipboard"]
    if os.environ.get("WAYLAND_DISPLAY", "").strip():
        return ["wl-copy"], ["wl-paste"]
    if os.environ.get("DISPLAY", "").strip():
        return ["xclip"], ["xclip", "-o"]
    raise ClipboardError("unable to detect clipboard")


class Clipboard:
    """Copy and paste through platform commands."""

    def __init__(self, copying: list[str], pasting: list[str], max_time: int, pidfile: str = ""):
        self.copying = copying
        self.pasting = pasting
        self.max_time = max_time
        self.pidfile = pidfile

    @classmethod
    def new(cls, settings: Settings, loader=None) -> "Clipboard":
        """
        Build a clipboard from configured commands or detection.

        Configured `clip.copy_command` / `clip.paste_command` win over
        detected ones.

        Raises:
            ClipboardError: If the clip feature is disabled or no
                clipboard can be detected.
        """
        if not settings.get_bool(FEATURE_CLIP):
            raise ClipboardError("clip feature is disabled")
        loader = loader or DefaultLoader()
        copying = settings.get_string_array(CLIP_COPY)
        pasting = settings.get_string_array(CLIP_PASTE)
        max_time = settings.get_int(CLIP_TIMEOUT)
        pidfile = settings.get_string(CLIP_PIDFILE)

        if copying and (pasting or not loader.complete):
            return cls(copying, pasting, max_time, pidfile)

        detected_copy, detected_paste = detect(loader)
        return cls(copying or detected_copy, pasting or detected_paste, max_time, pidfile)

    def args(self, copying: bool) -> tuple[str, list[str]]:
        """
        Split the copy (or paste) argv into command and arguments.

        Raises:
            ClipboardError: If the command is not set.
        """
        using = self.copying if copying else self.pasting
        if not using:
            raise ClipboardError(f"command is not set (copying? {str(copying).lower()})")
        return using[0], using[1:]

    def copy_to(self, value: str) -> None:
        """
        Put a value on the clipboard.

        Raises:
            ClipboardError: If the copy command fails.

        Security Notes:
            - The value goes over stdin, never on the command line.
        """
        command, args = self.args(True)
        if command == PYPERCLIP:
            try:
                pyperclip.copy(value)
            except pyperclip.PyperclipException as e:
                raise ClipboardError(f"copy failed: {e}")
            return
        try:
            subprocess.run([command, *args], input=value.encode(UTF8), check=True)
        except (OSError, subprocess.CalledProcessError) as e:
            logger.error(f"[{pendulum.now().to_iso8601_string()}] clipboard copy failed: {command}\n")
            raise ClipboardError(f"copy failed: {e}")

    def paste(self) -> str:
        """
        Current clipboard content, stripped.

        Raises:
            ClipboardError: If the paste command fails.
        """
        command, args = self.args(False)
        if command == PYPERCLIP:
            try:
                return pyperclip.paste().strip()
            except pyperclip.PyperclipException as e:
                raise ClipboardError(f"paste failed: {e}")
        try:
            result = subprocess.run([command, *args], capture_output=True, check=True)
        except (OSError, subprocess.CalledProcessError) as e:
            raise ClipboardError(f"paste failed: {e}")
        return result.stdout.decode(UTF8, errors="replace").strip()
