import logging
import os
import sys
import time
from enum import Enum
from typing import Callable, TextIO

import pendulum
import pyotp

from lockbox.config.config_lockbox import *
from lockbox.config.settings import Settings
from lockbox.exceptions import TOTPError

logger = logging.getLogger(__name__)


class Generator:
    """
    A time based one-time password generator for a stored otp value.

    Bare seeds are promoted to otpauth urls through the configured
    format before parsing.
    """

    def __init__(self, url: str, otp: pyotp.TOTP):
        self.url = url
        self.otp = otp

    @classmethod
    def new(cls, value: str, settings: Settings) -> "Generator":
        """
        Build a generator from a seed or otpauth url.

        Raises:
            TOTPError: If the value can not be parsed as a totp url.
        """
        url = settings.totp_url(value.strip())
        try:
            otp = pyotp.parse_uri(url)
        except (ValueError, TypeError) as e:
            raise TOTPError(f"invalid otp value: {e}")
        if not isinstance(otp, pyotp.TOTP):
            raise TOTPError("only totp urls are supported")
        return cls(url, otp)

    @property
    def seed(self) -> str:
        return self.otp.secret

    @property
    def algorithm(self) -> str:
        return self.otp.digest().name.upper()

    def code(self, at: pendulum.DateTime | None = None) -> str:
        """
        Compute the code for a point in time (now by default).

        Raises:
            TOTPError: If the seed is not valid base32.
        """
        at = at or pendulum.now()
        try:
            return self.otp.at(int(at.timestamp()))
        except (ValueError, TypeError) as e:
            raise TOTPError(f"unable to generate code: {e}")

    def print(self, writer: TextIO, details: bool = False) -> None:
        """Write the current code, or the url breakdown when `details` is set."""
        if not details:
            writer.write(f"{self.code()}\n")
            return
        writer.write(
            f"url:       {self.url}\n"
            f"seed:      {self.seed}\n"
            f"digits:    {self.otp.digits}\n"
            f"algorithm: {self.algorithm}\n"
            f"period:    {self.otp.interval}\n"
        )


# ============================================================================
# Interactive display
# ============================================================================

class DisplayState(Enum):
    PRIME = "prime"
    WAIT = "wait"
    TICK = "tick"
    EXIT = "exit"


def clear_screen(writer: TextIO) -> None:
    if writer.isatty():
        os.system("cls" if os.name == "nt" else "clear")


class TOTPDisplay:
    """
    Redraw the current code once per wall-clock second until timeout.

    Clock, sleep and screen clearing are injectable for testing.
    """

    def __init__(
        self,
        generator: Generator,
        entry: str,
        settings: Settings,
        writer: TextIO = sys.stdout,
        clock: Callable[[], pendulum.DateTime] = pendulum.now,
        sleep: Callable[[float], None] = time.sleep,
        clear: Callable[[TextIO], None] = clear_screen,
    ):
        self.generator = generator
        self.entry = entry
        self.writer = writer
        self.clock = clock
        self.sleep = sleep
        self.clear = clear
        self.timeout = settings.get_int(TOTP_TIMEOUT)
        self.windows = settings.color_windows() if settings.can_color() else []
        self.state = DisplayState.PRIME

    def render(self, now: pendulum.DateTime) -> str:
        left = 60 - now.second
        countdown = f"({left:02d})"
        if any(w.start <= left < w.end for w in self.windows):
            countdown = f"{COLOR_RED}{countdown}{COLOR_END}"
        code = self.generator.code(now)
        return "\n\n".join([
            f"{now.format(DT_FORMAT_TOTP)} {countdown}",
            f"{self.entry}\n    {code}",
            "-> CTRL+C to exit",
        ])

    def run(self) -> None:
        """
        Run the display loop.

        States:
            PRIME: remember the start time, move to TICK.
            TICK:  exit after the timeout, redraw when the second changed.
            WAIT:  sleep for one tick.
            EXIT:  done.

        KeyboardInterrupt ends the loop quietly.
        """
        started = None
        last_second = None
        try:
            while self.state != DisplayState.EXIT:
                if self.state == DisplayState.PRIME:
                    started = self.clock()
                    self.state = DisplayState.TICK
                elif self.state == DisplayState.TICK:
                    now = self.clock()
                    if (now - started).total_seconds() > self.timeout:
                        self.writer.write("exiting (timeout)\n")
                        self.state = DisplayState.EXIT
                        continue
                    if now.second != last_second:
                        last_second = now.second
                        self.clear(self.writer)
                        self.writer.write(self.render(now) + "\n")
                        self.writer.flush()
                    self.state = DisplayState.WAIT
                elif self.state == DisplayState.WAIT:
                    self.sleep(TOTP_TICK)
                    self.state = DisplayState.TICK
        except KeyboardInterrupt:
            self.state = DisplayState.EXIT
