"""
lockbox - command-line secret manager over a kdbx file
"""
# ==============================================================
# Standard imports
# ==============================================================
import logging
import sys

# ==============================================================
# Other imports
# ==============================================================
import pendulum

from lockbox.config.config_lockbox import *
from lockbox.config.logging_config import setup_logging
from lockbox.config.toml_loader import load_config
from lockbox.exceptions import Cancelled, LockboxError
from lockbox.utils.clip_manager import CLIP_MANAGER_COMMAND, ClipManager
from lockbox.utils.clipboard_utils import Clipboard, DefaultLoader
from lockbox.utils.command_utils import run

logger = logging.getLogger(__name__)


# ==============================================================
# Functions
# ==============================================================

def run_clip_manager(settings) -> None:
    """
    Entry point of the detached clip manager child.

    The hash of the copied value arrives on stdin.
    """
    expected = sys.stdin.read().strip()
    clipboard = Clipboard.new(settings, DefaultLoader(complete=True))
    ClipManager(clipboard, expected).run()


def main(argv: list[str] | None = None) -> int:
    """
    Run one lockbox command.

    Args:
        argv: Arguments without the executable name, sys.argv[1:] if None.

    Returns:
        Process exit code, 0 on success (or a declined confirmation)
        and 1 on failure.

    Side Effects:
        Failures are printed to stderr as `<kind>: <message>` and
        written to the error log.
    """
    args = sys.argv[1:] if argv is None else argv
    try:
        settings = load_config()
        if args[:1] == [CLIP_MANAGER_COMMAND]:
            run_clip_manager(settings)
        else:
            run(args, settings, stdin=sys.stdin, stdout=sys.stdout)
    except Cancelled:
        return 0
    except LockboxError as e:
        logger.error(f"[{pendulum.now().to_iso8601_string()}] {e.short}: {e}\n")
        print(f"{e.short}: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print(f"{Cancelled.short}: interrupted", file=sys.stderr)
        return 1
    return 0


def cli() -> None:
    setup_logging()
    sys.exit(main())


if __name__ == "__main__":
    cli()
