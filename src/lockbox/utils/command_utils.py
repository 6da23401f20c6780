import json
import logging
import os
import re
import sys
from dataclasses import dataclass
from typing import Callable, TextIO

import pendulum

from lockbox.config.config_lockbox import *
from lockbox.config.settings import Settings
from lockbox.exceptions import (
    BadPath, Cancelled, ClipboardError, Conflict, FeatureDisabled, LockboxError, NotFound, ReadOnly,
)
from lockbox.utils import help_utils
from lockbox.utils.clip_manager import spawn
from lockbox.utils.clipboard_utils import Clipboard
from lockbox.utils.credentials import resolve_credentials
from lockbox.utils.Entity import Field
from lockbox.utils.hasher import ValueMode
from lockbox.utils.kdbx_utils import READONLY_MESSAGE, MoveRequest, Transaction
from lockbox.utils.path_utils import (
    base, directory, is_directory, is_leaf_attribute, new_path, split,
)
from lockbox.utils.query_utils import QueryMode, QueryOptions, collect
from lockbox.utils.totp_utils import Generator, TOTPDisplay
from lockbox.utils.user_input import confirm, is_pipe, read_new_password, read_value

logger = logging.getLogger(__name__)


class CommandContext:
    """
    Everything a command needs: settings, arguments and streams.

    The transaction is created on first use so informational commands
    work without a store.
    """

    def __init__(
        self,
        settings: Settings,
        args: list[str],
        stdin: TextIO = sys.stdin,
        stdout: TextIO = sys.stdout,
    ):
        self.settings = settings
        self.args = args
        self.stdin = stdin
        self.stdout = stdout
        self._tx: Transaction | None = None

    def transaction(self) -> Transaction:
        if self._tx is None:
            self._tx = Transaction(self.settings)
        return self._tx

    def write(self, text: str) -> None:
        self.stdout.write(f"{text}\n")

    def is_interactive(self) -> bool:
        return self.stdout.isatty()

    def confirm(self, prompt: str) -> bool:
        """Ask on a terminal, piped input counts as yes."""
        if is_pipe(self.stdin):
            return True
        return confirm(prompt, self.stdin, self.stdout)

    def require_writable(self) -> None:
        if self.settings.readonly:
            raise ReadOnly(READONLY_MESSAGE)


@dataclass
class Command:
    name: str
    handler: Callable[[CommandContext], None]
    args: str = ""
    description: str = ""
    mutating: bool = False
    feature: str = ""


# ============================================================================
# Argument helpers
# ============================================================================

def one_arg(ctx: CommandContext, what: str) -> str:
    if len(ctx.args) != 1:
        raise LockboxError(f"{what} required")
    return ctx.args[0]


def optional_filter(ctx: CommandContext) -> str:
    if len(ctx.args) > 1:
        raise LockboxError("too many arguments (none or filter)")
    return ctx.args[0] if ctx.args else ""


def compile_filter(pattern: str):
    if not pattern:
        return None
    try:
        return re.compile(pattern)
    except re.error as e:
        raise LockboxError(f"invalid filter: {e}")


def field_paths(ctx: CommandContext, options: QueryOptions, pattern: str = "") -> list[str]:
    """Every `<group>/<field>` path for the matched entities."""
    matcher = compile_filter(pattern)
    results = []
    for entity in collect(ctx.transaction().query(options)):
        paths = sorted(new_path(entity.path, key) for key in entity.values)
        results.extend(p for p in paths if matcher is None or matcher.search(p))
    return results


def copy_value(ctx: CommandContext, clipboard: Clipboard, value: str) -> None:
    """Copy a value and start the clip manager that clears it later."""
    clipboard.copy_to(value)
    if spawn(clipboard, value):
        ctx.write(f"clipboard will clear in {clipboard.max_time} seconds")


def entry_value(ctx: CommandContext, entry: str) -> str:
    """
    Plaintext value of one field.

    Raises:
        NotFound: If the entity or the field does not exist.
    """
    group, field = split(entry)
    entity = ctx.transaction().get(group, ValueMode.SECRET)
    if entity is None:
        raise NotFound(f"entity not found: {group}")
    value = entity.value(field.name_lower)
    if not value:
        raise NotFound(f"field not set: {entry}")
    return value


# ============================================================================
# Read commands
# ============================================================================

def cmd_ls(ctx: CommandContext) -> None:
    pattern = optional_filter(ctx)
    for path in field_paths(ctx, QueryOptions(mode=QueryMode.LIST), pattern):
        ctx.write(path)


def cmd_groups(ctx: CommandContext) -> None:
    matcher = compile_filter(optional_filter(ctx))
    for entity in collect(ctx.transaction().query(QueryOptions(mode=QueryMode.LIST))):
        if matcher is None or matcher.search(entity.path):
            ctx.write(entity.path)


def cmd_find(ctx: CommandContext) -> None:
    criteria = one_arg(ctx, "search criteria")
    for path in field_paths(ctx, QueryOptions(criteria=criteria, mode=QueryMode.FIND)):
        ctx.write(path)


def cmd_show(ctx: CommandContext) -> None:
    ctx.write(entry_value(ctx, one_arg(ctx, "entry")))


def cmd_clip(ctx: CommandContext) -> None:
    """
    Copy a value to the clipboard.

    Security Notes:
        - A clip manager clears the value later when a pidfile is set.
    """
    entry = one_arg(ctx, "entry")
    clipboard = Clipboard.new(ctx.settings)
    copy_value(ctx, clipboard, entry_value(ctx, entry))


def cmd_json(ctx: CommandContext) -> None:
    options = QueryOptions(mode=QueryMode.LIST, values=ValueMode.JSON, path_filter=optional_filter(ctx))
    output = {}
    for entity in collect(ctx.transaction().query(options)):
        output[entity.path] = entity.values
    ctx.write(json.dumps(output, indent=JSON_INDENT, sort_keys=True))


# ============================================================================
# Write commands
# ============================================================================

def cmd_insert(ctx: CommandContext) -> None:
    """
    Set one field, merged with the entity's existing fields.

    Raises:
        BadField: If the field is not allowed or the value is invalid.
        Cancelled: If the user declines overwriting an existing value.
        TOTPError: If an otp value does not generate a code.
    """
    ctx.require_writable()
    entry = one_arg(ctx, "entry")
    group, field = split(entry)
    tx = ctx.transaction()
    existing = tx.get(group, ValueMode.SECRET)

    piped = is_pipe(ctx.stdin)
    if existing is not None and existing.has(field.name_lower) and not piped:
        if not confirm("overwrite existing", ctx.stdin, ctx.stdout):
            raise Cancelled("insert aborted")

    value = field.check(read_value(field, ctx.stdin, ctx.stdout))
    if field == Field.OTP and ctx.settings.get_bool(TOTP_CHECK_ON_INSERT):
        Generator.new(value, ctx.settings).code()

    values = existing.fields() if existing is not None else {}
    values[field] = value
    tx.insert(group, values)
    if not piped:
        ctx.write("")


def cmd_unset(ctx: CommandContext) -> None:
    ctx.require_writable()
    entry = one_arg(ctx, "entry")
    group, field = split(entry)
    tx = ctx.transaction()
    existing = tx.get(group, ValueMode.BLANK)
    if existing is None:
        raise NotFound(f"{entry} does not exist")
    if not existing.has(field.name_lower):
        raise NotFound(f"field not set: {entry}")
    if not ctx.confirm(f"unset: {entry}"):
        raise Cancelled("unset aborted")
    ctx.write(f"clearing value from: {entry}")
    tx.unset(group, field)


def cmd_rm(ctx: CommandContext) -> None:
    ctx.require_writable()
    pattern = one_arg(ctx, "entry")
    tx = ctx.transaction()
    matches = tx.match_path(pattern)
    if not matches:
        raise NotFound(f"no entities matching: {pattern}")
    suffix = "y"
    if len(matches) > 1:
        suffix = "ies"
        ctx.write("selected entities:")
        for entity in matches:
            ctx.write(f" {entity.path}")
        ctx.write("")
    if not ctx.confirm(f"delete entr{suffix}"):
        raise Cancelled("remove aborted")
    if len(matches) == 1:
        tx.remove(matches[0])
    else:
        tx.remove_all(matches)


def cmd_mv(ctx: CommandContext) -> None:
    """
    Move one entity, or many entities from one group into another.

    Raises:
        NotFound: If nothing matches the source.
        BadPath: If a multi-entity move does not target a `/` path.
        Conflict: If sources span groups, or a destination exists in a
            multi-entity move.
    """
    ctx.require_writable()
    if len(ctx.args) != 2:
        raise LockboxError("src/dst required for move")
    src, dst = ctx.args
    tx = ctx.transaction()
    matches = tx.match_path(src)
    if not matches:
        raise NotFound("no source entries matched")

    requests = []
    if len(matches) == 1:
        target = new_path(directory(dst), base(matches[0].path)) if is_directory(dst) else dst
        if tx.get(target, ValueMode.BLANK) is not None and not ctx.confirm("overwrite destination"):
            raise Cancelled("move aborted")
        requests.append(MoveRequest(matches[0], target))
    else:
        if not is_directory(dst):
            raise BadPath(f"{dst} must be a path, not an entry")
        src_dir = directory(src)
        dst_dir = directory(dst)
        for entity in matches:
            if directory(entity.path) != src_dir:
                raise Conflict("multiple moves can only be done at a leaf level")
            target = new_path(dst_dir, base(entity.path))
            if tx.get(target, ValueMode.BLANK) is not None:
                raise Conflict("unable to overwrite entries when moving multiple items")
            requests.append(MoveRequest(entity, target))
    tx.move(requests)


def parse_rekey_args(args: list[str]) -> tuple[str, bool]:
    """
    Parse `[-keyfile <path>|-keyfile=<path>] [-nokey]`.

    Returns:
        (key file path or '', no key flag)
    """
    key_file = ""
    no_key = False
    remaining = list(args)
    while remaining:
        arg = remaining.pop(0)
        if arg == "-nokey":
            no_key = True
        elif arg.startswith("-keyfile="):
            key_file = arg.split("=", 1)[1]
        elif arg == "-keyfile":
            if not remaining:
                raise LockboxError("-keyfile requires a path")
            key_file = remaining.pop(0)
        else:
            raise LockboxError(f"unknown rekey argument: {arg}")
    return key_file, no_key


def cmd_rekey(ctx: CommandContext) -> None:
    """
    Change the store credentials.

    Security Notes:
        - The new password is read without echo and asked twice on a
          terminal.
    """
    ctx.require_writable()
    key_file, no_key = parse_rekey_args(ctx.args)
    password = None if no_key else read_new_password(ctx.stdin, ctx.stdout)
    ctx.transaction().rekey(password, key_file)


# ============================================================================
# TOTP
# ============================================================================

TOTP_SHOW = "show"
TOTP_LIST = "ls"

TOTP_MODES = {
    "clip": "copy totp code to clipboard",
    TOTP_LIST: "list entries with totp settings",
    "minimal": "display one generated code (no details)",
    "once": "display the first generated code",
    "seed": "show the TOTP seed (only)",
    TOTP_SHOW: "show the totp entry",
    "url": "display TOTP url information",
}


def totp_generator(ctx: CommandContext, entry: str) -> Generator:
    group = directory(entry) if is_leaf_attribute(entry, Field.OTP.name_lower) else entry
    entity = ctx.transaction().get(group, ValueMode.SECRET)
    if entity is None:
        raise NotFound(f"entity not found: {group}")
    value = entity.value(Field.OTP.name_lower)
    if not value:
        raise NotFound(f"no otp set for: {group}")
    return Generator.new(value, ctx.settings)


def cmd_totp(ctx: CommandContext) -> None:
    """
    Generate totp codes for an entity's otp field.

    `lb totp <entry>` is the same as `lb totp show <entry>`.

    Raises:
        FeatureDisabled: If the totp feature is off.
    """
    if not ctx.settings.get_bool(FEATURE_TOTP):
        raise FeatureDisabled("totp feature is disabled")
    args = ctx.args
    if not args:
        raise LockboxError("not enough arguments for totp")

    if args[0] == TOTP_LIST:
        matcher = compile_filter(args[1] if len(args) == 2 else "")
        if len(args) > 2:
            raise LockboxError("too many arguments (none or filter)")
        for entity in collect(ctx.transaction().query(QueryOptions(mode=QueryMode.LIST))):
            if entity.has(Field.OTP.name_lower) and (matcher is None or matcher.search(entity.path)):
                ctx.write(entity.path)
        return

    if len(args) == 1:
        mode, entry = TOTP_SHOW, args[0]
    elif len(args) == 2 and args[0] in TOTP_MODES:
        mode, entry = args
    else:
        raise LockboxError("unknown totp mode")

    generator = totp_generator(ctx, entry)
    if mode == "seed":
        ctx.write(generator.seed)
    elif mode == "url":
        generator.print(ctx.stdout, details=True)
    elif mode == "clip":
        if not ctx.is_interactive():
            raise ClipboardError("clipboard not available in non-interactive mode")
        clipboard = Clipboard.new(ctx.settings)
        now = pendulum.now()
        ctx.write(f"-> {now.format(DT_FORMAT_TOTP)} ({60 - now.second:02d})")
        copy_value(ctx, clipboard, generator.code(now))
    elif mode == "minimal" or not ctx.is_interactive():
        generator.print(ctx.stdout)
    elif mode == "once":
        display = TOTPDisplay(generator, entry, ctx.settings, writer=ctx.stdout)
        ctx.write(display.render(pendulum.now()))
    else:
        TOTPDisplay(generator, entry, ctx.settings, writer=ctx.stdout).run()


# ============================================================================
# Informational
# ============================================================================

def cmd_conv(ctx: CommandContext) -> None:
    """
    Print the contents of other kdbx files as indented text.

    Each file is opened with the configured credentials, values go
    through the json output mode.

    Raises:
        CodecError: If a file does not exist or can not be read.
    """
    if not ctx.args:
        raise LockboxError("conv requires a file")
    for path in ctx.args:
        tx = Transaction.load(path, ctx.settings)
        options = QueryOptions(mode=QueryMode.LIST, values=ValueMode.JSON)
        for entity in collect(tx.query(options)):
            text = json.dumps({entity.path: entity.values}, indent=JSON_INDENT, sort_keys=True)
            for line in text.strip()[1:-1].split("\n"):
                if line.strip():
                    ctx.write(line.removeprefix(" " * JSON_INDENT))


def report(ctx: CommandContext, category: str, error: Exception | None) -> None:
    message = "ok" if error is None else f"error: {error}"
    ctx.write(f"{category}\n  -> {message}")


def cmd_health(ctx: CommandContext) -> None:
    """Report whether credentials, key file, clipboard and store are usable."""
    if ctx.args:
        raise LockboxError("invalid health command")
    settings = ctx.settings

    error = None
    try:
        resolve_credentials(settings)
    except LockboxError as e:
        error = e
    report(ctx, "key", error)

    key_file = settings.get_string(KEY_FILE)
    error = None
    if key_file and not os.path.exists(key_file):
        error = LockboxError("key file set, does not exist")
    report(ctx, "keyfile", error)

    error = None
    try:
        Clipboard.new(settings)
    except ClipboardError as e:
        error = e
    report(ctx, "clipboard", error)

    error = None
    if not settings.store:
        error = LockboxError("store not set")
    elif not os.path.exists(settings.store):
        error = LockboxError("store does not exist")
    report(ctx, "store", error)



def cmd_help(ctx: CommandContext) -> None:
    if len(ctx.args) > 1:
        raise LockboxError("invalid help command")
    option = ctx.args[0] if ctx.args else ""
    if option == help_utils.HELP_CONFIG:
        ctx.stdout.write(help_utils.config_help())
        return
    if option not in ("", help_utils.HELP_VERBOSE):
        raise LockboxError("invalid help option")
    ctx.write("\n".join(help_utils.usage(COMMANDS, TOTP_MODES, ctx.settings, option == help_utils.HELP_VERBOSE)))


def cmd_version(ctx: CommandContext) -> None:
    ctx.write(f"version: {VERSION}")


def cmd_vars(ctx: CommandContext) -> None:
    if ctx.args:
        raise LockboxError("invalid vars command")
    ctx.write("\n".join(help_utils.variables(ctx.settings)))


def cmd_env(ctx: CommandContext) -> None:
    if ctx.args:
        raise LockboxError("invalid env command")
    ctx.write("\n".join(help_utils.environment()))


def cmd_completions(ctx: CommandContext) -> None:
    shell = ctx.args[0] if ctx.args else help_utils.detect_shell()
    if len(ctx.args) > 1:
        raise LockboxError("invalid completions command")
    ctx.stdout.write(help_utils.completions(shell, COMMANDS, TOTP_MODES, ctx.settings))


COMMANDS: dict[str, Command] = {c.name: c for c in [
    Command("clip", cmd_clip, "entry", "copy the entry's value into the clipboard", feature=FEATURE_CLIP),
    Command("completions", cmd_completions, "<shell>", "generate completions (bash or zsh)"),
    Command("conv", cmd_conv, "file", "convert kdbx files to text output"),
    Command("env", cmd_env, "", "display environment variables used by lockbox"),
    Command("find", cmd_find, "criteria", "find entries by group path"),
    Command("groups", cmd_groups, "filter", "list groups"),
    Command("health", cmd_health, "", "display configuration and system health"),
    Command("help", cmd_help, "", "show this usage information"),
    Command("insert", cmd_insert, "entry", "insert a new entry into the store", mutating=True),
    Command("json", cmd_json, "filter", "display detailed information"),
    Command("ls", cmd_ls, "filter", "list entries"),
    Command("mv", cmd_mv, "group group", "move a group from source to destination", mutating=True),
    Command("rekey", cmd_rekey, "", "rekey/reinitialize the database credentials", mutating=True),
    Command("rm", cmd_rm, "group", "remove an entry from the store", mutating=True),
    Command("show", cmd_show, "entry", "show the entry's value"),
    Command("totp", cmd_totp, "entry", "display an updating totp generated code", feature=FEATURE_TOTP),
    Command("unset", cmd_unset, "entry", "clear an entry value", mutating=True),
    Command("vars", cmd_vars, "", "display configured variable information"),
    Command("version", cmd_version, "", "display version information"),
]}


def run(args: list[str], settings: Settings, stdin: TextIO = sys.stdin, stdout: TextIO = sys.stdout) -> None:
    """
    Dispatch a command line (without the executable name).

    Raises:
        LockboxError: On any command failure.
    """
    if not args:
        raise LockboxError("requires subcommand")
    command = COMMANDS.get(args[0])
    if command is None:
        raise LockboxError(f"unknown command: {args[0]}")
    logger.debug(f"[{pendulum.now().to_iso8601_string()}] running {command.name}")
    command.handler(CommandContext(settings, args[1:], stdin=stdin, stdout=stdout))
