import os

from lockbox.config.config_lockbox import *
from lockbox.config.settings import Settings
from lockbox.config.toml_loader import default_toml
from lockbox.exceptions import LockboxError
from lockbox.utils.Entity import ALLOWED_FIELDS

HELP_VERBOSE = "verbose"
HELP_CONFIG = "config"
SHELLS = ["bash", "zsh"]

# environment variables read by lockbox
ENVIRONMENT = [CONFIG_ENV, "XDG_CONFIG_HOME", "HOME", STATE_ENV, "WAYLAND_DISPLAY", "DISPLAY", NO_COLOR_ENV]


def command_text(name: str, args: str, description: str) -> str:
    arguments = f"[{args}]" if args else ""
    return f"  {name:<17} {arguments:<13}    {description}"


def visible_commands(commands: dict, settings: Settings) -> list:
    """Commands usable under the current readonly mode and feature flags."""
    visible = []
    for command in commands.values():
        if command.mutating and settings.readonly:
            continue
        if command.feature and not settings.get_bool(command.feature):
            continue
        visible.append(command)
    return visible


def usage(commands: dict, totp_modes: dict, settings: Settings, verbose: bool = False) -> list[str]:
    """
    Build the usage text.

    Args:
        commands: Command registry, name to Command.
        totp_modes: totp sub-mode name to description.
        settings: Active settings, readonly mode hides mutating commands.
        verbose: Append the long form sections.

    Returns:
        Usage lines.
    """
    results = []
    for command in visible_commands(commands, settings):
        results.append(command_text(command.name, command.args, command.description))
        if command.name == "help":
            results.append(command_text(f"help {HELP_VERBOSE}", "", "display verbose help information"))
            results.append(command_text(f"help {HELP_CONFIG}", "", "display verbose configuration information"))
        elif command.name == "completions":
            for shell in SHELLS:
                results.append(command_text(f"completions {shell}", "", f"generate {shell} completions"))
        elif command.name == "totp":
            for mode, description in totp_modes.items():
                args = "filter" if mode == "ls" else "entry"
                results.append(command_text(f"totp {mode}", args, description))
    results.sort()

    lines = [f"{EXECUTABLE} usage:"] + results
    if verbose:
        lines.append("")
        lines.extend(verbose_help())
    return lines


def verbose_help() -> list[str]:
    fields = ", ".join(ALLOWED_FIELDS)
    examples = [f"  {EXECUTABLE} {cmd} my/path/{f}" for cmd in ("insert", "show") for f in ALLOWED_FIELDS]
    return [
        "[database]",
        f"  entries are stored at group paths, each holding the fields: {fields}",
        "  notes may span multiple lines, every other field is a single line",
        "",
        "[examples]",
        *examples,
        "",
        "[moving]",
        f"  {EXECUTABLE} mv a/b c/d moves one entry, confirming any overwrite",
        f"  {EXECUTABLE} mv 'a/*' c/ moves every entry of group a into group c",
        "",
        "[rekey]",
        f"  {EXECUTABLE} rekey [-keyfile=<path>] [-nokey] changes the database credentials,",
        "  the new password is read from stdin (twice on a terminal)",
        "",
        "[config]",
        f"  read from ${CONFIG_ENV} if set, otherwise the first of",
        f"  $XDG_CONFIG_HOME/{CONFIG_XDG.as_posix()} and $HOME/{CONFIG_HOME.as_posix()}",
        f"  run '{EXECUTABLE} help {HELP_CONFIG}' for every option",
    ]


def config_help() -> str:
    return default_toml()


def format_value(value) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, list):
        return "[" + ", ".join(f'"{v}"' for v in value) + "]"
    if isinstance(value, int):
        return str(value)
    return f'"{value}"'


def variables(settings: Settings) -> list[str]:
    """
    `key = value` for every variable, plaintext passwords hidden.
    """
    lines = []
    for key, value in settings.items():
        if key == PASSWORD and value and settings.get_string(PASSWORD_MODE) == KEY_MODE_PLAINTEXT:
            lines.append(f"{key} = (hidden)")
            continue
        lines.append(f"{key} = {format_value(value)}")
    return lines


def environment() -> list[str]:
    return [f"{name}={os.environ[name]}" for name in ENVIRONMENT if name in os.environ]


def detect_shell() -> str:
    """Shell name from $SHELL, bash when unknown."""
    shell = os.path.basename(os.environ.get("SHELL", ""))
    return shell if shell in SHELLS else SHELLS[0]


def completions(shell: str, commands: dict, totp_modes: dict, settings: Settings) -> str:
    """
    Render a word-list completion script.

    Raises:
        LockboxError: If the shell is not supported.
    """
    names = " ".join(sorted(c.name for c in visible_commands(commands, settings)))
    modes = " ".join(sorted(totp_modes))
    entries = " ".join(sorted(["show", "clip", "insert", "unset", "rm", "mv"]))
    helps = f"{HELP_VERBOSE} {HELP_CONFIG}"
    if shell == "bash":
        return (
            f"# {EXECUTABLE} completion\n"
            f"_{EXECUTABLE}() {{\n"
            f'  local cur="${{COMP_WORDS[COMP_CWORD]}}"\n'
            f"  COMPREPLY=()\n"
            f'  if [ "$COMP_CWORD" -eq 1 ]; then\n'
            f'    COMPREPLY=($(compgen -W "{names}" -- "$cur"))\n'
            f'  elif [ "$COMP_CWORD" -eq 2 ]; then\n'
            f'    case "${{COMP_WORDS[1]}}" in\n'
            f'      {entries.replace(" ", "|")})\n'
            f'        COMPREPLY=($(compgen -W "$({EXECUTABLE} ls 2>/dev/null)" -- "$cur")) ;;\n'
            f'      totp)\n'
            f'        COMPREPLY=($(compgen -W "{modes}" -- "$cur")) ;;\n'
            f'      help)\n'
            f'        COMPREPLY=($(compgen -W "{helps}" -- "$cur")) ;;\n'
            f'      completions)\n'
            f'        COMPREPLY=($(compgen -W "{" ".join(SHELLS)}" -- "$cur")) ;;\n'
            f"    esac\n"
            f"  fi\n"
            f"}}\n"
            f"complete -F _{EXECUTABLE} {EXECUTABLE}\n"
        )
    if shell == "zsh":
        return (
            f"#compdef {EXECUTABLE}\n"
            f"\n"
            f"_{EXECUTABLE}() {{\n"
            f"  if (( CURRENT == 2 )); then\n"
            f"    compadd {names}\n"
            f"  elif (( CURRENT == 3 )); then\n"
            f"    case $words[2] in\n"
            f"      {entries.replace(' ', '|')})\n"
            f'        compadd $({EXECUTABLE} ls 2>/dev/null) ;;\n'
            f"      totp)\n"
            f"        compadd {modes} ;;\n"
            f"      help)\n"
            f"        compadd {helps} ;;\n"
            f"      completions)\n"
            f"        compadd {' '.join(SHELLS)} ;;\n"
            f"    esac\n"
            f"  fi\n"
            f"}}\n"
            f"\n"
            f'compdef _{EXECUTABLE} {EXECUTABLE}\n'
        )
    raise LockboxError(f"unknown shell: {shell}")
