"""
Layered TOML configuration loading.

The root file may pull in other files through `include`, either as
plain paths (globs allowed) or as `{file = ..., required = ...}`
tables. Includes are read depth-first, left-to-right, and later files
override keys from earlier ones.
"""
import glob
import logging
import os
import tomllib
from pathlib import Path

import pendulum

from lockbox.config.config_lockbox import *
from lockbox.config.settings import Settings, check_value
from lockbox.exceptions import ConfigError

logger = logging.getLogger(__name__)


def expand(value: str) -> str:
    """Substitute $NAME and ${NAME} references from the environment."""
    return os.path.expandvars(value)


def config_files() -> list[Path]:
    """
    Candidate config files, in priority order.

    When LOCKBOX_CONFIG_TOML is set it is the only candidate, the
    user does not want the default locations in that case.
    """
    override = expand(os.environ.get(CONFIG_ENV, ""))
    if override:
        return [Path(override)]
    candidates = []
    xdg = os.environ.get("XDG_CONFIG_HOME", "")
    if xdg:
        candidates.append(Path(xdg) / CONFIG_XDG)
    home = os.environ.get("HOME", "")
    if home:
        candidates.append(Path(home) / CONFIG_HOME)
    return candidates


def load_config(settings: Settings | None = None) -> Settings:
    """
    Load the first config file found into a settings object.

    Args:
        settings: Settings to update, a fresh one is created if None.

    Returns:
        The populated settings (defaults only if no file was found).

    Raises:
        ConfigError: If a found file is invalid.
    """
    settings = settings if settings is not None else Settings()
    for path in config_files():
        if path.is_file():
            load_file(path, settings)
            break
    return settings


def load_file(path: str | Path, settings: Settings) -> Settings:
    """
    Load a TOML file (and its includes) into settings.

    Raises:
        ConfigError: Type mismatch, unknown key, include problems or
            invalid TOML.
    """
    root = _parse(Path(path))
    strict = root.get(STRICT, True)
    if not isinstance(strict, bool):
        strict = True

    merged: dict[str, object] = {}
    for document in _read_configs(Path(path), root, 1, strict):
        merged.update(flatten(document))

    for key, value in merged.items():
        var = VARIABLES.get(key)
        if var is None:
            raise ConfigError(f"unknown key: {key}")
        if var.expand:
            if isinstance(value, str):
                value = expand(value)
            elif isinstance(value, list):
                value = [expand(v) if isinstance(v, str) else v for v in value]
        settings.set(key, check_value(var, value))
    return settings


def loads(text: str, settings: Settings) -> Settings:
    """Load settings from a TOML string (includes are not allowed)."""
    try:
        document = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"invalid toml: {e}")
    if INCLUDE_KEY in document:
        raise ConfigError("includes are only supported from files")
    for key, value in flatten(document).items():
        var = VARIABLES.get(key)
        if var is None:
            raise ConfigError(f"unknown key: {key}")
        settings.set(key, value)
    return settings


def _parse(path: Path) -> dict:
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"invalid toml in {path}: {e}")
    except OSError as e:
        raise ConfigError(f"unable to read {path}: {e}")


def _read_configs(path: Path, document: dict, depth: int, strict: bool) -> list[dict]:
    if depth > MAX_INCLUDE_DEPTH:
        raise ConfigError(f"too many nested includes ({depth} > {MAX_INCLUDE_DEPTH})")

    documents = [document]
    includes = document.pop(INCLUDE_KEY, [])
    for value, required in parse_includes(includes):
        include = Path(value)
        if not include.is_absolute():
            include = path.parent / include

        files = [Path(p) for p in glob.glob(str(include))] if IS_GLOB in value else [include]
        for file in files:
            if not file.is_file():
                if required and strict:
                    raise ConfigError(f"failed to load the included file: {file}")
                logger.debug(f"[{pendulum.now().to_iso8601_string()}] skipping missing include {file}")
                continue
            documents.extend(_read_configs(file, _parse(file), depth + 1, strict))
    return documents


def parse_includes(value) -> list[tuple[str, bool]]:
    """
    Normalize the include array into (path, required) pairs.

    Raises:
        ConfigError: If the value is not an array of strings or
            {file, required} tables.
    """
    if not isinstance(value, list):
        raise ConfigError(f"value is not of array type: {value!r}")
    results = []
    for item in value:
        required = True
        if isinstance(item, str):
            file = item
        elif isinstance(item, dict):
            if len(item) > 2:
                raise ConfigError(f"invalid map array, too many keys: {item!r}")
            if INCLUDE_FILE_KEY not in item:
                raise ConfigError(f"'{INCLUDE_FILE_KEY}' is required, missing: {item!r}")
            file = item[INCLUDE_FILE_KEY]
            if not isinstance(file, str):
                raise ConfigError(f"non-string found where string expected: {file!r}")
            if len(item) == 2:
                if INCLUDE_REQUIRED_KEY not in item:
                    raise ConfigError(f"only '{INCLUDE_REQUIRED_KEY}' key is allowed here: {item!r}")
                required = item[INCLUDE_REQUIRED_KEY]
                if not isinstance(required, bool):
                    raise ConfigError(f"non-boolean found where boolean expected: {required!r}")
        else:
            raise ConfigError(f"value is not valid array value: {item!r}")
        results.append((expand(file), required))
    return results


def flatten(document: dict, prefix: str = "") -> dict:
    """Flatten nested TOML tables into dotted keys."""
    flat = {}
    for key, value in document.items():
        name = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict):
            flat.update(flatten(value, name))
        else:
            flat[name] = value
    return flat


def default_toml() -> str:
    """
    Render every registered variable as a commented TOML document.

    Used by `help config` so users can start from a full template.
    """
    lines = [
        "# include additional configs, allowing globs ('*'), nesting",
        f"# depth allowed up to {MAX_INCLUDE_DEPTH} include levels",
        "#",
        "# can be an array of strings: ['file.toml']",
        f"# or an array of objects: [{{{INCLUDE_FILE_KEY} = 'file.toml', {INCLUDE_REQUIRED_KEY} = false}}]",
        f"{INCLUDE_KEY} = []",
    ]
    tables: dict[str, list[Variable]] = {}
    for key in sorted(VARIABLES):
        table, _, _ = key.rpartition(".")
        tables.setdefault(table, []).append(VARIABLES[key])

    for table in sorted(tables):
        lines.append("")
        if table:
            lines.append(f"[{table}]")
        for var in tables[table]:
            lines.extend(_describe(var))
            lines.append(f"{var.key.rpartition('.')[2]} = {_toml_value(var)}")
    return "\n".join(lines) + "\n"


def _describe(var: Variable) -> list[str]:
    default = var.default
    if isinstance(default, bool):
        default = str(default).lower()
    elif isinstance(default, list):
        default = " ".join(default)
    extra = " (shell expansions)" if var.expand else ""
    text = [
        f"description: {var.description}",
        f"requirement: {var.requirement or 'optional/default'}",
        f"option: {'|'.join(var.allowed) or var.example or var.kind}",
        f"default: {default if default != '' else '(unset)'}",
        f"type: {var.kind}{extra}",
    ]
    return [f"# {line}" for line in text]


def _toml_value(var: Variable) -> str:
    if var.kind == BOOL:
        return str(var.default).lower()
    if var.kind == INT:
        return str(var.default)
    if var.kind == ARRAY:
        return "[" + ", ".join(f'"{v}"' for v in var.default) + "]"
    return f'"{var.default}"'
