# config_lockbox.py
"""
Configuration constants and the registry of configurable variables
"""
from dataclasses import dataclass
from pathlib import Path

# ==============================================================
# Application
# ==============================================================
# Software version
VERSION = "1.0.0"

# Name of the executable
EXECUTABLE = "lb"

UTF8 = "utf-8"

# ==============================================================
# Config file discovery
# ==============================================================
CONFIG_ENV = "LOCKBOX_CONFIG_TOML"
CONFIG_XDG = Path("lockbox") / "config.toml"
CONFIG_HOME = Path(".config") / CONFIG_XDG

# Include chains deeper than this are rejected
MAX_INCLUDE_DEPTH = 10
INCLUDE_KEY = "include"
INCLUDE_FILE_KEY = "file"
INCLUDE_REQUIRED_KEY = "required"

# ==============================================================
# Error log
# ==============================================================
STATE_ENV = "XDG_STATE_HOME"
STATE_HOME = Path(".local") / "state"
LOG_FILE_NAME = Path("lockbox") / "error.log"

# ==============================================================
# Store / entries
# ==============================================================
STORE_SUFFIX = ".kdbx"
PATH_SEP = "/"
IS_GLOB = "*"
TITLE_KEY = "Title"
MODTIME_KEY = "ModTime"
MODTIME_OUTPUT = "modtime"
CHECKSUM_KEY = "checksum"
ROOT_GROUP_NAME = "root"

# ==============================================================
# TOTP
# ==============================================================
OTP_AUTH = "otpauth"
OTP_ISSUER = "lbissuer"
OTP_ACCOUNT = "lbaccount"
TOTP_DEFAULT_PERIOD = 30
TOTP_DEFAULT_DIGITS = 6
TOTP_DEFAULT_ALGORITHM = "SHA1"
TOTP_TICK = 0.5                      # Seconds between display loop checks
TIME_WINDOW_SPAN = ":"
TOTP_DEFAULT_COLOR_WINDOWS = ["0:5", "30:35"]
DT_FORMAT_TOTP = "HH:mm:ss"

# ==============================================================
# Clipboard
# ==============================================================
CLIP_POLL = 1                        # Seconds between clip manager polls
CLIP_MAX_ERRORS = 5

# ==============================================================
# Display & formatting
# ==============================================================
NO_COLOR_ENV = "NO_COLOR"
COLOR_RED = "\033[1;31m"
COLOR_END = "\033[0m"
JSON_INDENT = 2

# ==============================================================
# Enumerations
# ==============================================================
KEY_MODE_PLAINTEXT = "plaintext"
KEY_MODE_COMMAND = "command"
KEY_MODE_NONE = "none"
KEY_MODE_IGNORE = "ignore"
KEY_MODES = [KEY_MODE_COMMAND, KEY_MODE_IGNORE, KEY_MODE_NONE, KEY_MODE_PLAINTEXT]

JSON_MODE_PLAINTEXT = "plaintext"
JSON_MODE_HASH = "hash"
JSON_MODE_EMPTY = "empty"
JSON_MODES = [JSON_MODE_EMPTY, JSON_MODE_HASH, JSON_MODE_PLAINTEXT]

# ==============================================================
# Variable registry
# ==============================================================
BOOL = "boolean"
INT = "integer"
STRING = "string"
ARRAY = "[]string"


@dataclass(frozen=True)
class Variable:
    """
    A single configurable key.

    Keys are the dotted form of the TOML table layout, e.g. the
    `timeout` key of the `[totp]` table is `totp.timeout`.
    """
    key: str
    kind: str
    default: object
    description: str
    expand: bool = False
    allowed: tuple = ()
    minimum: int | None = None
    example: str = ""
    requirement: str = ""

    def default_value(self):
        # arrays are handed out as copies so callers can not alter the default
        if isinstance(self.default, list):
            return list(self.default)
        return self.default


STORE = "store"
READONLY = "readonly"
STRICT = "strict"
PASSWORD_MODE = "credentials.password_mode"
PASSWORD = "credentials.password"
KEY_FILE = "credentials.key_file"
TOTP_TIMEOUT = "totp.timeout"
TOTP_COLOR_WINDOWS = "totp.color_windows"
TOTP_OTP_FORMAT = "totp.otp_format"
TOTP_CHECK_ON_INSERT = "totp.check_on_insert"
JSON_MODE = "json.mode"
JSON_HASH_LENGTH = "json.hash_length"
CLIP_COPY = "clip.copy_command"
CLIP_PASTE = "clip.paste_command"
CLIP_TIMEOUT = "clip.timeout"
CLIP_PIDFILE = "clip.pidfile"
FEATURE_CLIP = "feature.clip"
FEATURE_TOTP = "feature.totp"
FEATURE_COLOR = "feature.color"
DEFAULT_MODTIME = "defaults.modtime"

REQUIRED_KEY_OR_KEY_FILE = "a key, a key file, or both must be set"

VARIABLES: dict[str, Variable] = {v.key: v for v in [
    Variable(STORE, STRING, "",
             "The kdbx file to operate on.",
             expand=True, example="<file>", requirement="must be set"),
    Variable(READONLY, BOOL, False,
             "Operate in readonly mode."),
    Variable(STRICT, BOOL, True,
             "Fail when a required include file is missing."),
    Variable(PASSWORD_MODE, STRING, KEY_MODE_COMMAND,
             "How to retrieve the database store password. Set to 'none' when only "
             "using a key file. Set to 'ignore' to ignore the set key value.",
             allowed=tuple(KEY_MODES),
             requirement="must be set to a valid mode when using a key"),
    Variable(PASSWORD, ARRAY, [],
             "The database password itself ('plaintext' mode) or command to run "
             "('command' mode) to retrieve the database password.",
             expand=True, example="[cmd args...]", requirement=REQUIRED_KEY_OR_KEY_FILE),
    Variable(KEY_FILE, STRING, "",
             "A keyfile to access/protect the database.",
             expand=True, example="keyfile", requirement=REQUIRED_KEY_OR_KEY_FILE),
    Variable(TOTP_TIMEOUT, INT, 120,
             "Time, in seconds, to show a TOTP token before automatically exiting.",
             minimum=1),
    Variable(TOTP_COLOR_WINDOWS, ARRAY, list(TOTP_DEFAULT_COLOR_WINDOWS),
             "Override when to set totp generated outputs to different colors, must be "
             "a list of one (or more) rules where a ':' delimits the start and end "
             "second (0-60 for each).",
             example="[start:end start:end ...]"),
    Variable(TOTP_OTP_FORMAT, STRING, "",
             "Override the otpauth url used to store totp tokens. It must have ONE "
             "format string ('%s') to insert the totp base code.",
             example="otpauth//url/%s/args..."),
    Variable(TOTP_CHECK_ON_INSERT, BOOL, True,
             "Test TOTP code generation on insert."),
    Variable(JSON_MODE, STRING, JSON_MODE_HASH,
             "Changes what the data field in JSON outputs will contain. "
             "Use 'plaintext' with CAUTION.",
             allowed=tuple(JSON_MODES)),
    Variable(JSON_HASH_LENGTH, INT, 1,
             "Maximum string length of the JSON value when JSON 'hash' mode is set "
             "(0 keeps the full hash).",
             minimum=0),
    Variable(CLIP_COPY, ARRAY, [],
             "Override the detected platform copy command.",
             example="[cmd args...]"),
    Variable(CLIP_PASTE, ARRAY, [],
             "Override the detected platform paste command.",
             example="[cmd args...]"),
    Variable(CLIP_TIMEOUT, INT, 120,
             "Override the amount of time before totp clears the clipboard (seconds).",
             minimum=1),
    Variable(CLIP_PIDFILE, STRING, "",
             "Location of the clipboard manager process file, when unset the "
             "clipboard is not cleared automatically.",
             expand=True, example="<file>"),
    Variable(FEATURE_CLIP, BOOL, True,
             "Enable clipboard feature."),
    Variable(FEATURE_TOTP, BOOL, True,
             "Enable totp feature."),
    Variable(FEATURE_COLOR, BOOL, True,
             "Enable terminal color feature."),
    Variable(DEFAULT_MODTIME, STRING, "",
             "Input modification time to set for the entry (ISO-8601, e.g. "
             "2006-01-02T15:04:05-07:00)."),
]}
