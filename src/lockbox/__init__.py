"""
lockbox - a command-line secret manager backed by a single kdbx file
"""
from lockbox.config.config_lockbox import VERSION

__version__ = VERSION
