import fnmatch

from lockbox.config.config_lockbox import PATH_SEP
from lockbox.exceptions import BadPath
from lockbox.utils.Entity import Field


def new_path(*segments: str) -> str:
    """Join segments into a store path."""
    return PATH_SEP.join(segments)


def base(path: str) -> str:
    """Last segment of a path."""
    return path.split(PATH_SEP)[-1]


def directory(path: str) -> str:
    """Everything except the last segment of a path."""
    return new_path(*path.split(PATH_SEP)[:-1])


def is_directory(path: str) -> bool:
    return path.endswith(PATH_SEP)


def is_leaf_attribute(path: str, attr: str) -> bool:
    """True if the path ends with `/<attr>`."""
    return path.endswith(PATH_SEP + attr)


def split_components(path: str) -> tuple[list[str], str]:
    """
    Validate a path and split it into its parent groups and last segment.

    Args:
        path: Slash separated path with at least 2 segments.

    Returns:
        A tuple of (parent group names, last segment).

    Raises:
        BadPath: If the path is rooted, ends with a separator, has an
            empty segment, or has fewer than 2 segments.
    """
    if len(path.split(PATH_SEP)) < 2:
        raise BadPath("input paths must contain at LEAST 2 components")
    if path.startswith(PATH_SEP):
        raise BadPath("path can NOT be rooted")
    if path.endswith(PATH_SEP):
        raise BadPath("path can NOT end with separator")
    if PATH_SEP + PATH_SEP in path:
        raise BadPath("unwilling to operate on path with empty segment")
    return directory(path).split(PATH_SEP), base(path)


def group_components(group_path: str) -> tuple[list[str], str]:
    """
    Split a group path into its parent groups and entry title.

    A group path may be a single segment, the entry then lives
    directly under the root group.

    Raises:
        BadPath: If the path is empty, rooted, ends with a separator or
            has an empty segment.
    """
    if not group_path.strip():
        raise BadPath("empty path not allowed")
    if PATH_SEP not in group_path:
        return [], group_path
    return split_components(group_path)


def split(path: str) -> tuple[str, Field]:
    """
    Split an entry path into its group path and field.

    Raises:
        BadPath: If the path is structurally invalid.
        BadField: If the last segment is not an allowed field.
    """
    split_components(path)
    return directory(path), Field.parse(base(path))


def glob(pattern: str, candidate: str) -> bool:
    """Shell-style match of a whole path (`*`, `?`, `[...]`)."""
    return fnmatch.fnmatchcase(candidate, pattern)
