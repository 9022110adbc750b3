"""Path algebra over a configurable path separator.

    Every function takes the separator source first: either a bucket (or any
    object with a path_separator() method) or the separator string itself.
    The rules are the canonical shortest-path rules of POSIX paths. Paths that
    use another separator are mapped onto "/", processed, and mapped back, so
    the same cleaning rules apply to every bucket regardless of the host.
"""
import posixpath
import typing as t

from .exceptions import PathError


class PathSeparable(t.Protocol):

    def path_separator(self) -> str:
        pass


SeparatorSource = t.Union[PathSeparable, str]


def separator(ps: SeparatorSource) -> str:
    """Extract the separator string."""
    if isinstance(ps, str):
        return ps
    return ps.path_separator()


def _to_posix(sep: str, name: str) -> str:
    return name if sep == "/" else name.replace(sep, "/")


def _from_posix(sep: str, name: str) -> str:
    return name if sep == "/" else name.replace("/", sep)


def _clean_posix(name: str) -> str:
    # normpath() keeps a leading "//" (implementation-defined in POSIX), we never do
    name = posixpath.normpath(name)
    if name.startswith("//"):
        name = "/" + name.lstrip("/")
    return name


def base(ps: SeparatorSource, name: str) -> str:
    """Return the last element of the path, ignoring trailing separators.

        An empty path gives ".", a path of only separators gives the separator.
    """
    sep = separator(ps)
    name = _to_posix(sep, name)
    if name == "":
        return "."
    name = name.rstrip("/")
    if name == "":
        return sep
    return _from_posix(sep, name[name.rfind("/") + 1:])


def dir_name(ps: SeparatorSource, name: str) -> str:
    """Return all but the last element of the path, cleaned."""
    sep = separator(ps)
    name = _to_posix(sep, name)
    return _from_posix(sep, _clean_posix(name[:name.rfind("/") + 1]))


def clean(ps: SeparatorSource, name: str) -> str:
    """Return the shortest equivalent path, with surrounding whitespace removed."""
    sep = separator(ps)
    return _from_posix(sep, _clean_posix(_to_posix(sep, name.strip())))


def abs_path(ps: SeparatorSource, name: str) -> str:
    """Resolve the path as if it were rooted at the bucket root.

        The result keeps the absoluteness of the input, so "foo/../bar/" is
        "bar" and "/../../foo/bar" is "/foo/bar".
    """
    if "\x00" in name:
        raise PathError(f"Path [{name!r}] contains a NUL character", 1001)
    sep = separator(ps)
    is_abs = name.startswith(sep)
    if not is_abs:
        name = sep + name
    name = _from_posix(sep, _clean_posix(_to_posix(sep, name)))
    if not is_abs and name.startswith(sep):
        name = name[len(sep):]
    return name


def sanitize(ps: SeparatorSource, name: str) -> str:
    """Convert a path into a root-relative key that cannot escape the root.

        Leading separators and leading dot-only segments are removed. The
        root (or an empty result) is returned as the separator itself.
    """
    sep = separator(ps)
    name = abs_path(sep, clean(sep, name))
    parts = name.split(sep)
    while parts and (parts[0] == "" or parts[0].strip(".") == ""):
        parts.pop(0)
    return sep.join(parts) or sep


def join(ps: SeparatorSource, *elems: str) -> str:
    """Join the elements with the separator and clean the result.

        Empty elements are ignored; if all are empty, the result is "".
    """
    sep = separator(ps)
    elems = [_to_posix(sep, e.strip()) for e in elems]
    elems = [e for e in elems if e != ""]
    if not elems:
        return ""
    return _from_posix(sep, _clean_posix("/".join(elems)))


def is_dir_path(ps: SeparatorSource, name: str) -> bool:
    """Check if the path is written as a directory (trailing separator, or the root)."""
    sep = separator(ps)
    name = name.strip()
    if name == "" or name == ".":
        return True
    return name.endswith(sep)


def directorize(ps: SeparatorSource, name: str) -> str:
    """Ensure the path ends with exactly one trailing separator."""
    sep = separator(ps)
    name = name.strip()
    if name == ".":
        return sep
    if name.endswith(sep):
        return name
    return name + sep


def clean_dir_path(ps: SeparatorSource, name: str) -> str:
    """Clean the path, keeping the trailing separator of directory paths."""
    sep = separator(ps)
    is_dir = is_dir_path(sep, name)
    name = clean(sep, name)
    if name == ".":
        name = ""
    if is_dir:
        name = directorize(sep, name)
    return name


def sanitize_dir_path(ps: SeparatorSource, name: str) -> str:
    """Sanitize the path, keeping the trailing separator of directory paths."""
    sep = separator(ps)
    is_dir = is_dir_path(sep, name)
    name = sanitize(sep, name)
    if is_dir and name != sep:
        name += sep
    return name
