import typing as t


class BucketFSError(Exception):
    """Super-type of all errors raised by bucketfs code"""

    def __init__(self, msg: str, code_space: str = "GEN", code_number: int = None, is_recoverable: bool = False):
        self.internal_code = "" if code_number is None else f"{code_space}-{code_number}"
        super().__init__(f"{msg} [{self.internal_code}]")
        self.is_recoverable = is_recoverable


class ConfigError(BucketFSError):

    def __init__(self, missing_key: str, code_space: str = "CONFIG", code_number: int = None):
        super().__init__(f"Missing configuration key [{missing_key}]", code_space, code_number)


class PathError(BucketFSError):
    """Raised when a path cannot be resolved."""

    def __init__(self, msg: str, code: int = 1000):
        super().__init__(msg, "PATH", code)


class StorageError(BucketFSError):
    """Error class specifically for storage errors."""

    def __init__(self, msg, code, is_recoverable: bool = False):
        super().__init__(msg, "STORAGE", code, is_recoverable=is_recoverable)


class ItemNotFoundError(StorageError):
    """The item does not exist in the bucket."""

    def __init__(self, msg, code: int = 1002):
        super().__init__(msg, code)


class ItemExistsError(StorageError):

    def __init__(self, msg, code: int = 1006):
        super().__init__(msg, code)


class IsDirectoryError(StorageError):
    """A file operation was attempted on a directory."""

    def __init__(self, msg, code: int = 1004):
        super().__init__(msg, code)


class NotDirectoryError(StorageError):
    """A directory operation was attempted on a file."""

    def __init__(self, msg, code: int = 1005):
        super().__init__(msg, code)


class PermissionDeniedError(StorageError):

    def __init__(self, msg, code: int = 1003):
        super().__init__(msg, code, True)


class NotSupportedError(StorageError):
    """The operation is meaningless on this backend."""

    def __init__(self, msg, code: int = 1010):
        super().__init__(msg, code)


class WaitTimeoutError(StorageError):
    """The backend did not reach the expected state within the polling budget."""

    def __init__(self, msg, code: int = 2010):
        super().__init__(msg, code, True)


class RenameError(StorageError):
    """A two-step rename failed part way through.

        The phase is either "copy" (nothing was removed from the source) or
        "remove" (the destination is complete but the source is still partly
        or fully present). No compensating rollback is attempted.
    """

    def __init__(self, phase: str, from_name: str, to_name: str, cause: t.Optional[Exception] = None):
        super().__init__(
            f"Rename of [{from_name}] to [{to_name}] failed during {phase} phase",
            1020 if phase == "copy" else 1021,
            cause.is_recoverable if isinstance(cause, BucketFSError) else False
        )
        self.phase = phase
        self.from_name = from_name
        self.to_name = to_name
