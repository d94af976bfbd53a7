"""Exceptions raised while talking to Mercurial."""


class HgSyncError(Exception):
    """Base class for synchronization failures."""


class ToolNotFoundError(HgSyncError):
    """The hg executable could not be launched because it does not exist."""

    def __init__(self, executable: str):
        self.executable = executable
        super().__init__(
            f"hg could not be found (tried '{executable}'); "
            "check that you've properly configured your Mercurial installation"
        )


class SubprocessFailedError(HgSyncError):
    """An hg invocation could not be launched or exited with a non-zero status."""

    def __init__(self, message: str, returncode: int | None = None, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


class CommandTimeoutError(SubprocessFailedError):
    """An hg invocation ran past its time limit and was killed."""


class UnresolvableRevisionError(HgSyncError):
    """A branch head id or revision number could not be resolved."""


class CacheUnavailableError(HgSyncError):
    """No repository cache could be acquired where one is required."""


class AbortError(HgSyncError):
    """A required step failed; the checkout or poll is aborted."""
