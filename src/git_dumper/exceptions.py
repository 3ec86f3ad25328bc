from dataclasses import dataclass

RATE_LIMIT_HINT = (
    "API rate limit exceeded. Authenticated requests get a higher rate limit, "
    "pass a token with --token or set GITHUB_TOKEN."
)


@dataclass(frozen=True)
class GitDumperError(Exception):
    """Base exception for errors in the git_dumper package."""

    message: str

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class ConfigurationError(GitDumperError):
    """Raised before any network call when the dump configuration is unusable."""


@dataclass(frozen=True)
class InvalidPatternError(ConfigurationError):
    """Raised when the path pattern does not compile as a regular expression."""

    pattern: str = ""


@dataclass(frozen=True)
class InvalidRepositoryUrlError(ConfigurationError):
    """Raised when a repository URL cannot be split into owner and name."""

    url: str = ""


@dataclass(frozen=True)
class RemoteError(GitDumperError):
    """Raised when a call to the repository hosting API fails."""

    url: str = ""
    status_code: int | None = None


@dataclass(frozen=True)
class RateLimitError(RemoteError):
    """Raised when the API answers 403 or 429."""


@dataclass(frozen=True)
class UnexpectedResponseError(RemoteError):
    """Raised when the API answers with a payload of the wrong shape."""


@dataclass(frozen=True)
class DumpCancelledError(GitDumperError):
    """Raised at a fetch boundary once the caller has requested cancellation."""

    message: str = "Operation cancelled"
