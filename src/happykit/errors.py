"""Exception hierarchy for happykit.

Hooks signal failure by raising; the orchestrator decides, per phase,
whether an error is fatal, deferred into a setup result, or recorded on
the session (see :mod:`happykit.pipeline`).
"""

from __future__ import annotations

from collections.abc import Sequence


class HappyError(Exception):
    """Base class for all framework errors."""


class ConfigError(HappyError):
    """Configuration file or settings could not be loaded."""


class InvalidSettingsKeyError(HappyError):
    """A settings key does not match the settings-key grammar."""

    def __init__(self, key: str) -> None:
        super().__init__(f"invalid settings key: {key!r}")
        self.key = key


class CommandError(HappyError):
    """Command verification or resolution failure."""


class PrepareCommandError(CommandError):
    """Uniform abort reason when setup accumulated errors."""

    def __init__(self, message: str = "failed to prepare command") -> None:
        super().__init__(message)


class FlagError(HappyError):
    """Invalid flag declaration or flag-set composition."""


class FlagAlreadyParsedError(FlagError):
    """Arguments were already parsed; the first result stays authoritative."""

    def __init__(self) -> None:
        super().__init__("flags already parsed")


class AddonError(HappyError):
    """Addon registration or contribution failure."""


class SessionError(HappyError):
    """Invalid session lifecycle transition."""


class ServiceError(HappyError):
    """Service registration, initialization or loading failure.

    When several services fail together, ``errors`` keeps each member error
    in the order they were collected.
    """

    def __init__(self, message: str, errors: Sequence[BaseException] = ()) -> None:
        if errors:
            details = "; ".join(str(e) for e in errors)
            message = f"{message}: {details}"
        super().__init__(message)
        self.errors: list[BaseException] = list(errors)


class FatalExit(HappyError):
    """Fatal-immediate condition: stop the world with ``code``.

    Raised at the point of detection and converted into exactly one
    exit-coordinator call by the application.
    """

    def __init__(self, code: int, error: BaseException | None = None) -> None:
        super().__init__(str(error) if error is not None else f"exit {code}")
        self.code = code
        self.error = error
