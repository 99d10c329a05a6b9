"""
greasebox/utils/exceptions.py

Custom exceptions for the project.
"""


class GreaseboxError(Exception):
    """
    Base class for all greasebox errors.
    """
    pass


class CDPError(GreaseboxError):
    """
    Exception raised when a CDP command returns an error reply.
    """

    def __init__(self, method: str, error: dict | str) -> None:
        self.method = method
        self.error = error
        message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
        super().__init__(f"CDP command {method} failed: {message}")


class PageClosedError(GreaseboxError):
    """
    Exception raised when the page, its target or the websocket connection is gone.
    """
    pass


class SchedulingError(GreaseboxError):
    """
    Exception raised when injection phases are driven out of order
    (e.g. document-start scripts registered after navigation started).
    """
    pass


class StartupError(GreaseboxError):
    """
    Exception raised when a run cannot start at all (no browser, no page).
    """
    pass


class PageScriptError(GreaseboxError):
    """
    Exception raised when code evaluated in the page throws.
    """

    def __init__(self, text: str, details: dict | None = None) -> None:
        self.text = text
        self.details = details or {}
        super().__init__(text)


class NavigationError(GreaseboxError):
    """
    Exception raised when the browser reports a failed navigation (e.g. net::ERR_NAME_NOT_RESOLVED).
    """
    pass
