"""
Errors: the failure taxonomy of lens dispatch.

Firing a lens nobody listens to is not an error; it is the normal state of
an instrumented program before any listener is attached. The remaining
conditions are:
- NotFound: enable/disable/delete named an edge that does not exist
- ArgumentShapeMismatch: a call site and a listener disagree on positional vs keyed
- ListenerInvocationFailure: a listener raised; reported, never fatal
"""


class LensError(Exception):
    """Base class for all lensing errors."""


class NotFound(LensError, KeyError):
    """A (lens, listener) edge referenced by name does not exist."""

    def __init__(self, lens: str, listener: str, hint: str = "") -> None:
        self.lens = lens
        self.listener = listener
        super().__init__(f"no listener '{listener}' on lens '{lens}'.{hint}")

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return self.args[0]


class ArgumentShapeMismatch(LensError, TypeError):
    """A lens was fired with a shape its listeners cannot accept."""


class ListenerInvocationFailure(LensError):
    """
    Wraps an exception raised by a listener transform.

    Attributes:
        lens: Lens name that was firing.
        listener: Name of the listener that raised.
        original: The exception raised by the transform.
    """

    def __init__(self, lens: str, listener: str, original: BaseException) -> None:
        self.lens = lens
        self.listener = listener
        self.original = original
        super().__init__(
            f"listener '{listener}' on lens '{lens}' raised "
            f"{type(original).__name__}: {original}"
        )
