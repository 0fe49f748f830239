"""Exception hierarchy shared by the session and transport layers."""


class DotsBoxesError(Exception):
    """Base class for every error raised by the package."""


class SessionStateError(DotsBoxesError):
    """An operation was called in a session state that does not allow it."""


class TransportError(DotsBoxesError):
    """Failure reported by the link to the remote peer."""


class RegistrationError(TransportError):
    """The local peer identity could not be registered (for example, it is taken)."""


class PeerUnavailableError(TransportError):
    """The requested peer identity does not exist or is already linked."""


class TransportClosedError(TransportError):
    """A send was attempted on a link that is not open."""
