"""Exception taxonomy for the query engine."""


class NLQueryError(Exception):
    """Base class for engine errors."""


class ConversationNotFoundError(NLQueryError):
    """Raised when an operation names a conversation id the store does not hold."""

    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class NoRoutesAvailableError(NLQueryError):
    """Raised when coordination is attempted without any usable route."""


class CollaboratorError(NLQueryError):
    """Raised when the knowledge base or a responder fails or times out."""

    def __init__(self, message: str, collaborator: str | None = None):
        super().__init__(message)
        self.collaborator = collaborator


class FormattingError(NLQueryError):
    """Raised when a response cannot be rendered in the requested output format."""
