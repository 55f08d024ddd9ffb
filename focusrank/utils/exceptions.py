class FocusRankException(Exception):
    """Base exception for the focusrank engine."""
    pass


class ParameterValidationError(FocusRankException, ValueError):
    """Rejected parameter update; the previous configuration stays in force."""
    pass


class CollaboratorUnavailableError(FocusRankException):
    """An external collaborator (LLM, vector index, store) could not be reached."""
    pass


class FocusExtractionError(FocusRankException):
    """The extraction collaborator answered with something we cannot parse."""
    pass


class OllamaException(CollaboratorUnavailableError):
    """Exception for Ollama-specific errors."""
    pass
