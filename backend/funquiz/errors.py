from __future__ import annotations


class FunQuizError(Exception):
    """Base class for errors raised by the quiz backend."""


class InvalidArgumentError(FunQuizError, ValueError):
    """A required entity was missing or an input was out of range."""


class InvalidOperationError(FunQuizError, RuntimeError):
    """The requested mutation is not allowed in the current game state."""


class NotFoundError(FunQuizError, LookupError):
    pass


class QuestionGenerationError(FunQuizError):
    """The question provider could not supply usable questions."""
