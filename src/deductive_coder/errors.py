"""Exception hierarchy for deductive-coder."""


class DeductiveCoderError(Exception):
    """Base class for all deductive-coder errors."""


class InvalidSpanError(DeductiveCoderError, ValueError):
    """A coded span failed validation (offsets, codes or id)."""


class CrossParagraphSpanError(InvalidSpanError):
    """A span crosses a paragraph boundary while paragraph rendering is on."""


class NoPendingSelectionError(DeductiveCoderError):
    """An operation needing a pending selection was called while idle."""


class SchemaError(DeductiveCoderError, ValueError):
    """A codebook file is missing one of the required columns."""


class SuggestionError(DeductiveCoderError):
    """The suggestion service failed or returned an unusable response."""


class SessionNotReadyError(DeductiveCoderError):
    """The session store lacks a document or a code framework."""
