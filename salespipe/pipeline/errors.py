from __future__ import annotations


class PipelineError(Exception):
    """Base error for pipeline operations; ``detail`` is safe to show to clients."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class NotFoundError(PipelineError):
    """A lead, offer, sale or line item id did not resolve."""


class InvalidStateError(PipelineError):
    """A state-machine precondition failed."""


class CreationFailedError(PipelineError):
    """A unique number could not be allocated within the retry budget."""


class StoreUnavailableError(PipelineError):
    """The database could not be reached."""
