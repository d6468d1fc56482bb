"""Exception hierarchy for the segmentation engine.

Every error raised by the engine derives from :class:`SegmentationError`, which
itself subclasses :class:`ValueError` so callers that already guard input
validation with ``except ValueError`` keep working.

Errors carry enough context to identify *where* a run failed: the window being
processed, the offending field or invariant, and (for input records) the record
index. That context is rendered into the message so a failure is never a
generic abort.
"""

from __future__ import annotations

from typing import Any, Mapping


class SegmentationError(ValueError):
    """Base class for all engine failures.

    Attributes
    ----------
    window_id:
        Identifier of the window whose processing failed, if known.
    field:
        Name of the failing field or invariant, if known.
    context:
        Additional key/value details (record index, offending value, ...).
    """

    def __init__(
        self,
        message: str,
        *,
        window_id: str | None = None,
        field: str | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.window_id = window_id
        self.field = field
        self.context = dict(context or {})
        super().__init__(self._render())

    def _render(self) -> str:
        details = []
        if self.window_id is not None:
            details.append(f"window={self.window_id}")
        if self.field is not None:
            details.append(f"field={self.field}")
        for key, value in self.context.items():
            details.append(f"{key}={value}")
        if not details:
            return self.message
        return f"{self.message} ({', '.join(details)})"

    def with_window(self, window_id: str) -> "SegmentationError":
        """Return a copy of this error tagged with ``window_id``."""
        return type(self)(
            self.message,
            window_id=window_id,
            field=self.field,
            context=self.context,
        )

    def __reduce__(self):
        # Keep keyword attributes intact across process boundaries.
        return (
            _rebuild_error,
            (type(self), self.message, self.window_id, self.field, self.context),
        )


def _rebuild_error(
    cls: type[SegmentationError],
    message: str,
    window_id: str | None,
    field: str | None,
    context: Mapping[str, Any],
) -> SegmentationError:
    return cls(message, window_id=window_id, field=field, context=context)


class ConfigurationError(SegmentationError):
    """Invalid run configuration, e.g. overlapping windows or a count below 1."""


class DataContractError(SegmentationError):
    """An input record violates the transaction/customer data contract."""


class InvariantError(SegmentationError):
    """A derived value falls outside its valid domain."""
