"""Success/failure values returned across the organizer's public boundary.

Moves, rollbacks and matching report problems as a ``Failure`` carrying the
exception instead of raising it, so a batch can keep going after one bad item.
Internal helpers still raise; the public method is where the exception is
captured.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar, Union

T = TypeVar('T')
U = TypeVar('U')


class _ResultBase(Generic[T]):

    def is_success(self) -> bool:
        return isinstance(self, Success)

    def is_failure(self) -> bool:
        return isinstance(self, Failure)

    def or_else(self, default: T) -> T:
        """Value on success, ``default`` otherwise."""
        return self.value() if self.is_success() else default

    def or_else_raise(self) -> T:
        """Value on success; re-raise the captured exception otherwise."""
        if self.is_failure():
            raise self.error()
        return self.value()


@dataclass(frozen=True)
class Success(_ResultBase[T]):
    payload: T

    def value(self) -> T:
        return self.payload

    def error(self) -> Exception:
        raise ValueError(f"{self!r} has no error")

    def map(self, fn: Callable[[T], U]) -> Result[U]:
        """Apply ``fn`` to the value; an exception it raises becomes a Failure."""
        try:
            return Success(fn(self.payload))
        except Exception as e:
            return Failure(e)

    @property
    def kind(self) -> Optional[str]:
        return None

    def __repr__(self) -> str:
        return f"Success({self.payload!r})"


@dataclass(frozen=True)
class Failure(_ResultBase[Any]):
    exception: Exception

    def value(self) -> Any:
        raise ValueError(f"Operation failed: {self.exception}")

    def error(self) -> Exception:
        return self.exception

    def map(self, fn: Callable[[Any], Any]) -> Failure:
        return self

    @property
    def kind(self) -> Optional[str]:
        """Classification of the captured error, when it carries one.

        File errors expose their ``FileErrorKind`` and state errors their
        ``StateErrorReason``; anything else has no kind.
        """
        for attr in ('kind', 'reason'):
            tag = getattr(self.exception, attr, None)
            if tag is not None:
                return getattr(tag, 'value', str(tag))
        return None

    def __repr__(self) -> str:
        return f"Failure({self.exception!r})"


Result = Union[Success[T], Failure]
