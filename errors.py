"""Result values returned by the service layer.

Services never raise for expected failures; they hand back either ``Ok`` or
one of the failure types below, and the blueprints turn failures into JSON
with ``to_response()``.
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar


@dataclass(frozen=True)
class Ok:
    value: Any = None

    ok: ClassVar[bool] = True


@dataclass(frozen=True)
class Failure:
    message: str

    ok: ClassVar[bool] = False
    code: ClassVar[str] = 'error'
    http_status: ClassVar[int] = 500

    def to_response(self, **extra) -> dict:
        body = {
            'error': {
                'code': self.code,
                'message': self.message,
            }
        }
        body['error'].update(self._details())
        body.update(extra)
        return body

    def _details(self) -> dict:
        return {}


@dataclass(frozen=True)
class ValidationFailed(Failure):
    """Eligibility, cap, lock or input problems the user can correct."""

    messages: tuple[str, ...] = field(default_factory=tuple)

    code: ClassVar[str] = 'validation_failed'
    http_status: ClassVar[int] = 422

    @classmethod
    def of(cls, messages) -> 'ValidationFailed':
        messages = tuple(messages)
        return cls(message='; '.join(messages), messages=messages)

    def _details(self) -> dict:
        return {'messages': list(self.messages or (self.message,))}


@dataclass(frozen=True)
class NotPermitted(Failure):
    code: ClassVar[str] = 'not_permitted'
    http_status: ClassVar[int] = 403


@dataclass(frozen=True)
class Expired(Failure):
    message: str = 'This invitation has expired. Ask for a new one.'

    code: ClassVar[str] = 'expired'
    http_status: ClassVar[int] = 410


@dataclass(frozen=True)
class AlreadyRedeemed(Failure):
    message: str = 'This invitation has already been used.'

    code: ClassVar[str] = 'already_redeemed'
    http_status: ClassVar[int] = 409


@dataclass(frozen=True)
class DispatchError(Failure):
    """Email could not be sent. The invitation itself stays valid."""

    code: ClassVar[str] = 'dispatch_error'
    http_status: ClassVar[int] = 502


@dataclass(frozen=True)
class PersistenceError(Failure):
    code: ClassVar[str] = 'persistence_error'
    http_status: ClassVar[int] = 500
