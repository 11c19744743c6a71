"""Error taxonomy shared by every lifecycle operation.

Each error carries the HTTP status the API layer answers with and a
``retryable`` hint for callers. Services raise these; only the routes layer
translates them into responses (see ``core.exception_handler``).
"""


class LifecycleError(Exception):
    status_code: int = 400
    retryable: bool = False

    def __init__(self, detail: str, **context):
        super().__init__(detail)
        self.detail = detail
        self.context = context

    def to_dict(self) -> dict:
        return {
            "success": False,
            "error": type(self).__name__,
            "detail": self.detail,
            "retryable": self.retryable,
        }


class ValidationError(LifecycleError):
    """Bad input shape, or a field group missing for the booking kind."""

    status_code = 422


class NotFoundError(LifecycleError):
    status_code = 404


class PermissionDeniedError(LifecycleError):
    status_code = 403


class IllegalTransitionError(LifecycleError):
    """The requested transition is not an edge of the state machine."""

    status_code = 409

    def __init__(self, entity: str, current, target, detail: str | None = None):
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        super().__init__(
            detail
            or f"Cannot move {entity} from '{current_value}' to '{target_value}'",
            entity=entity,
            current=current_value,
            target=target_value,
        )


class ConflictError(LifecycleError):
    """Lost a race, or a callback tried to override an incompatible state."""

    status_code = 409
    retryable = True


class StaleStateError(ConflictError):
    pass


class ProviderTimeoutError(LifecycleError):
    status_code = 202
    retryable = True


class ProviderFailure(LifecycleError):
    """Explicit decline from the payment provider."""

    status_code = 402
    retryable = True


class MoneyIntegrityError(LifecycleError):
    """Over-refund, double settlement or any other amount violation."""

    status_code = 409
