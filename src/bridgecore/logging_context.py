from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

_FIELDS = ("session_id", "order_id", "from_currency", "to_currency")
_CONTEXT_VARS: dict[str, ContextVar[str | None]] = {
    field: ContextVar(field, default=None) for field in _FIELDS
}
# masked in every log line of the task, never rendered
_ORDER_TOKEN: ContextVar[str | None] = ContextVar("order_token", default=None)


def get_logging_context() -> dict[str, str | None]:
    context: dict[str, str | None] = {}
    for field, context_var in _CONTEXT_VARS.items():
        value = context_var.get()
        if value is not None:
            context[field] = value
    return context


def bound_secrets() -> tuple[str, ...]:
    token = _ORDER_TOKEN.get()
    return (token,) if token else ()


@contextmanager
def with_logging_context(**context: str | None) -> Iterator[None]:
    tokens: dict[str, object] = {}
    try:
        for key, value in context.items():
            context_var = _CONTEXT_VARS.get(key)
            if context_var is None or value is None:
                continue
            tokens[key] = context_var.set(value)
        yield
    finally:
        for key, token in tokens.items():
            _CONTEXT_VARS[key].reset(token)


def bind_order_context(
    order_id: str | None,
    *,
    order_token: str | None = None,
    from_currency: str | None = None,
    to_currency: str | None = None,
) -> None:
    """Bind the tracked order for the rest of the current task.

    Tasks spawned afterwards copy the binding, so timers started for an order
    log under that order's id and pair, with its access token masked.
    """
    _CONTEXT_VARS["order_id"].set(order_id)
    _CONTEXT_VARS["from_currency"].set(from_currency)
    _CONTEXT_VARS["to_currency"].set(to_currency)
    _ORDER_TOKEN.set(order_token)
