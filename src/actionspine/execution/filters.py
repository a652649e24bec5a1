"""Dispatch-time handler filtering over a registry snapshot."""

from __future__ import annotations

from collections.abc import Iterable

from actionspine.execution.models import HandlerFilter, HandlerRegistration


def _matches(registration: HandlerRegistration, flt: HandlerFilter) -> bool:
    config = registration.config

    # include filters
    if flt.tags and not any(tag in config.tags for tag in flt.tags):
        return False
    if flt.category is not None and config.category != flt.category:
        return False
    if flt.handler_ids and registration.id not in flt.handler_ids:
        return False
    if flt.environment is not None and config.environment != flt.environment:
        return False
    if flt.feature is not None and config.feature != flt.feature:
        return False

    # exclude filters
    if flt.exclude_tags and any(tag in config.tags for tag in flt.exclude_tags):
        return False
    if flt.exclude_category is not None and config.category == flt.exclude_category:
        return False
    if flt.exclude_handler_ids and registration.id in flt.exclude_handler_ids:
        return False

    if flt.custom is not None and not flt.custom(config):
        return False

    return True


def filter_registrations(
    registrations: Iterable[HandlerRegistration],
    handler_filter: HandlerFilter | None,
) -> tuple[HandlerRegistration, ...]:
    """Keep the registrations selected by ``handler_filter``, preserving order.

    A ``None`` filter selects everything.
    """
    registrations = tuple(registrations)
    if handler_filter is None:
        return registrations
    return tuple(reg for reg in registrations if _matches(reg, handler_filter))
