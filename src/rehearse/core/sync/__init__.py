from .predicates import (
    AllOf,
    Observation,
    Predicate,
    all_of,
    element_count,
    element_hidden,
    element_visible,
    local_storage_equals,
    network_idle,
    no_pending_animation,
    predicate,
    text_present,
    url_matches,
)
from .waiter import DEFAULT_POLL_INTERVAL, MIN_POLL_INTERVAL, wait_for

__all__ = [
    "DEFAULT_POLL_INTERVAL",
    "MIN_POLL_INTERVAL",
    "AllOf",
    "Observation",
    "Predicate",
    "all_of",
    "element_count",
    "element_hidden",
    "element_visible",
    "local_storage_equals",
    "network_idle",
    "no_pending_animation",
    "predicate",
    "text_present",
    "url_matches",
    "wait_for",
]
