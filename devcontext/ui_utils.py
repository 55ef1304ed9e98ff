from __future__ import annotations

from typing import Any, Callable, Iterable, List, Tuple

import gradio as gr


def safe_component(
    factory: Callable[..., Any],
    *args: Any,
    optional_keys: Tuple[str, ...] = ("type", "show_copy_button"),
    **kwargs: Any,
) -> Any:
    """Build a Gradio component, dropping optional kwargs this Gradio rejects.

    Only keys listed in ``optional_keys`` are retried without; any other
    ``TypeError`` propagates.
    """

    attempt = dict(kwargs)
    pending = [key for key in optional_keys if key in attempt]
    while True:
        try:
            return factory(*args, **attempt)
        except TypeError as exc:
            rejected = next((key for key in pending if f"'{key}'" in str(exc)), None)
            if rejected is None:
                raise
            pending.remove(rejected)
            attempt.pop(rejected)


class NullContainer:
    """Stand-in for layout blocks missing from older Gradio releases."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        pass

    def __enter__(self) -> "NullContainer":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        return False


def component_factory(name: str, fallback: Callable[..., Any] = NullContainer) -> Callable[..., Any]:
    return getattr(gr, name, fallback)


def dropdown_update(choices: Iterable[Any], value: Any = None) -> Any:
    """Refresh a dropdown's choices, keeping ``value`` only when still offered."""

    options: List[Any] = list(choices)
    keys = [option[1] if isinstance(option, tuple) else option for option in options]
    return gr.update(choices=options, value=value if value in keys else None)


__all__ = ["NullContainer", "component_factory", "dropdown_update", "safe_component"]
