"""Sandbox bootstrap utilities for deterministic demo data."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:   # pragma: no cover - import for type checking only
    from .bootstrap import ensure_sample_data, run_cli
    from .sample import generate_sample

__all__ = [
    "ensure_sample_data",
    "generate_sample",
    "run_cli",
]


def __getattr__(name: str) -> Any:  # pragma: no cover - thin import wrapper
    if name == "generate_sample":
        from . import sample

        return sample.generate_sample
    if name in __all__:
        from . import bootstrap

        return getattr(bootstrap, name)
    raise AttributeError(f"module 'tracker.sandbox' has no attribute {name!r}")
