from __future__ import annotations

from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence


def _name(key: Any) -> str:
    return getattr(key, "__qualname__", None) or repr(key)


class ResolutionError(RuntimeError):
    """Base class for every failure raised while building an object graph."""


class CyclicDependencyError(ResolutionError):
    def __init__(self, key: Any, path: Sequence[Any]) -> None:
        self.key = key
        self.path = tuple(path)
        chain = " -> ".join(_name(k) for k in (*self.path, key))
        super().__init__(f"There is a cyclic dependency on {_name(key)}: {chain}")


class ConstructorError(ResolutionError):
    """The target has no usable constructor, or more than one."""

    def __init__(self, target: Any, reason: str) -> None:
        self.target = target
        super().__init__(f"{_name(target)} {reason}")


class UnresolvedSingletonError(ResolutionError):
    def __init__(self, key: Any) -> None:
        self.key = key
        super().__init__(
            f"{_name(key)} was registered as a singleton, but resolve_all() may not have been called."
        )


class UnresolvableConfigurationError(ResolutionError):
    """The fixpoint stalled.

    `remaining` maps every unresolved key to its provider; `errors` holds the
    failure of each key that could not be built at all in the last pass.
    """

    def __init__(self, remaining: Mapping[Any, Any], errors: Mapping[Any, ResolutionError] | None = None) -> None:
        self.remaining = dict(remaining)
        self.errors = dict(errors or {})
        key, provider = next(iter(self.remaining.items()))
        super().__init__(
            f"Some registrations, including {_name(key)} -> {_name(provider)}, could not be resolved "
            f"({len(self.remaining)} unresolved)."
        )


class UnbuildableTypeError(ResolutionError):
    def __init__(self, key: Any, reason: str = "could not be created.") -> None:
        self.key = key
        super().__init__(f"{_name(key)} {reason}")
