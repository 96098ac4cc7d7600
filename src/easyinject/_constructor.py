from __future__ import annotations

import inspect
import logging
import typing
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, cast, get_type_hints

from ._errors import ConstructorError


if TYPE_CHECKING:
    from collections.abc import Callable


logger = logging.getLogger(__name__)

_EMPTY = inspect.Parameter.empty


@dataclass(frozen=True)
class Dependency:
    name: str
    key: Any  # None when the parameter carries no annotation
    keyword_only: bool = False
    default: Any = _EMPTY

    @property
    def has_default(self) -> bool:
        return self.default is not _EMPTY


@dataclass(frozen=True)
class ConstructorSpec:
    """The single constructor of a provider and the keys its parameters ask for.

    A provider is either a class (its `__init__`, or `__new__` when only that is
    defined) or a factory callable. Abstract classes and protocols have no usable
    constructor; an `__init__` or factory declared with several `@overload`
    signatures has more than one. Both are rejected instead of guessed at.
    """

    provider: Callable[..., object]
    dependencies: tuple[Dependency, ...]

    @classmethod
    def inspect(cls, provider: Callable[..., object]) -> ConstructorSpec:
        if inspect.isclass(provider):
            if is_protocol(provider):
                raise ConstructorError(provider, "does not have any constructors, possibly because it is a protocol!")
            if inspect.isabstract(provider):
                raise ConstructorError(provider, "does not have any constructors, possibly because it is abstract!")
            func, skip_first = _class_constructor(provider)
            if func is None:
                return cls(provider=provider, dependencies=())
        elif callable(provider):
            func, skip_first = provider, False
        else:
            raise ConstructorError(provider, "is neither a class nor a callable factory.")

        if len(typing.get_overloads(func)) > 1:
            raise ConstructorError(provider, "has more than one constructor!")

        try:
            sig = inspect.signature(func)
        except (TypeError, ValueError) as e:
            msg = f"has a constructor whose signature cannot be inspected ({e})."
            raise ConstructorError(provider, msg) from e

        params = list(sig.parameters.values())
        if skip_first:
            params = params[1:]

        hints = _get_type_hints(provider, func)
        dependencies = []
        for p in params:
            # *args / **kwargs are never injected
            if p.kind in (p.VAR_POSITIONAL, p.VAR_KEYWORD):
                continue
            key = hints.get(p.name)
            if key is None and p.default is _EMPTY:
                msg = f"constructor parameter '{p.name}' has neither a type annotation nor a default."
                raise ConstructorError(provider, msg)
            dependencies.append(
                Dependency(name=p.name, key=key, keyword_only=p.kind is p.KEYWORD_ONLY, default=p.default)
            )

        return cls(provider=provider, dependencies=tuple(dependencies))


def _class_constructor(cls: type) -> tuple[Callable[..., Any] | None, bool]:
    """Return the function that defines `cls`'s constructor parameters, if any."""
    init = inspect.getattr_static(cls, "__init__", object.__init__)
    if init is not object.__init__:
        return (init, True) if inspect.isfunction(init) else (None, False)

    new = inspect.getattr_static(cls, "__new__", object.__new__)
    if isinstance(new, staticmethod):
        new = new.__func__
    if new is not object.__new__ and inspect.isfunction(new):
        return new, True

    return None, False


def _get_type_hints(provider: Callable[..., object], func: Callable[..., Any]) -> dict[str, Any]:
    target = func if inspect.isfunction(func) or inspect.ismethod(func) else type(func).__call__
    try:
        hints = get_type_hints(target)
    except TypeError:
        hints = {}
    except NameError as exc:
        name = getattr(provider, "__qualname__", repr(provider))
        logger.warning("'%s' name error retrieving %s constructor type hints", exc.name, name)
        hints = {}

    hints.pop("return", None)
    return hints


if hasattr(typing, "is_protocol"):
    # https://docs.python.org/3/library/typing.html#typing.is_protocol
    def is_protocol(tp: Any) -> bool:
        return inspect.isclass(tp) and typing.is_protocol(tp)

else:

    def is_protocol(tp: Any) -> bool:
        return (
            inspect.isclass(tp)
            and issubclass(tp, cast("type", Protocol))
            and getattr(tp, "_is_protocol", False)
        )
