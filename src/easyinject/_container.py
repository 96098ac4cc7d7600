from __future__ import annotations

import inspect
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Literal,
    NoReturn,
    TypeVar,
    get_type_hints,
    overload,
)

from ._constructor import ConstructorSpec, is_protocol
from ._errors import (
    CyclicDependencyError,
    ResolutionError,
    UnbuildableTypeError,
    UnresolvableConfigurationError,
    UnresolvedSingletonError,
)


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    from ._constructor import Dependency

    T = TypeVar("T")


class Lifetime(Enum):
    SINGLETON = "singleton"
    TRANSIENT = "transient"


@dataclass(frozen=True)
class Registration:
    key: Any
    provider: Callable[..., object]  # implementation class or factory
    lifetime: Lifetime


@dataclass(frozen=True)
class Resolution:
    """Outcome of one resolver call: a built instance, or pending.

    Pending means a singleton somewhere below the requested key is registered but
    has not been built yet, so a later fixpoint pass may succeed. Failures that no
    retry can fix are raised as `ResolutionError` instead.
    """

    instance: object = None
    pending: bool = False

    @classmethod
    def built(cls, instance: object) -> Resolution:
        return cls(instance=instance)


PENDING = Resolution(pending=True)


class Container:
    """Constructor-injection container with singleton and transient lifetimes.

    Usage goes through three phases:

    - register keys with `register_singleton`, `register_singleton_instance` and
      `register_transient`; duplicates are refused with `False`
    - build every singleton with `resolve_all` (or `resolve_and_verify`), in any
      registration order
    - query with `get`, `create` or `get_service`.
    """

    def __init__(self) -> None:
        self._singletons: dict[Any, Registration] = {}
        self._transients: dict[Any, Registration] = {}
        self._instances: dict[Any, object] = {}
        self._lock = threading.RLock()

    def __contains__(self, key: object) -> bool:
        return key in self._singletons or key in self._transients

    # -- registration -------------------------------------------------------

    def register_singleton(
        self,
        key: Any,
        impl: type | None = None,
        *,
        factory: Callable[..., object] | None = None,
    ) -> bool:
        """Register `key` as a singleton built from `impl`, `factory`, or `key` itself.

        Example:
          container.register_singleton(Clock)
          container.register_singleton(IRepo, SqlRepo)
          container.register_singleton(IDb, factory=make_db)

        Returns False, leaving the existing registration untouched, when `key`
        is already registered with either lifetime.
        """
        return self._add(key, Lifetime.SINGLETON, impl, factory)

    def register_singleton_instance(self, key: Any, instance: object) -> bool:
        """Register a pre-built singleton. It is available to `get` immediately."""
        with self._lock:
            if key in self:
                logger.debug("%r is already registered; ignoring instance", key)
                return False
            if instance is None:
                logger.debug("Refusing to register None as the instance of %r", key)
                return False
            if inspect.isclass(key):
                self._validate_impl(cls=key, impl=type(instance))
            self._singletons[key] = Registration(key=key, provider=type(instance), lifetime=Lifetime.SINGLETON)
            self._instances[key] = instance

        logger.debug("Registered %r as a singleton instance of %s", key, type(instance).__name__)
        return True

    def register_transient(
        self,
        key: Any,
        impl: type | None = None,
        *,
        factory: Callable[..., object] | None = None,
    ) -> bool:
        """Register `key` as transient: every request builds a new instance."""
        return self._add(key, Lifetime.TRANSIENT, impl, factory)

    def registered_keys(self) -> list[Any]:
        with self._lock:
            return [*self._singletons, *self._transients]

    def unresolved_singletons(self) -> list[Any]:
        with self._lock:
            return [key for key in self._singletons if key not in self._instances]

    def _add(
        self,
        key: Any,
        lifetime: Lifetime,
        impl: type | None,
        factory: Callable[..., object] | None,
    ) -> bool:
        table = self._singletons if lifetime is Lifetime.SINGLETON else self._transients
        with self._lock:
            # a duplicate is refused before impl/factory are looked at
            if key in self:
                logger.debug("%r is already registered; ignoring", key)
                return False
            registration = Registration(key=key, provider=self._provider_for(key, impl, factory), lifetime=lifetime)
            table[key] = registration

        logger.debug(
            "Registered %r -> %r as %s", registration.key, registration.provider, registration.lifetime.value
        )
        return True

    def _provider_for(
        self,
        key: Any,
        impl: type | None,
        factory: Callable[..., object] | None,
    ) -> Callable[..., object]:
        if impl is not None and factory is not None:
            msg = "Provide either `impl` or `factory`, not both."
            raise ValueError(msg)

        if factory is not None:
            if not callable(factory):
                msg = f"Factory for {key!r} is not callable: {factory!r}"
                raise TypeError(msg)
            return factory

        if impl is None:
            return key

        if inspect.isclass(key) and inspect.isclass(impl):
            self._validate_impl(cls=key, impl=impl)
        return impl

    def _validate_impl(self, cls: type, impl: type) -> None:
        """Validate that `impl` can stand in for `cls`.

        - For normal classes/ABCs: require issubclass(impl, cls).
        - For Protocols: nominal via MRO, otherwise every public member the
          protocol declares must be present on `impl`.
        """
        if impl is cls:
            return

        if not is_protocol(cls):
            if not issubclass(impl, cls):
                msg = f"Implementation {impl.__name__} must be a subclass of {cls.__name__}"
                raise TypeError(msg)
            return

        if cls in getattr(impl, "__mro__", ()):
            return

        missing = [name for name in _protocol_members(cls) if not hasattr(impl, name)]
        if missing:
            msg = (
                f"Implementation {impl.__name__} does not structurally conform to protocol "
                f"{cls.__name__}: missing members: {', '.join(missing)}"
            )
            raise TypeError(msg)

    # -- resolve / verify ---------------------------------------------------

    def resolve_all(self, *, throw_on_failure: bool = True) -> bool:
        """Build every registered singleton that has no instance yet.

        Runs passes over the unresolved singletons until all are built or a pass
        builds nothing. A singleton whose dependencies are still pending is simply
        retried in the next pass, so registration order does not matter.
        """
        with self._lock:
            remaining = {key: self._singletons[key] for key in self.unresolved_singletons()}
            passes = 0
            try:
                while remaining:
                    passes += 1
                    added = []
                    # missing registrations keep the key in the retry set
                    errors: dict[Any, UnbuildableTypeError] = {}
                    for key in remaining:
                        try:
                            outcome = self._try_resolve(key, force_new=True)
                        except UnbuildableTypeError as e:
                            errors[key] = e
                            continue
                        if outcome.pending:
                            continue
                        self._instances[key] = outcome.instance
                        added.append(key)

                    logger.debug(
                        "Resolve pass %d built %d of %d remaining singletons", passes, len(added), len(remaining)
                    )
                    if not added:
                        self._raise_stalled(remaining, errors)

                    for key in added:
                        del remaining[key]
            except ResolutionError as e:
                if throw_on_failure:
                    raise
                logger.warning("Singleton resolution failed: %s", e)
                return False

        return True

    def verify_all(self, *, throw_on_failure: bool = True) -> bool:
        """Check that every built singleton and every transient can be provided now.

        Transient instances built for the check are discarded.
        """
        with self._lock:
            keys = [*self._instances, *(key for key in self._transients if key not in self._instances)]
            for key in keys:
                try:
                    if self._try_resolve(key).pending:
                        raise UnbuildableTypeError(key, "could not be resolved.")
                except ResolutionError as e:
                    if throw_on_failure:
                        raise
                    logger.warning("Verification failed: %s", e)
                    return False

        return True

    def resolve_and_verify(self, *, throw_on_failure: bool = True) -> bool:
        return self.resolve_all(throw_on_failure=throw_on_failure) and self.verify_all(
            throw_on_failure=throw_on_failure
        )

    def _raise_stalled(self, remaining: Mapping[Any, Registration], errors: Mapping[Any, ResolutionError]) -> NoReturn:
        cycle = self._find_cycle(remaining)
        if cycle is not None:
            path, key = cycle
            raise CyclicDependencyError(key, path)

        error = UnresolvableConfigurationError({key: reg.provider for key, reg in remaining.items()}, errors)
        raise error from next(iter(errors.values()), None)

    def _find_cycle(self, roots: Iterable[Any]) -> tuple[tuple[Any, ...], Any] | None:
        """Search the unbuilt part of the dependency graph for a cycle.

        Singletons waiting on each other never reach the resolver's path check,
        since each one reports pending first; this finds them after a stall.
        """
        finished: set[Any] = set()

        def visit(key: Any, path: tuple[Any, ...]) -> tuple[tuple[Any, ...], Any] | None:
            if key in path:
                return path[path.index(key) :], key
            if key in finished or key in self._instances:
                return None
            for dep in self._dependency_keys(key):
                found = visit(dep, (*path, key))
                if found is not None:
                    return found
            finished.add(key)
            return None

        for root in roots:
            found = visit(root, ())
            if found is not None:
                return found
        return None

    def _dependency_keys(self, key: Any) -> list[Any]:
        try:
            spec = ConstructorSpec.inspect(self._provider_of(key))
        except ResolutionError:
            # an unbuildable key has no outgoing edges
            return []
        return [dep.key for dep in spec.dependencies if not self._uses_default(dep)]

    # -- query --------------------------------------------------------------

    @overload
    def get(self, key: type[T]) -> T: ...

    @overload
    def get(self, key: type[T], *, throw_on_unresolved: Literal[True]) -> T: ...

    @overload
    def get(self, key: type[T], *, throw_on_unresolved: bool) -> T | None: ...

    @overload
    def get(self, key: Any, *, throw_on_unresolved: bool = ...) -> Any: ...

    def get(self, key: Any, *, throw_on_unresolved: bool = True) -> Any:
        """Return the instance for `key`.

        - built singleton: the cached instance
        - transient: a new instance
        - singleton not built yet: `UnresolvedSingletonError`
        - unregistered: built on demand and not cached.

        With `throw_on_unresolved=False` failures return None instead.
        """
        try:
            return self._get(key)
        except ResolutionError as e:
            if throw_on_unresolved:
                raise
            logger.debug("No instance for %r: %s", key, e)
            return None

    def _get(self, key: Any) -> object:
        with self._lock:
            if key in self._instances:
                return self._instances[key]

            if key in self._transients:
                return self.create(key)

            if key in self._singletons:
                raise UnresolvedSingletonError(key)

            outcome = self._try_resolve(key)
            if outcome.pending:
                raise UnbuildableTypeError(
                    key,
                    "was not found to be registered as either a singleton or a transient and it could not be created.",
                )
            return outcome.instance

    @overload
    def create(self, key: type[T]) -> T: ...

    @overload
    def create(self, key: Any) -> Any: ...

    def create(self, key: Any) -> Any:
        """Build a new instance of `key`, bypassing any cached singleton.

        `key` need not be registered; existing registrations are injected as
        its constructor arguments.
        """
        with self._lock:
            outcome = self._try_resolve(key, force_new=True)
        if outcome.pending:
            raise UnbuildableTypeError(key, "could not be created.")
        return outcome.instance

    def get_service(self, key: Any) -> Any:
        return self.get(key, throw_on_unresolved=False)

    # -- resolver -----------------------------------------------------------

    def _try_resolve(self, key: Any, *, force_new: bool = False, path: tuple[Any, ...] = ()) -> Resolution:
        if key in path:
            raise CyclicDependencyError(key, path)

        if not force_new and key in self._instances:
            return Resolution.built(self._instances[key])

        spec = ConstructorSpec.inspect(self._provider_of(key))
        injected = [dep for dep in spec.dependencies if not self._uses_default(dep)]

        if any(self._is_pending(dep.key) for dep in injected):
            return PENDING

        if not spec.dependencies:
            return Resolution.built(self._instantiate(key, spec, [], {}))

        child_path = (*path, key)
        resolved = {dep.name: self._try_resolve(dep.key, path=child_path) for dep in injected}
        if any(outcome.pending for outcome in resolved.values()):
            return PENDING

        args: list[Any] = []
        kwargs: dict[str, Any] = {}
        for dep in spec.dependencies:
            value = resolved[dep.name].instance if dep.name in resolved else dep.default
            if dep.keyword_only:
                kwargs[dep.name] = value
            else:
                args.append(value)

        return Resolution.built(self._instantiate(key, spec, args, kwargs))

    def _instantiate(self, key: Any, spec: ConstructorSpec, args: list[Any], kwargs: dict[str, Any]) -> object:
        instance = spec.provider(*args, **kwargs)
        if instance is None:
            raise UnbuildableTypeError(key, "could not be created: its factory returned None.")
        return instance

    def _provider_of(self, key: Any) -> Callable[..., object]:
        if key in self._transients:
            return self._transients[key].provider
        if key in self._singletons:
            return self._singletons[key].provider
        if not _self_constructible(key):
            msg = "is not registered and cannot be constructed on demand."
            raise UnbuildableTypeError(key, msg)
        return key

    def _is_pending(self, key: Any) -> bool:
        return key in self._singletons and key not in self._instances

    def _uses_default(self, dep: Dependency) -> bool:
        """Whether `dep` is left to its default value instead of being injected."""
        if dep.key is None:
            return True
        if not dep.has_default:
            return False
        return dep.key not in self and not _self_constructible(dep.key)


def _self_constructible(key: Any) -> bool:
    return inspect.isclass(key) and key.__module__ != "builtins"


def _protocol_members(proto_cls: type) -> list[str]:
    try:
        hints = get_type_hints(proto_cls)
    except (TypeError, NameError):
        hints = {}

    members = [name for name in hints if not name.startswith("_")]
    members.extend(
        name
        for name, attr in proto_cls.__dict__.items()
        if not name.startswith("_") and inspect.isfunction(attr) and name not in members
    )
    return members
