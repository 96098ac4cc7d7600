"""Minimal constructor-injection container.

This package builds object graphs from type registrations: each key maps to a
concrete class (or factory) with a singleton or transient lifetime, and every
constructor parameter is satisfied from the same registry by its type annotation.
Singletons are built by a repeated best-effort pass, so they may be registered
in any order; cycles and unsatisfiable configurations are reported as errors.

Exports:
- `Container`: registry, singleton resolver and query surface.
- `Lifetime`: singleton or transient.
- `Registration`: one key -> provider mapping with its lifetime.
- `ResolutionError` and its subclasses, one per failure kind.
"""

from ._container import Container, Lifetime, Registration
from ._errors import (
    ConstructorError,
    CyclicDependencyError,
    ResolutionError,
    UnbuildableTypeError,
    UnresolvableConfigurationError,
    UnresolvedSingletonError,
)


__all__ = [
    "ConstructorError",
    "Container",
    "CyclicDependencyError",
    "Lifetime",
    "Registration",
    "ResolutionError",
    "UnbuildableTypeError",
    "UnresolvableConfigurationError",
    "UnresolvedSingletonError",
]
