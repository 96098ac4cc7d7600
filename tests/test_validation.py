import logging
import unittest
from abc import ABC, abstractmethod
from typing import Protocol, overload, runtime_checkable

import pytest

from easyinject import ConstructorError, Container, UnbuildableTypeError


class Dangling:
    def __init__(self, dep: "NotDefinedAnywhere"):  # noqa: F821
        self.dep = dep


class TestImplementationValidation(unittest.TestCase):
    cont: Container

    @runtime_checkable
    class RepoProtocol(Protocol):
        def get(self) -> int: ...

    class GoodRepo:
        def get(self) -> int:
            return 42

    class BadRepo:
        # Missing `get`, does not conform to RepoProtocol
        def other(self) -> str:
            return "nope"

    class Base: ...

    class Unrelated: ...

    def setUp(self):
        self.cont = Container()

    def test_register_raises_type_error_for_non_conforming_class(self):
        with pytest.raises(TypeError):
            self.cont.register_singleton(self.RepoProtocol, self.BadRepo)
        assert self.RepoProtocol not in self.cont

    def test_register_instance_raises_type_error_for_non_conforming_instance(self):
        with pytest.raises(TypeError):
            self.cont.register_singleton_instance(self.RepoProtocol, self.BadRepo())

    def test_register_transient_raises_type_error_for_non_subclass(self):
        with pytest.raises(TypeError) as ctx:
            self.cont.register_transient(self.Base, self.Unrelated)
        assert "must be a subclass of Base" in str(ctx.value)

    def test_register_succeeds_for_conforming_class(self):
        assert self.cont.register_singleton(self.RepoProtocol, self.GoodRepo)
        self.cont.resolve_all()

        repo = self.cont.get(self.RepoProtocol)
        assert isinstance(repo, self.GoodRepo)
        assert repo.get() == 42

    def test_register_impl_and_factory_raises_value_error(self):
        with pytest.raises(ValueError, match="not both"):
            self.cont.register_singleton(self.Base, self.Base, factory=self.Base)

    def test_register_non_callable_factory_raises_type_error(self):
        with pytest.raises(TypeError):
            self.cont.register_transient(self.Base, factory=42)


class TestConstructorDiscovery(unittest.TestCase):
    cont: Container

    def setUp(self):
        self.cont = Container()

    def test_unannotated_parameter_without_default_raises(self):
        class NoHint:
            def __init__(self, db):
                self.db = db

        with pytest.raises(ConstructorError) as ctx:
            self.cont.create(NoHint)
        assert "'db'" in str(ctx.value)
        assert ctx.value.target is NoHint

    def test_unannotated_parameter_with_default_uses_default(self):
        class WithDefault:
            def __init__(self, port=5555):
                self.port = port

        assert self.cont.create(WithDefault).port == 5555

    def test_abstract_class_has_no_constructor(self):
        class Base(ABC):
            @abstractmethod
            def run(self) -> None: ...

        with pytest.raises(ConstructorError, match="abstract"):
            self.cont.get(Base)

    def test_registered_implementation_of_abstract_key_is_built(self):
        class Base(ABC):
            @abstractmethod
            def run(self) -> int: ...

        class Impl(Base):
            def run(self) -> int:
                return 1

        self.cont.register_transient(Base, Impl)
        assert self.cont.get(Base).run() == 1

    def test_unregistered_non_class_key_is_unbuildable(self):
        with pytest.raises(UnbuildableTypeError) as ctx:
            self.cont.get("db")
        assert ctx.value.key == "db"

    def test_string_key_with_factory(self):
        class DB: ...

        self.cont.register_singleton("db", factory=DB)
        self.cont.resolve_all()
        assert isinstance(self.cont.get("db"), DB)

    def test_unresolvable_forward_reference_logs_and_raises(self):
        with self.assertLogs("easyinject._constructor", level=logging.WARNING) as logs:
            with pytest.raises(ConstructorError):
                self.cont.create(Dangling)
        assert "NotDefinedAnywhere" in logs.output[0]

    def test_new_only_class_is_injected(self):
        class Point(tuple):
            def __new__(cls, x: int = 1, y: int = 2):
                return super().__new__(cls, (x, y))

        assert self.cont.create(Point) == (1, 2)


class TestAmbiguousConstructor(unittest.TestCase):
    class Left: ...

    class Right: ...

    class TwoCtors:
        @overload
        def __init__(self, dep: "TestAmbiguousConstructor.Left") -> None: ...

        @overload
        def __init__(self, dep: "TestAmbiguousConstructor.Right") -> None: ...

        def __init__(self, dep=None) -> None:
            self.dep = dep

    def test_create_raises(self):
        with pytest.raises(ConstructorError, match="more than one constructor"):
            Container().create(self.TwoCtors)

    def test_transient_get_raises(self):
        cont = Container()
        cont.register_transient(self.TwoCtors)
        with pytest.raises(ConstructorError):
            cont.get(self.TwoCtors)

    def test_singleton_resolve_raises(self):
        cont = Container()
        cont.register_singleton(self.TwoCtors)
        with pytest.raises(ConstructorError):
            cont.resolve_all()
        assert cont.resolve_all(throw_on_failure=False) is False
