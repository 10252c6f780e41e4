"""Unit tests for pipeline.StepContext.

Tests cover the generic base class (iteration + metadata) and the
subclassing pattern that consuming applications use to add domain fields.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

import pytest

from pipeline import StepContext


# ---------------------------------------------------------------------------
# Test-local subclass: validates the subclassing pattern
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DomainContext(StepContext):
    """Minimal subclass used only in these tests."""

    code: Any = None
    lines: int = 0


@dataclass(frozen=True)
class ExtendedContext(DomainContext):
    """Two-level subclass: StepContext → DomainContext → ExtendedContext."""

    label: str = ""


# ---------------------------------------------------------------------------
# Base class defaults
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestStepContextDefaults:
    def test_iteration_defaults_to_zero(self):
        assert StepContext().iteration == 0

    def test_metadata_defaults_to_empty_mappingproxy(self):
        ctx = StepContext(iteration=1)
        assert ctx.metadata == MappingProxyType({})
        assert isinstance(ctx.metadata, MappingProxyType)

    def test_only_two_fields_on_base_class(self):
        field_names = {f.name for f in dataclasses.fields(StepContext)}
        assert field_names == {"iteration", "metadata"}


# ---------------------------------------------------------------------------
# Immutability
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestStepContextImmutability:
    def test_setting_iteration_raises(self):
        ctx = StepContext(iteration=1)
        with pytest.raises(
            (dataclasses.FrozenInstanceError, AttributeError, TypeError)
        ):
            ctx.iteration = 2  # type: ignore[misc]

    def test_metadata_mappingproxy_is_not_mutable(self):
        ctx = StepContext(metadata={"k": "v"})
        with pytest.raises(TypeError):
            ctx.metadata["k"] = "overwrite"  # type: ignore[index]

    def test_plain_dict_metadata_coerced_to_mappingproxy(self):
        ctx = StepContext(metadata={"x": 1})
        assert isinstance(ctx.metadata, MappingProxyType)
        assert ctx.metadata["x"] == 1

    def test_existing_mappingproxy_not_double_wrapped(self):
        mp = MappingProxyType({"x": 1})
        ctx = StepContext(metadata=mp)
        assert ctx.metadata is mp


# ---------------------------------------------------------------------------
# replace()
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestStepContextReplace:
    def test_replace_returns_new_object(self):
        ctx = StepContext(iteration=1)
        assert ctx.replace(iteration=2) is not ctx

    def test_replace_does_not_mutate_original(self):
        ctx = StepContext(iteration=1)
        ctx.replace(iteration=2)
        assert ctx.iteration == 1

    def test_replace_preserves_other_fields(self):
        ctx = StepContext(iteration=1, metadata={"k": 1})
        assert ctx.replace(iteration=2).metadata["k"] == 1

    def test_replace_metadata_immutable_pattern(self):
        ctx = StepContext(metadata={"x": 1})
        ctx2 = ctx.replace(metadata=MappingProxyType({**ctx.metadata, "y": 2}))
        assert ctx2.metadata["y"] == 2
        assert "y" not in ctx.metadata

    def test_unknown_field_raises(self):
        with pytest.raises(TypeError):
            StepContext().replace(nope=1)


# ---------------------------------------------------------------------------
# Subclassing pattern
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestStepContextSubclassing:
    def test_subclass_defaults(self):
        ctx = DomainContext(iteration=1)
        assert ctx.code is None
        assert ctx.lines == 0

    def test_subclass_replace_returns_same_type(self):
        ctx2 = DomainContext().replace(code="x = 1")
        assert isinstance(ctx2, DomainContext)
        assert ctx2.code == "x = 1"

    def test_subclass_replace_preserves_base_fields(self):
        ctx = DomainContext(iteration=3, metadata={"k": 1})
        ctx2 = ctx.replace(lines=4)
        assert ctx2.iteration == 3
        assert ctx2.metadata["k"] == 1

    def test_subclass_is_frozen(self):
        ctx = DomainContext(code="x")
        with pytest.raises(
            (dataclasses.FrozenInstanceError, AttributeError, TypeError)
        ):
            ctx.code = "y"  # type: ignore[misc]

    def test_multi_level_fields(self):
        ctx = ExtendedContext(iteration=2, code="c", lines=5, label="L")
        field_names = {f.name for f in dataclasses.fields(ctx)}
        assert field_names == {"iteration", "metadata", "code", "lines", "label"}
        assert isinstance(ctx.replace(label="M"), ExtendedContext)

    def test_different_subclass_types_not_equal(self):
        assert StepContext(iteration=1) != DomainContext(iteration=1)

    def test_equal_contexts(self):
        assert DomainContext(iteration=1, code="x") == DomainContext(iteration=1, code="x")
