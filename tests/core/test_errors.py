"""Tests for data_spine.errors module."""

import pytest

from data_spine.errors import (
    AssociationResolutionError,
    DataSpineError,
    DetachedEntityError,
    DuplicateIdentityError,
    ErrorCategory,
    ErrorContext,
    IntegrityError,
    InvalidRequestError,
    LookupFailedError,
    NonUniqueResultError,
    NotFoundError,
    QueryError,
    RegistryFrozenError,
    SchemaError,
    StaleWriteConflictError,
    StateError,
    StoreError,
    StoreUnavailableError,
    UnknownEntityTypeError,
    UnknownFieldError,
)


class TestErrorContext:
    """Test ErrorContext dataclass."""

    def test_create_empty_context(self):
        ctx = ErrorContext()
        assert ctx.entity_type is None
        assert ctx.metadata == {}
        assert ctx.to_dict() == {}

    def test_to_dict_includes_set_fields(self):
        """to_dict includes only non-None fields."""
        ctx = ErrorContext(entity_type="member", identity=0, metadata={"key": "value"})
        assert ctx.to_dict() == {"entity_type": "member", "identity": 0, "key": "value"}


class TestDataSpineError:
    """Test the base error."""

    def test_defaults(self):
        err = DataSpineError("boom")
        assert err.message == "boom"
        assert str(err) == "boom"
        assert err.category == ErrorCategory.INTERNAL
        assert err.retryable is False
        assert err.cause is None

    def test_kind_is_class_name(self):
        assert NotFoundError("member", 1).kind == "NotFoundError"

    def test_with_context_is_fluent(self):
        err = QueryError("bad").with_context(statement="SELECT 1", attempt=2)
        assert isinstance(err, QueryError)
        assert err.context.statement == "SELECT 1"
        assert err.context.metadata == {"attempt": 2}

    def test_cause_is_chained(self):
        original = ValueError("low level")
        err = StoreError("wrapped", cause=original)
        assert err.__cause__ is original
        assert err.to_dict()["cause"] == "low level"

    def test_overrides(self):
        err = QueryError("x", category=ErrorCategory.UNKNOWN, retryable=True)
        assert err.category == ErrorCategory.UNKNOWN
        assert err.retryable

    def test_to_dict(self):
        err = UnknownFieldError("member", "nickname")
        assert err.to_dict() == {
            "error_type": "UnknownFieldError",
            "message": "Unknown field 'nickname' on entity 'member'",
            "category": "SCHEMA",
            "retryable": False,
            "context": {"entity_type": "member", "field": "nickname"},
        }

    def test_repr(self):
        assert repr(QueryError("bad")) == "QueryError('bad', category=DATABASE)"


class TestHierarchy:
    """Test categories and retry hints per error family."""

    @pytest.mark.parametrize(
        "err,base,category",
        [
            (UnknownEntityTypeError("ghost"), SchemaError, ErrorCategory.SCHEMA),
            (UnknownFieldError("member", "x"), SchemaError, ErrorCategory.SCHEMA),
            (RegistryFrozenError("frozen"), SchemaError, ErrorCategory.CONFIG),
            (InvalidRequestError("bad"), DataSpineError, ErrorCategory.VALIDATION),
            (DuplicateIdentityError("member", 1), DataSpineError, ErrorCategory.VALIDATION),
            (NotFoundError("member", 1), LookupFailedError, ErrorCategory.LOOKUP),
            (NonUniqueResultError("member", 2), LookupFailedError, ErrorCategory.LOOKUP),
            (DetachedEntityError("detached"), StateError, ErrorCategory.STATE),
            (AssociationResolutionError("cycle"), StateError, ErrorCategory.STATE),
            (StaleWriteConflictError("member", 1), StateError, ErrorCategory.STATE),
            (QueryError("syntax"), StoreError, ErrorCategory.DATABASE),
            (IntegrityError("unique"), StoreError, ErrorCategory.DATABASE),
        ],
    )
    def test_category(self, err, base, category):
        assert isinstance(err, base)
        assert err.category == category

    def test_only_unavailable_is_retryable(self):
        assert StoreUnavailableError("locked").retryable
        assert not QueryError("syntax").retryable
        assert not IntegrityError("unique").retryable

    def test_unknown_entity_type_from_class(self):
        class Ghost:
            pass

        err = UnknownEntityTypeError(Ghost)
        assert err.entity_type == "Ghost"
        assert err.context.entity_type == "Ghost"

    def test_lookup_context(self):
        err = NotFoundError("member", 99)
        assert err.context.identity == 99
        assert "99" in str(err)
        assert NotFoundError("team", 1, "custom").message == "custom"

    def test_non_unique_count(self):
        err = NonUniqueResultError("member", 3)
        assert err.count == 3
        assert "3" in err.message
