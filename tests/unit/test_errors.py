"""Unit tests for the error taxonomy and cancellation tokens."""

import time

import pytest

from notably.common.cancellation import (
    CancellationToken,
    bounded_timeout,
    cancellation_scope,
    check_cancelled,
    current_cancellation,
)
from notably.common.errors import (
    BackingStoreError,
    CanceledError,
    FactStoreError,
    InvalidPaginationTokenError,
    NotFoundError,
    NotInitializedError,
    ValidationError,
    is_not_found,
)


class TestErrors:
    @pytest.mark.parametrize(
        "error_class, status_code",
        [
            (ValidationError, 400),
            (NotFoundError, 404),
            (NotInitializedError, 503),
            (InvalidPaginationTokenError, 400),
            (CanceledError, 499),
            (BackingStoreError, 502),
        ],
    )
    def test_status_codes(self, error_class, status_code):
        error = error_class("message")
        assert isinstance(error, FactStoreError)
        assert error.status_code == status_code

    def test_str_includes_operation(self):
        assert str(NotFoundError("no fact with id 'x'", "get_fact")) == (
            "get_fact failed: no fact with id 'x'"
        )
        assert str(NotFoundError("no fact")) == "no fact"

    def test_with_operation_reattributes(self):
        error = CanceledError("deadline exceeded", "scan")
        assert error.with_operation("get_snapshot_at_time") is error
        assert error.operation == "get_snapshot_at_time"

    def test_is_not_found(self):
        assert is_not_found(NotFoundError("gone"))
        assert not is_not_found(ValidationError("bad"))
        assert not is_not_found(None)


class TestCancellationToken:
    def test_fresh_token_not_cancelled(self):
        token = CancellationToken()
        assert not token.cancelled
        assert token.remaining() is None
        token.raise_if_cancelled("op")

    def test_explicit_cancel(self):
        token = CancellationToken()
        token.cancel("shutting down")

        assert token.cancelled
        with pytest.raises(CanceledError, match="shutting down") as exc_info:
            token.raise_if_cancelled("put_fact")
        assert exc_info.value.operation == "put_fact"

    def test_expired_deadline(self):
        token = CancellationToken(deadline=time.monotonic() - 1)
        assert token.cancelled
        assert token.remaining() == 0.0
        with pytest.raises(CanceledError, match="deadline exceeded"):
            token.raise_if_cancelled()

    def test_with_timeout_in_future(self):
        token = CancellationToken.with_timeout(60)
        assert not token.cancelled
        assert 0 < token.remaining() <= 60

    def test_check_cancelled_accepts_none(self):
        check_cancelled(None, "op")

    def test_check_cancelled_raises(self):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(CanceledError):
            check_cancelled(token, "op")


class TestCancellationScope:
    def test_scope_publishes_and_restores_token(self):
        outer, inner = CancellationToken(), CancellationToken()

        assert current_cancellation() is None
        with cancellation_scope(outer):
            with cancellation_scope(inner):
                assert current_cancellation() is inner
            assert current_cancellation() is outer
        assert current_cancellation() is None

    def test_scope_restored_after_error(self):
        with pytest.raises(KeyError):
            with cancellation_scope(CancellationToken()):
                raise KeyError("x")
        assert current_cancellation() is None

    def test_bounded_timeout(self):
        assert bounded_timeout(30.0, None) == 30.0
        assert bounded_timeout(30.0, CancellationToken()) == 30.0
        assert bounded_timeout(0.5, CancellationToken.with_timeout(60)) == 0.5
        assert bounded_timeout(30.0, CancellationToken.with_timeout(1)) <= 1
