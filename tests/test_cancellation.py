"""Tests for cooperative cancellation tokens."""

from __future__ import annotations

import threading

import pytest

from mailvision.application.cancellation import CancellationToken
from mailvision.domain.errors import OperationCancelled


def test_cancel_propagates_to_linked_child():
    parent = CancellationToken()
    child = parent.linked()

    parent.cancel()

    assert child.cancelled


def test_child_cancel_leaves_parent_running():
    parent = CancellationToken()
    with parent.linked() as child:
        child.cancel()
        assert child.cancelled
    assert not parent.cancelled


def test_child_of_cancelled_parent_starts_cancelled():
    parent = CancellationToken()
    parent.cancel()

    assert parent.linked().cancelled


def test_deadline_expires_with_clock(clock):
    token = CancellationToken(timeout=5, clock=clock)
    assert not token.cancelled
    assert token.remaining == 5

    clock.advance(5)

    assert token.expired
    assert token.cancelled
    assert token.remaining == 0


def test_child_remaining_respects_parent_deadline(clock):
    parent = CancellationToken(timeout=3, clock=clock)
    child = parent.linked(timeout=10)

    assert child.remaining == 3
    clock.advance(3)
    assert child.cancelled
    assert not child.expired


def test_merge_is_cancelled_by_any_parent():
    a = CancellationToken()
    b = CancellationToken()
    merged = CancellationToken.merge(a, b)

    b.cancel()

    assert merged.cancelled
    assert not a.cancelled


def test_close_detaches_from_parent():
    parent = CancellationToken()
    child = parent.linked()
    child.close()

    parent.cancel()

    assert not child.cancelled


def test_wait_returns_when_cancelled_from_another_thread():
    token = CancellationToken()
    timer = threading.Timer(0.05, token.cancel)
    timer.start()
    try:
        assert token.wait(5) is True
    finally:
        timer.cancel()


def test_wait_times_out_without_cancel():
    assert CancellationToken().wait(0.01) is False


def test_raise_if_cancelled():
    token = CancellationToken()
    token.raise_if_cancelled()

    token.cancel()
    with pytest.raises(OperationCancelled):
        token.raise_if_cancelled()
