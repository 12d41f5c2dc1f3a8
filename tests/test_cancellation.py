"""
Tests for cancellation tokens and the latest-request-wins runner.
"""

import threading

import pytest

from kinetikos.core.cancellation import CancellationToken, LatestRequestRunner
from kinetikos.core.errors import ComputationCancelled


class TestCancellationToken:

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel()
        assert token.cancelled
        with pytest.raises(ComputationCancelled):
            token.raise_if_cancelled()


class TestLatestRequestRunner:

    def test_latest_request_wins(self):
        gate = threading.Event()
        published = []

        def compute(value, token):
            gate.wait(5)
            token.raise_if_cancelled()
            return value

        with LatestRequestRunner(on_result=published.append) as runner:
            first = runner.submit(compute, 1)
            second = runner.submit(compute, 2)
            gate.set()
            with pytest.raises(ComputationCancelled):
                first.result(timeout=5)
            assert second.result(timeout=5) == 2

        assert published == [2]
        assert runner.latest_result == 2

    def test_errors_reported(self):
        errors = []

        def boom(token):
            raise RuntimeError('bad input')

        with LatestRequestRunner(on_error=errors.append) as runner:
            runner.submit(boom)
        assert len(errors) == 1
        assert isinstance(errors[0], RuntimeError)
