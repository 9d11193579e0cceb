"""Shared fixtures for CalcMark tests."""

from datetime import date

import pytest

from calcmark import FunctionRegistry, Session, register_all_builtins

# Fixed "today" so relative and year-less dates are deterministic
TODAY = date(2025, 6, 15)


@pytest.fixture(autouse=True)
def setup_functions():
    """Register built-in functions before each test."""
    FunctionRegistry.clear()
    register_all_builtins()
    yield
    FunctionRegistry.clear()
    register_all_builtins()


@pytest.fixture
def session():
    return Session(today=TODAY)


@pytest.fixture
def calc(session):
    """Evaluate text in a fresh session and return the last value."""

    def _calc(text):
        return session.eval(text)[-1]

    return _calc
