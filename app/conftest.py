"""
Shared pytest hooks for the app packages.

Tests are auto-marked unit / integration / e2e from their filename so the
suites can be run separately (``pytest -m unit``).
"""

import pytest


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Explicit markers on a test take precedence. Unmatched files default to
    integration since most settlement tests touch the database.
    """
    e2e_patterns = ["test_settlement_flow.py"]

    unit_patterns = [
        "test_models.py",
        "test_config.py",
        "test_money.py",
        "test_decomposition.py",
        "test_state_transitions.py",
        "test_locks.py",
        "test_stripe_adapter.py",
    ]

    for item in items:
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = str(item.fspath).split("/")[-1]

        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)
