"""Pytest fixtures shared across all tests."""

from __future__ import annotations

import json

import pytest

from cleanflow.core.csv_parser import parse_advanced_csv, rows_to_csv
from cleanflow.core.edit_session import QuarantineEditSession
from cleanflow.core.models import Table


def _quarantine_rows() -> list[dict]:
    """Three rows as the rule engine returns them (DQ maps as JSON text)."""
    return [
        {
            "row_id": "1",
            "amount": "10",
            "currency": "EUR",
            "status": "open",
            "dq_status": "fixed",
            "dq_changes": json.dumps({"amount": {"original": "1O", "rule_id": "R9"}}),
            "dq_errors": "",
        },
        {
            "row_id": "2",
            "amount": "25",
            "currency": "XXX",
            "status": "closed",
            "dq_status": "quarantined",
            "dq_changes": "",
            "dq_errors": json.dumps({"currency": "R27: Invalid currency code"}),
        },
        {
            "row_id": "3",
            "amount": "7",
            "currency": "USD",
            "status": "pending",
            "dq_status": "",
            # "status" is both changed and errored; "amount" errored without a rule id
            "dq_changes": json.dumps({"status": {"original": "Pending ", "rule_id": "R4"}}),
            "dq_errors": json.dumps({"status": "R19: Status outside enum", "amount": "bad"}),
        },
    ]


@pytest.fixture
def quarantine_rows() -> list[dict]:
    return _quarantine_rows()


@pytest.fixture
def quarantine_csv() -> str:
    return rows_to_csv(_quarantine_rows())


@pytest.fixture
def quarantine_table(quarantine_csv) -> Table:
    return parse_advanced_csv(quarantine_csv)


@pytest.fixture
def session(quarantine_table) -> QuarantineEditSession:
    return QuarantineEditSession(quarantine_table, source_name="quarantine.csv")
