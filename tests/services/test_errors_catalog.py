import pytest

from serverdeployer.errors_catalog import actionable_error


def test_actionable_error_formats_message_with_suggested_action():
    message = actionable_error("db_downgrade", old="16", new="15")

    assert "PostgreSQL 16 to 15 is not supported." in message
    assert "Suggested action:" in message


def test_actionable_error_rejects_unknown_code():
    with pytest.raises(KeyError):
        actionable_error("no_such_error")
