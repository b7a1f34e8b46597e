import pytest

from scanner.tests.fakes import OutcomeRecorder


@pytest.fixture
def recorder() -> OutcomeRecorder:
    return OutcomeRecorder()
