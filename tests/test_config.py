import pytest
from kotone.config import ClientOptions, RequestMode


def test_backoff_doubles_up_to_the_cap():
    options = ClientOptions(backoff_base=2.0, backoff_cap=30.0)

    assert [options.backoff_for(n) for n in range(1, 7)] == [2.0, 4.0, 8.0, 16.0, 30.0, 30.0]


def test_request_mode_accepts_strings():
    assert ClientOptions(request_mode="burst").request_mode is RequestMode.BURST  # type: ignore


@pytest.mark.parametrize("field", ["max_attempts", "backoff_base", "max_invalid_sessions"])
def test_non_positive_values_are_rejected(field: str):
    with pytest.raises(ValueError):
        ClientOptions(**{field: 0})
