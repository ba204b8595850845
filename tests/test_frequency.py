import logging

import pytest

from boqa.frequency import parse_frequency


@pytest.mark.parametrize(
    "text, expected",
    [
        ("35.5%", 0.355),
        ("12%", 0.12),
        ("100 %", 1.0),
        ("7.25%", 0.0725),
        ("1/4", 0.25),
        ("3/3", 1.0),
        ("very rare", 0.01),
        ("Rare", 0.05),
        ("occasional", 0.075),
        ("FREQUENT", 0.33),
        ("typical", 0.50),
        ("common", 0.75),
        ("hallmark", 0.90),
        ("obligate", 1.0),
        ("", 1.0),
        (None, 1.0),
    ],
)
def test_parse_frequency(text, expected):
    assert parse_frequency(text) == pytest.approx(expected)


def test_unknown_frequency_is_logged(caplog):
    with caplog.at_level(logging.WARNING, logger="boqa.frequency"):
        assert parse_frequency("sometimes") == 1.0
    assert "sometimes" in caplog.text
