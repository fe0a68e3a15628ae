import pytest

from idempay.payments import ErrorCode, MESSAGES, message_for, parse_accept_language


@pytest.mark.parametrize(
    ("header", "expected"),
    [
        (None, "en"),
        ("", "en"),
        ("es", "es"),
        ("es-MX,es;q=0.9,en;q=0.8", "es-MX"),
        ("fr;q=0.7", "fr"),
    ],
)
def test_parse_accept_language(header, expected):
    assert parse_accept_language(header) == expected


def test_spanish_region_uses_base_language():
    assert message_for(ErrorCode.PAYMENT_NOT_FOUND, "es-MX") == "pago no encontrado"


def test_unknown_language_falls_back_to_english():
    assert message_for(ErrorCode.PAYMENT_NOT_FOUND, "fr") == "payment not found"


@pytest.mark.parametrize("lang", ["en", "es"])
def test_every_code_has_a_message(lang):
    assert set(MESSAGES[lang]) == set(ErrorCode)
