"""Normalización de teléfonos."""

import pytest

from lead_gateway.services.phone import normalize_phone, phone_variants, strip_country_code


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("(21) 98888-7777", "+5521988887777"),
        ("2133334444", "+552133334444"),
        ("5521988887777", "+5521988887777"),
        ("+55 21 3333-4444", "+552133334444"),
        ("988887777", "+988887777"),
        ("", None),
        (None, None),
        ("sem número", None),
    ],
)
def test_normalize_phone(raw: str | None, expected: str | None) -> None:
    assert normalize_phone(raw, country_code="55") == expected


def test_domestic_numbers_get_a_single_country_code() -> None:
    normalized = normalize_phone("21988887777", country_code="55")
    assert normalized.count("+") == 1
    assert normalized[1:].isdigit()
    assert normalize_phone(normalized, country_code="55") == normalized


def test_strip_country_code_only_from_full_numbers() -> None:
    assert strip_country_code("5521988887777", country_code="55") == "21988887777"
    # 11 dígitos que empiezan con 55 son un DDD válido (55 = RS), no código de país.
    assert strip_country_code("55988887777", country_code="55") == "55988887777"


def test_phone_variants_cover_stored_spellings() -> None:
    variants = phone_variants("21988887777", country_code="55")
    assert variants == ["21988887777", "5521988887777", "+5521988887777"]
    assert phone_variants("+55 21 98888-7777", country_code="55")[0] == "5521988887777"
    assert phone_variants(None) == []
