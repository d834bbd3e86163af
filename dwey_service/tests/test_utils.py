from __future__ import annotations

import pytest

from dwey_service.app.exceptions import InvalidInputError
from dwey_service.app.utils.hashing import salted_hash, visitor_fingerprint
from dwey_service.app.utils.phone import normalize_phone
from dwey_service.app.utils.short_code import (
    build_redirect_url,
    build_whatsapp_url,
    code_variations,
    generate_random_code,
    sanitize_custom_code,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("08012345678", "2348012345678"),
        ("8012345678", "2348012345678"),
        ("+234 801 234 5678", "2348012345678"),
        ("2348012345678", "2348012345678"),
        ("14155552671", "14155552671"),
    ],
)
def test_normalize_phone(raw: str, expected: str) -> None:
    assert normalize_phone(raw) == expected


@pytest.mark.parametrize("raw", ["", "12345", "1234567890123456", "abc"])
def test_normalize_phone_rejects_bad_lengths(raw: str) -> None:
    with pytest.raises(InvalidInputError):
        normalize_phone(raw)


def test_sanitize_custom_code() -> None:
    assert sanitize_custom_code(" Big_Sale-2025! ") == "bigsale2025"
    with pytest.raises(InvalidInputError):
        sanitize_custom_code("a-b")
    with pytest.raises(InvalidInputError):
        sanitize_custom_code("x" * 21)


def test_code_variations_and_random_codes() -> None:
    variations = code_variations("shop")
    assert variations[:3] == ["shop1", "shop2", "shop3"]
    assert variations[-1] == "shop99"

    code = generate_random_code(6)
    assert len(code) == 6
    assert code.isalnum() and code == code.lower()


def test_build_urls() -> None:
    assert (
        build_whatsapp_url("2348012345678", "Hi! Let's talk")
        == "https://wa.me/2348012345678?text=Hi!%20Let's%20talk"
    )
    assert build_redirect_url("https://d-wey.com/", "shop") == "https://d-wey.com/shop"


def test_salted_hash_is_stable_and_salted() -> None:
    fingerprint = visitor_fingerprint("10.0.0.1", None)
    assert fingerprint == "10.0.0.1|"
    assert salted_hash(fingerprint, "salt") == salted_hash(fingerprint, "salt")
    assert salted_hash(fingerprint, "salt") != salted_hash(fingerprint, "pepper")
    assert "10.0.0.1" not in salted_hash(fingerprint, "salt")
