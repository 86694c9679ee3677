import pytest

from dotpay.core.mpesa.phone import mask_phone, to_e164_phone, to_mpesa_phone


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("0712345678", "254712345678"),
        ("0112345678", "254112345678"),
        ("712345678", "254712345678"),
        ("+254712345678", "254712345678"),
        ("254712345678", "254712345678"),
        ("0712 345 678", "254712345678"),
    ],
)
def test_to_mpesa_phone_accepts_kenyan_formats(raw, expected):
    assert to_mpesa_phone(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "12345", "0812345678", "07123456789"])
def test_to_mpesa_phone_rejects_other_input(raw):
    assert to_mpesa_phone(raw) is None


def test_to_e164_phone():
    assert to_e164_phone("0712345678") == "+254712345678"
    assert to_e164_phone("nope") is None


def test_mask_phone():
    assert mask_phone("254712345678") == "2547***678"
    assert mask_phone("12345") == "12345"
    assert mask_phone(None) == "-"
