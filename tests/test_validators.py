from app.authz.utils import (
    is_valid_email,
    is_valid_full_name,
    is_valid_personal_identification_code,
    is_valid_phone,
    split_full_name,
)


def test_personal_identification_code_checksum():
    for code in ("39511267470", "37605030299", "49403136515", "38001085718", "60001019906"):
        assert is_valid_personal_identification_code(code), code


def test_personal_identification_code_rejects_bad_values():
    assert not is_valid_personal_identification_code("39511267471")
    assert not is_valid_personal_identification_code("79511267470")
    assert not is_valid_personal_identification_code("3951126747")
    assert not is_valid_personal_identification_code(39511267470)


def test_full_name_needs_two_words():
    assert is_valid_full_name("Mari Maasikas")
    assert is_valid_full_name("Jüri Õun-Ülo Tamm")
    assert not is_valid_full_name("Mari")
    assert not is_valid_full_name("Mari M2")


def test_phone_format():
    assert is_valid_phone("+372 5123456")
    assert is_valid_phone("+372 51234567")
    assert not is_valid_phone("+372 4123456")
    assert not is_valid_phone("5123456")


def test_email_format():
    assert is_valid_email("mari@example.com")
    assert not is_valid_email("mari@")


def test_split_full_name_last_word_is_surname():
    assert split_full_name("Mari Liis Maasikas") == ("Mari Liis", "Maasikas")
