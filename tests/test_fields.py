"""
Tests for checkout field extraction and validation.
"""

import pytest

from src.shopvoice.errors import RecoverableInputError
from src.shopvoice.fields import (
    ADDRESS_PROMPT,
    CVV_PROMPT,
    EMAIL_PROMPT,
    EXPIRY_MONTH_PROMPT,
    NAME_PROMPT,
    ORDER_GUARD_PROMPT,
    PHONE_PROMPT,
    FieldKind,
    contains_order_command,
    extract_and_validate,
    extract_email,
    spoken_digits,
    spoken_numbers,
    validate_card_number,
)


class TestSpokenNumbers:
    def test_spoken_digits(self):
        assert spoken_digits("four one five") == "415"
        assert spoken_digits("double five one") == "551"
        assert spoken_digits("twenty five") == "25"
        assert spoken_digits("oh two") == "02"
        assert spoken_digits("5 5 5 1234") == "5551234"

    def test_spoken_numbers_grouping(self):
        assert spoken_numbers("twelve twenty five") == [12, 25]
        assert spoken_numbers("oh three twenty six") == [3, 26]
        assert spoken_numbers("december 2025") == [12, 2025]
        assert spoken_numbers("12/25") == [12, 25]


class TestName:
    def test_lead_in_removed_and_title_cased(self):
        result = extract_and_validate(FieldKind.NAME, "my name is jane doe")
        assert result.valid
        assert result.value == "Jane Doe"

    def test_apostrophe_name(self):
        assert extract_and_validate(FieldKind.NAME, "O'Brien").value == "O'Brien"

    def test_rejects_acknowledgement(self):
        result = extract_and_validate(FieldKind.NAME, "yes")
        assert not result.valid
        assert result.correction_prompt == NAME_PROMPT

    def test_rejects_digits_and_questions(self):
        assert not extract_and_validate(FieldKind.NAME, "John 3").valid
        assert not extract_and_validate(FieldKind.NAME, "sorry what was the question").valid


class TestEmail:
    def test_spoken_email(self):
        assert extract_email("john at gmail dot com") == "john@gmail.com"

    def test_spoken_email_with_lead_in(self):
        result = extract_and_validate(FieldKind.EMAIL, "my email is jane dot doe at example dot com")
        assert result.valid
        assert result.value == "jane.doe@example.com"

    def test_invalid_email_prompt(self):
        result = extract_and_validate(FieldKind.EMAIL, "john gmail")
        assert not result.valid
        assert result.correction_prompt == EMAIL_PROMPT


class TestAddress:
    def test_address_with_spoken_house_number(self):
        result = extract_and_validate(FieldKind.ADDRESS, "one two three main street springfield")
        assert result.valid
        assert result.value == "123 main street springfield"

    def test_address_too_short(self):
        result = extract_and_validate(FieldKind.ADDRESS, "Main Street")
        assert not result.valid
        assert result.correction_prompt == ADDRESS_PROMPT


class TestPhone:
    def test_spoken_phone(self):
        result = extract_and_validate(FieldKind.PHONE, "four one five five five five one two three four")
        assert result.valid
        assert result.value == "(415) 555-1234"

    def test_written_phone_with_lead_in(self):
        assert extract_and_validate(FieldKind.PHONE, "my number is 555 123 4567").value == "(555) 123-4567"

    def test_wrong_length(self):
        result = extract_and_validate(FieldKind.PHONE, "five five five one two")
        assert not result.valid
        assert result.correction_prompt == PHONE_PROMPT


class TestCard:
    def test_card_number_grouped(self):
        result = extract_and_validate(FieldKind.CARD_NUMBER, "4111 1111 1111 1111")
        assert result.value == "4111 1111 1111 1111"

    def test_card_number_length_bounds(self):
        assert not validate_card_number("4111 1111 1111").valid
        assert validate_card_number("4" * 19).valid
        assert not validate_card_number("4" * 20).valid

    def test_card_name(self):
        assert extract_and_validate(FieldKind.CARD_NAME, "the name on the card is jane doe").value == "Jane Doe"


class TestExpiry:
    @pytest.mark.parametrize(
        "spoken",
        ["twelve twenty five", "12/25", "one two two five", "december twenty twenty five", "1225"],
    )
    def test_expiry_forms(self, spoken):
        result = extract_and_validate(FieldKind.EXPIRY_DATE, spoken)
        assert result.valid
        assert result.value == "12/25"

    def test_leading_oh(self):
        assert extract_and_validate(FieldKind.EXPIRY_DATE, "oh three twenty six").value == "03/26"

    def test_invalid_month(self):
        result = extract_and_validate(FieldKind.EXPIRY_DATE, "13 25")
        assert not result.valid
        assert result.correction_prompt == EXPIRY_MONTH_PROMPT


class TestCvv:
    def test_spoken_cvv(self):
        assert extract_and_validate(FieldKind.CVV, "one two three").value == "123"

    def test_five_digits_rejected(self):
        result = extract_and_validate(FieldKind.CVV, "12345")
        assert not result.valid
        assert result.correction_prompt == CVV_PROMPT


class TestOrderGuard:
    def test_order_phrases(self):
        assert contains_order_command("ok place my order")
        assert contains_order_command("let's checkout")
        assert contains_order_command("buy now")
        assert not contains_order_command("my name is john")

    def test_check_out_inside_an_address_is_allowed(self):
        assert not contains_order_command("check out lane twelve")
        assert contains_order_command("I want to check out.")

    @pytest.mark.parametrize("kind", list(FieldKind))
    def test_order_phrase_never_stored(self, kind):
        result = extract_and_validate(kind, "place my order")
        assert not result.valid
        assert result.correction_prompt == ORDER_GUARD_PROMPT


class TestUnwrap:
    def test_unwrap_valid(self):
        assert extract_and_validate(FieldKind.CVV, "123").unwrap() == "123"

    def test_unwrap_invalid_raises(self):
        with pytest.raises(RecoverableInputError) as exc_info:
            extract_and_validate(FieldKind.CVV, "12").unwrap()
        assert exc_info.value.correction_prompt == CVV_PROMPT
