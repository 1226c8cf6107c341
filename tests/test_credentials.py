import pytest

from authgate.service.credentials import (
    ChallengeId,
    Email,
    InvalidFormat,
    Password,
    TooShort,
    TwoFactorCode,
)
from authgate.service.errors import InvalidInputError


class TestEmail:
    def test_normalizes_case_and_whitespace(self):
        email = Email.parse("  Alice@Example.COM ")
        assert email.expose() == "alice@example.com"
        assert email == Email.parse("alice@example.com")
        assert hash(email) == hash(Email.parse("ALICE@example.com"))

    def test_nfkc_normalization(self):
        # Fullwidth letters fold to ASCII under NFKC
        assert Email.parse("ａlice@example.com").expose() == "alice@example.com"

    @pytest.mark.parametrize(
        "raw",
        [
            "",
            "   ",
            "alice",
            "@example.com",
            "alice@",
            "alice@localhost",
            "alice@-bad.com",
            "al ice@example.com",
            "a" * 65 + "@example.com",
            "a@" + ("b" * 60 + ".") * 5 + "com",
            "user\n@example.com",
            "user@example\n.com",
        ],
    )
    def test_rejects_malformed(self, raw):
        with pytest.raises(InvalidFormat):
            Email.parse(raw)

    def test_rejects_non_string(self):
        with pytest.raises(InvalidInputError):
            Email.parse(42)

    def test_repr_hides_address(self):
        email = Email.parse("alice@example.com")
        assert "alice" not in repr(email)
        assert "alice" not in str(email)
        assert email.fingerprint in repr(email)

    def test_error_message_omits_raw_value(self):
        with pytest.raises(InvalidFormat) as excinfo:
            Email.parse("secret-person@nowhere")
        assert "secret-person" not in str(excinfo.value)

    def test_immutable(self):
        email = Email.parse("alice@example.com")
        with pytest.raises(AttributeError):
            email._value = "bob@example.com"


class TestPassword:
    def test_accepts_eight_characters(self):
        assert Password.parse("12345678").expose() == "12345678"

    def test_rejects_short(self):
        with pytest.raises(TooShort):
            Password.parse("1234567")

    def test_too_short_is_invalid_input(self):
        with pytest.raises(InvalidInputError):
            Password.parse("")

    def test_no_value_equality_or_hash(self):
        first = Password.parse("password123")
        second = Password.parse("password123")
        assert first != second
        with pytest.raises(TypeError):
            hash(first)

    def test_repr_is_redacted(self):
        password = Password.parse("hunter2hunter2")
        assert "hunter2" not in repr(password)
        assert "hunter2" not in str(password)


class TestChallengeId:
    def test_new_ids_are_distinct_uuids(self):
        ids = {ChallengeId.new().expose() for _ in range(50)}
        assert len(ids) == 50
        for value in ids:
            assert ChallengeId.parse(value).expose() == value

    def test_parse_canonicalizes(self):
        raw = "A1B2C3D4-0000-4000-8000-000000000000"
        assert ChallengeId.parse(raw).expose() == raw.lower()

    @pytest.mark.parametrize("raw", ["", "not-a-uuid", "1234", None])
    def test_rejects_malformed(self, raw):
        with pytest.raises(InvalidFormat):
            ChallengeId.parse(raw)


class TestTwoFactorCode:
    def test_new_is_six_digits(self):
        for _ in range(100):
            value = TwoFactorCode.new().expose()
            assert len(value) == 6
            assert value.isdigit()

    def test_leading_zeros_kept(self):
        assert TwoFactorCode.parse("000123").expose() == "000123"

    @pytest.mark.parametrize("raw", ["12345", "1234567", "12a456", "", " 123456", "123456\n", 123456])
    def test_rejects_malformed(self, raw):
        with pytest.raises(InvalidFormat):
            TwoFactorCode.parse(raw)

    def test_matches(self):
        code = TwoFactorCode.parse("654321")
        assert code.matches(TwoFactorCode.parse("654321"))
        assert not code.matches(TwoFactorCode.parse("654322"))
        assert "654321" not in repr(code)
