"""
Tests for language switching utilities.
"""

from src.shopvoice.language import detect_language_switch_command, normalize_locale


class TestLanguageSwitchDetection:
    def test_detect_switch_to_arabic_english_phrase(self):
        assert detect_language_switch_command("Can you speak Arabic?") == "ar"
        assert detect_language_switch_command("switch to arabic please") == "ar"
        assert detect_language_switch_command("talk in arabic") == "ar"
        assert detect_language_switch_command("change the language to Arabic") == "ar"

    def test_detect_switch_to_arabic_arabic_phrase(self):
        assert detect_language_switch_command("تكلم بالعربي") == "ar"
        assert detect_language_switch_command("اللغة العربية") == "ar"

    def test_detect_switch_to_english_english_phrase(self):
        assert detect_language_switch_command("Can you speak English?") == "en"
        assert detect_language_switch_command("switch to english please") == "en"
        assert detect_language_switch_command("in english") == "en"
        assert detect_language_switch_command("English please") == "en"

    def test_detect_switch_to_english_arabic_phrase(self):
        assert detect_language_switch_command("بالانجليزي لو سمحت") == "en"
        assert detect_language_switch_command("بالإنجليزي") == "en"

    def test_no_switch_detected(self):
        assert detect_language_switch_command("") is None
        assert detect_language_switch_command("hello there") is None
        assert detect_language_switch_command("show me arabic coffee mugs") is None


class TestNormalizeLocale:
    def test_tags(self):
        assert normalize_locale("ar-SA") == "ar"
        assert normalize_locale("en_US") == "en"
        assert normalize_locale("fr") is None
        assert normalize_locale(None) is None
