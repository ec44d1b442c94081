"""Functional tests for identity-text normalization."""

from outfit_tracker._normalize import (
    collapse_whitespace,
    normalize,
    strip_outfit_value,
    strip_slot_placeholders,
)


def test_slot_placeholders_become_empty_braces():
    text = "She wears {{char_headwear}} and {{Alice_ears-accessory}}."
    assert strip_slot_placeholders(text) == "She wears {{}} and {{}}."


def test_non_slot_placeholders_are_kept():
    assert strip_slot_placeholders("Hi {{user}}, I am {{char}}.") == "Hi {{user}}, I am {{char}}."


def test_names_with_underscores_are_slot_placeholders():
    text = "She adjusts {{Mary_Jane_headwear}} and smiles."
    assert strip_slot_placeholders(text) == "She adjusts {{}} and smiles."
    assert normalize(text) == normalize("She adjusts {{char_headwear}} and smiles.")


def test_unknown_slot_suffix_is_kept():
    assert strip_slot_placeholders("Time is {{time_now}}.") == "Time is {{time_now}}."
    assert strip_slot_placeholders("{{char_cape}}") == "{{char_cape}}"


def test_texts_differing_only_in_outfit_values_normalize_equal():
    values = ["red hat", "blue cap"]
    first = normalize("Alice adjusts her red hat.", values)
    second = normalize("Alice adjusts her blue cap.", values)
    assert first == second == "Alice adjusts her ."


def test_sentinel_word_is_removed():
    assert normalize("Alice adjusts her None.") == normalize("Alice adjusts her red hat.", ["red hat"])


def test_only_whole_occurrences_are_stripped():
    assert normalize("The hat is a hatter's dream", ["hat"]) == "The is a hatter's dream"


def test_stripping_is_case_insensitive():
    assert normalize("A RED HAT here", ["red hat"]) == "A here"


def test_longest_value_is_stripped_first():
    assert normalize("a red silk dress", ["red", "red silk dress"]) == "a"


def test_brackets_and_quotes_count_as_boundaries():
    assert normalize('Wearing (red hat) and "scarf"', ["red hat", "scarf"]) == 'Wearing () and ""'


def test_regex_characters_in_values_are_literal():
    assert strip_outfit_value("a c++ hat", "c++") == "a  hat"
    assert strip_outfit_value("a c hat", "c++") == "a c hat"


def test_blank_values_are_ignored():
    assert strip_outfit_value("keep me", "   ") == "keep me"


def test_empty_input():
    assert normalize("") == ""
    assert normalize(None) == ""


def test_whitespace_is_collapsed():
    assert collapse_whitespace("  a \n\t b  ") == "a b"
