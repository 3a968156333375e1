from __future__ import annotations

import logging

import pytest

from formula_bar.app.errors import UnknownVariableError
from formula_bar.app.expression import ERROR_RESULT, build_expression, evaluate_tokens
from formula_bar.app.registry import VariableRegistry
from formula_bar.app.tokens import tag_token, text_token


@pytest.fixture()
def values() -> dict[str, float]:
    return VariableRegistry().values()


def test_empty_sequence_builds_zero(values) -> None:
    assert build_expression([], values) == "0"
    assert evaluate_tokens([], values) == "0"


def test_whitespace_only_tokens_are_skipped(values) -> None:
    tokens = [text_token("  "), text_token(" 2 "), text_token("+"), text_token(" "), text_token("3")]
    assert build_expression(tokens, values) == "2+3"
    assert build_expression([text_token("   ")], values) == "0"


def test_tags_substitute_registry_values(values) -> None:
    tokens = [tag_token("Base salary"), text_token("+"), tag_token("Option grant")]
    assert build_expression(tokens, values) == "175000+0.005"


def test_adjacent_operands_are_not_joined_with_operators(values) -> None:
    tokens = [tag_token("Vesting period"), tag_token("Vesting period")]
    assert build_expression(tokens, values) == "44"


def test_unknown_variable_raises(values) -> None:
    with pytest.raises(UnknownVariableError) as exc:
        build_expression([tag_token("Nonexistent")], values)
    assert exc.value.name == "Nonexistent"


def test_function_tags_emit_function_names(values) -> None:
    tokens = [tag_token("SUM"), text_token("("), text_token("1,2"), text_token(")")]
    assert build_expression(tokens, values) == "SUM(1,2)"
    assert evaluate_tokens(tokens, values) == "3"


def test_base_salary_raise_example(values) -> None:
    tokens = [tag_token("Base salary"), text_token("*"), text_token("(1+0.05)")]
    assert evaluate_tokens(tokens, values) == "$183,750.00"


def test_unknown_variable_evaluates_to_error(values, caplog) -> None:
    with caplog.at_level(logging.WARNING):
        assert evaluate_tokens([tag_token("Nonexistent")], values) == ERROR_RESULT
    assert "unknown variable" in caplog.text


@pytest.mark.parametrize("texts", [["1", "+"], ["(", "1"], ["1", "/", "0"], ["FORECAST"]])
def test_evaluation_failures_collapse_to_error(values, texts) -> None:
    tokens = [text_token(text) for text in texts]
    assert evaluate_tokens(tokens, values) == ERROR_RESULT


def test_small_results_are_plain_numbers(values) -> None:
    tokens = [tag_token("Future dilution"), text_token("*"), text_token("2")]
    assert evaluate_tokens(tokens, values) == "0.6"


def test_deeply_nested_formula_collapses_to_error(values) -> None:
    tokens = [text_token("(" * 400), text_token("1"), text_token(")" * 400)]
    assert evaluate_tokens(tokens, values) == ERROR_RESULT


def test_long_sign_run_evaluates(values) -> None:
    assert evaluate_tokens([text_token("-" * 1500 + "1")], values) == "1"


def test_negative_values_are_parenthesized() -> None:
    values = {"Loss": -3.0}
    tokens = [tag_token("Loss"), text_token("^"), text_token("2")]
    assert build_expression(tokens, values) == "(-3)^2"
    assert evaluate_tokens(tokens, values) == "9"
    assert evaluate_tokens([text_token("2-"), tag_token("Loss")], values) == "5"
