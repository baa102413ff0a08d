from __future__ import annotations

import pytest

from datapilot.errors import CodeExecutionError
from datapilot.harness import TransformUtil, compile_transform, run_transform


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("$1,234.50", 1234.5),
        ("(250)", -250.0),
        ("12%", 12.0),
        ("1.234,56", 1234.56),
        ("€ 99", 99.0),
        (42, 42.0),
        ("", None),
        ("n/a", None),
        (None, None),
        (True, None),
    ],
)
def test_parse_number(raw: object, expected: object) -> None:
    assert TransformUtil.parse_number(raw) == expected


def test_split_numeric_string_keeps_thousands_groups() -> None:
    assert TransformUtil.split_numeric_string("1,500.00,2,000.00") == ["1,500.00", "2,000.00"]
    assert TransformUtil.split_numeric_string("1,234.50,5,678.00,-9,123.45") == ["1,234.50", "5,678.00", "-9,123.45"]
    assert TransformUtil.split_numeric_string("1,000,2000,-5") == ["1,000", "2000", "-5"]
    assert TransformUtil.split_numeric_string("a,b") == ["a,b"]
    assert TransformUtil.split_numeric_string("") == []


def test_run_transform_operates_on_a_copy() -> None:
    rows = [{"Revenue": "$10"}, {"Revenue": "$20"}]
    body = """
for row in data:
    row["Revenue"] = _util.parse_number(row["Revenue"])
return data
"""
    result = run_transform(body, rows)

    assert result == [{"Revenue": 10.0}, {"Revenue": 20.0}]
    assert rows[0]["Revenue"] == "$10"


def test_run_transform_reports_runtime_errors_with_type() -> None:
    with pytest.raises(CodeExecutionError, match="KeyError: 'Missing'"):
        run_transform("return [row['Missing'] for row in data]", [{"A": 1}])


def test_run_transform_requires_list_of_rows() -> None:
    with pytest.raises(CodeExecutionError, match="did not return a list"):
        run_transform("data.append({})", [{"A": 1}])
    with pytest.raises(CodeExecutionError, match="row objects"):
        run_transform("return [1, 2]", [{"A": 1}])
    assert run_transform("return []", [{"A": 1}]) == []


def test_compile_transform_rejects_empty_and_invalid_bodies() -> None:
    with pytest.raises(CodeExecutionError, match="empty"):
        compile_transform("   ")
    with pytest.raises(CodeExecutionError, match="syntax error"):
        compile_transform("return [row for row in data if]")
