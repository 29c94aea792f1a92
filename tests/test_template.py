"""Tests for template compilation and expansion."""

from collections import ChainMap

import pytest

from bulkrename.planning.errors import TemplateEvaluationError, TemplateSyntaxError
from bulkrename.planning.template import MISSING, Template, normalize_template, render_value


def _expand(source: str, variables: dict, missing: list[str] | None = None) -> str:
    callback = missing.append if missing is not None else None
    return Template.compile(source).expand(variables, on_missing=callback)


def test_literal_text_passes_through() -> None:
    assert _expand("plain-name.txt", {}) == "plain-name.txt"


def test_expressions_are_evaluated_against_variables() -> None:
    variables = {"filename": "clip", "ext": "mp4", "N": "07"}

    result = _expand("${N}-${filename.upper()}.${ext}", variables)

    assert result == "07-CLIP.mp4"


def test_escaped_opening_is_kept_literally() -> None:
    assert _expand(r"cost \${price} ${n}", {"n": 3}) == "cost ${price} 3"


def test_braces_inside_strings_and_fstrings_are_balanced() -> None:
    variables = {"n": 5, "name": "a"}

    assert _expand('${f"{n:03d}"}_${"}"}${name}', variables) == "005_}a"
    assert _expand('${ "{" + name + "}" }', variables) == "{a}"


def test_expressions_list_their_sources() -> None:
    template = Template.compile("${ a }-${b.c}")

    assert template.expressions == ["a", "b.c"]


def test_per_file_names_shadow_common_names() -> None:
    variables = ChainMap({"name": "file"}, {"name": "common", "other": "shared"})

    assert _expand("${name}/${other}", variables) == "file/shared"


@pytest.mark.parametrize(
    "source",
    [
        "${unterminated",
        "${}",
        "${1 +}",
        "${[x for x in files]}",
        "${lambda: 1}",
        "${__import__('os')}",
        "${path.__class__}",
        "${'{0.__class__}'.format(path)}",
        "${x := 1}",
    ],
)
def test_invalid_templates_raise_syntax_error(source: str) -> None:
    with pytest.raises(TemplateSyntaxError):
        Template.compile(source)


def test_missing_lookups_are_reported_and_render_empty() -> None:
    missing: list[str] = []
    variables = {"meta": {"title": "Song", "album": None}, "files": ["a"]}

    result = _expand(
        "${meta.title}|${meta.artist}|${meta.album}|${undefined}|${files[3]}|${meta['year']}",
        variables,
        missing,
    )

    assert result == "Song|||||"
    assert missing == ["meta.artist", "meta.album", "undefined", "files[3]", "meta['year']"]


def test_member_access_on_missing_value_is_silent() -> None:
    missing: list[str] = []

    result = _expand("${meta.tags.genre.lower()}", {"meta": {}}, missing)

    assert result == ""
    assert missing == ["meta.tags"]


def test_missing_values_concatenate_as_empty_text() -> None:
    missing: list[str] = []

    result = _expand("${'x' + meta.title + 'y'}", {"meta": {}}, missing)

    assert result == "xy"
    assert missing == ["meta.title"]


def test_conditionals_handle_missing_values() -> None:
    variables = {"meta": {}}

    assert _expand("${meta.width > 1000 if meta.width else 'unknown'}", variables) == "unknown"
    assert _expand("${meta.width or 'n/a'}", variables) == "n/a"


def test_safe_builtins_are_available() -> None:
    variables = {"size": 2048, "name": "abcdef"}

    assert _expand("${int(size / 1024)}k-${len(name)}-${max(1, 2)}", variables) == "2k-6-2"


def test_other_evaluation_failures_raise() -> None:
    with pytest.raises(TemplateEvaluationError) as excinfo:
        _expand("${n / 0}", {"n": 1})

    assert "${n / 0}" in str(excinfo.value)

    with pytest.raises(TemplateEvaluationError):
        _expand("${name.nonexistent}", {"name": "text"})


def test_oversized_results_are_refused() -> None:
    with pytest.raises(TemplateEvaluationError, match="too large"):
        _expand("${9 ** 9 ** 9}", {})

    with pytest.raises(TemplateEvaluationError, match="too large"):
        _expand("${'ab' * 10 ** 9}", {})

    assert _expand("${2 ** 10}-${'ab' * 3}-${n * 2}", {"n": 4}) == "1024-ababab-8"


def test_normalize_template_strips_line_breaks() -> None:
    assert normalize_template("  ${a}\r\n-${b}\n ") == "${a}-${b}"


def test_render_value_handles_empty_values() -> None:
    assert render_value(None) == ""
    assert render_value(MISSING) == ""
    assert render_value(1.5) == "1.5"
    assert not MISSING
