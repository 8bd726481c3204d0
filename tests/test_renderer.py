"""
Unit tests for template rendering.

Tests placeholder substitution, pass-through of unbound placeholders,
and placeholder discovery.
"""

from datetime import datetime, timezone

from prompt_ledger.core.renderer import builtin_bindings, find_placeholders, render


class TestRender:
    """Test placeholder substitution."""

    def test_single_binding(self):
        """Verify a bound placeholder is replaced."""
        assert render("Hello {{name}}", {"name": "Ada"}) == "Hello Ada"

    def test_unbound_placeholder_passes_through(self):
        """Verify unbound placeholders are left verbatim."""
        assert render("Hello {{name}}", {}) == "Hello {{name}}"

    def test_idempotent_without_matching_bindings(self):
        """Verify output equals input when no identifier is bound."""
        content = "{{a}} and {{b}} and {{ c }}"
        assert render(content, {"x": "1"}) == content

    def test_all_occurrences_replaced(self):
        """Verify repeated identifiers are all substituted."""
        assert render("{{x}}-{{x}}-{{y}}", {"x": "1"}) == "1-1-{{y}}"

    def test_no_recursive_expansion(self):
        """Verify substituted values are not re-scanned."""
        result = render("{{a}}", {"a": "{{b}}", "b": "nope"})
        assert result == "{{b}}"

    def test_identifier_with_spaces_is_literal(self):
        """Verify identifiers are matched exactly, including spaces."""
        assert render("{{ name }}", {"name": "Ada"}) == "{{ name }}"
        assert render("{{ name }}", {" name ": "Ada"}) == "Ada"

    def test_non_string_values_are_stringified(self):
        """Verify values are converted with str()."""
        assert render("n={{n}}", {"n": 3}) == "n=3"

    def test_empty_braces_not_a_placeholder(self):
        """Verify '{{}}' is not treated as a placeholder."""
        assert render("{{}}", {"": "x"}) == "{{}}"


class TestFindPlaceholders:
    """Test placeholder discovery."""

    def test_distinct_in_first_appearance_order(self):
        """Verify duplicates are collapsed and order preserved."""
        content = "```{{language}}\n{{code}}\n```\n{{language}} {{error_description}}"
        assert find_placeholders(content) == ["language", "code", "error_description"]

    def test_no_placeholders(self):
        """Verify plain text yields no identifiers."""
        assert find_placeholders("plain text { not } a placeholder") == []


class TestBuiltinBindings:
    """Test date and time bindings."""

    def test_date_and_time(self):
        """Verify builtin bindings format the given instant."""
        now = datetime(2024, 3, 5, 14, 7, 9, tzinfo=timezone.utc)
        assert builtin_bindings(now) == {"date": "2024-03-05", "time": "14:07:09"}
