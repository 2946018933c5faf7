"""Tests for template rendering and the variable map."""

from __future__ import annotations

import pytest

from modules.notifications.templates import (
    build_variables,
    coerce_variables,
    default_message,
    default_title,
    render_template,
    render_text,
)
from shared.schemas.notifications import NOTIFICATION_TYPES


class TestRenderText:
    def test_substitutes_with_optional_whitespace(self):
        text = "Hi {{firstName}}, {{ courseName }} is {{progress}}% done"
        result = render_text(text, {"firstName": "Ada", "courseName": "Python", "progress": "60"})
        assert result == "Hi Ada, Python is 60% done"

    def test_unknown_placeholders_left_intact(self):
        assert render_text("Hi {{nickname}}", {"firstName": "Ada"}) == "Hi {{nickname}}"

    def test_substituted_values_are_not_rescanned(self):
        result = render_text("{{a}}", {"a": "{{b}}", "b": "nope"})
        assert result == "{{b}}"

    def test_regex_characters_in_values_are_literal(self):
        assert render_text("{{x}}", {"x": r"\1 $& (.*)"}) == r"\1 $& (.*)"

    def test_repeated_placeholder(self):
        assert render_text("{{n}} and {{n}}", {"n": "1"}) == "1 and 1"


def test_render_template_renders_every_part(make_template):
    template = make_template(preview_text="{{courseName}} update")
    rendered = render_template(template, {"firstName": "Ada", "courseName": "SQL", "progress": "50"})
    assert rendered.subject == "Hi Ada"
    assert rendered.html_body == "<p>SQL: 50%</p>"
    assert rendered.text_body == "SQL: 50%"
    assert rendered.preview_text == "SQL update"


class TestBuildVariables:
    def test_profile_fields_then_payload(self, make_user):
        user = make_user(first_name="Ada", last_name="Lovelace", email="ada@example.com")
        variables = build_variables(user, {"courseName": "Math"})
        assert variables == {
            "firstName": "Ada",
            "lastName": "Lovelace",
            "email": "ada@example.com",
            "courseName": "Math",
        }

    def test_first_name_from_display_name(self, make_user):
        user = make_user(first_name=None, display_name="Grace Hopper")
        assert build_variables(user, {})["firstName"] == "Grace"

    def test_first_name_falls_back_to_student(self, make_user):
        user = make_user(first_name=None, last_name=None, display_name=None)
        variables = build_variables(user, {})
        assert variables["firstName"] == "Student"
        assert variables["lastName"] == ""

    def test_payload_overrides_profile(self, make_user):
        assert build_variables(make_user(), {"firstName": "Override"})["firstName"] == "Override"


def test_coerce_variables():
    raw = {"a": None, "b": 3, "c": 2.5, "d": True, "e": {"x": 1}, "f": ["y"], "g": "s"}
    assert coerce_variables(raw) == {
        "a": "",
        "b": "3",
        "c": "2.5",
        "d": "true",
        "e": '{"x": 1}',
        "f": '["y"]',
        "g": "s",
    }
    assert coerce_variables(None) == {}


def test_default_title_and_message():
    assert default_title("course_progress") == "Course Progress Update"
    assert default_title("team_progress") == "Team Progress Update"
    assert default_title("newsletter") == "Notification"
    assert default_message("course_completion", {"firstName": "Ada"}) == (
        "Congratulations Ada! You've completed your course."
    )
    assert default_message("newsletter", {}) == "Hi Student, you have a new notification."


@pytest.mark.parametrize("notification_type", NOTIFICATION_TYPES)
def test_every_type_has_its_own_defaults(notification_type):
    assert default_title(notification_type) != "Notification"
    assert "new notification" not in default_message(notification_type, {"firstName": "Ada"})
