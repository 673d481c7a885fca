import re
from dataclasses import replace

import pytest

from powerpulse.services.prompt_templates import (
    PROMPT_TEMPLATES,
    TONES,
    fill_template,
    get_prompt_template,
    select_template,
    template_variables,
    templates_by_tone,
)
from powerpulse.services.user_context import UserContext


class FixedRng:
    def __init__(self, value):
        self.value = value

    def random(self):
        return self.value


HEADS = FixedRng(0.9)  # > 0.7, time-of-day variant fires
TAILS = FixedRng(0.1)


def make_context(**overrides):
    base = UserContext(
        user_id="u1",
        name="Alex",
        pain_points=["brain fog", "late nights"],
        goals=["focus", "morning routine"],
        learning_style="gentle",
        current_streak=3,
        longest_streak=5,
        total_days_active=10,
        time_of_day="afternoon",
    )
    return replace(base, **overrides)


def test_fill_template_replaces_known_and_keeps_unknown():
    text = "Hi {{name}}, day {{current_streak}}. {{mystery}} stays."
    filled = fill_template(text, {"name": "Alex", "current_streak": 4})
    assert filled == "Hi Alex, day 4. {{mystery}} stays."


def test_fill_template_stringifies_values():
    assert fill_template("{{level}}/10", {"level": 7}) == "7/10"


def test_every_template_declares_the_placeholders_it_uses():
    for key, template in PROMPT_TEMPLATES.items():
        used = set(re.findall(r"\{\{(\w+)\}\}", template.user_prompt))
        assert used == set(template.variables), key
        assert template.tone in TONES
        assert template.min_word_count < template.max_word_count


def test_template_variables_cover_every_placeholder():
    variables = template_variables(make_context())
    for template in PROMPT_TEMPLATES.values():
        filled = fill_template(template.user_prompt, variables)
        assert "{{" not in filled


def test_template_variables_defaults():
    variables = template_variables(make_context(name=None, goals=[], pain_points=[]))
    assert variables["name"] == "Friend"
    assert variables["goals"] == ""
    assert variables["primary_goal"]
    assert variables["primary_pain_point"]


def test_template_variables_joins_lists_and_picks_primaries():
    variables = template_variables(make_context())
    assert variables["pain_points"] == "brain fog, late nights"
    assert variables["primary_goal"] == "focus"
    assert variables["primary_pain_point"] == "brain fog"


def test_get_prompt_template():
    assert get_prompt_template("standard_daily").name == "Standard Daily Content"
    assert get_prompt_template("nope") is None


def test_templates_by_tone():
    assert set(templates_by_tone("celebratory")) == {"weekly_milestone", "monthly_milestone"}
    assert "supportive_recovery" in templates_by_tone("supportive")
    assert templates_by_tone("sarcastic") == []


def test_returning_user_gets_comeback():
    ctx = make_context(current_streak=0, longest_streak=5, total_days_active=12)
    assert select_template(ctx, rng=HEADS) == "comeback_encouragement"


def test_first_day_gets_initial_assessment():
    ctx = make_context(current_streak=0, longest_streak=0, total_days_active=0)
    assert select_template(ctx, rng=HEADS) == "initial_assessment"


def test_comeback_outranks_initial_assessment():
    ctx = make_context(current_streak=0, longest_streak=2, total_days_active=0)
    assert select_template(ctx) == "comeback_encouragement"


@pytest.mark.parametrize("streak", [7, 14, 21])
def test_weekly_milestones(streak):
    ctx = make_context(current_streak=streak, time_of_day="morning")
    assert select_template(ctx, rng=HEADS) == "weekly_milestone"


def test_monthly_milestone():
    ctx = make_context(current_streak=30, total_days_active=45, time_of_day="evening")
    assert select_template(ctx, rng=HEADS) == "monthly_milestone"


def test_time_of_day_variants():
    assert select_template(make_context(time_of_day="morning"), rng=HEADS) == "morning_energizer"
    assert select_template(make_context(time_of_day="evening"), rng=HEADS) == "evening_reflection"
    assert select_template(make_context(time_of_day="afternoon"), rng=HEADS) == "deepening_practice"


@pytest.mark.parametrize(
    "days, expected",
    [(1, "building_habits"), (6, "building_habits"), (7, "deepening_practice"),
     (29, "deepening_practice"), (30, "mastery_refinement"), (400, "mastery_refinement")],
)
def test_stage_ladder(days, expected):
    ctx = make_context(total_days_active=days, current_streak=2, time_of_day="morning")
    assert select_template(ctx, rng=TAILS) == expected
