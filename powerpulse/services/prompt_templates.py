"""
Prompt templates for daily coaching scripts.

Each template is immutable data: a system prompt, a user prompt with
{{placeholder}} variables, its tone, and the target word window. Which template
a user gets on a given day is a pure function of their context (plus one coin
flip for the time-of-day variants; pass `rng` to make that deterministic).
"""

import random
import re
from dataclasses import dataclass
from typing import Any, Optional

TONES = ("motivational", "educational", "celebratory", "supportive")

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


@dataclass(frozen=True)
class PromptTemplate:
    name: str
    description: str
    system_prompt: str
    user_prompt: str
    variables: tuple[str, ...]
    tone: str
    min_word_count: int = 750
    max_word_count: int = 800


# ── Templates ────────────────────────────────────────────────────

PROMPT_TEMPLATES: dict[str, PromptTemplate] = {
    "initial_assessment": PromptTemplate(
        name="Initial Assessment",
        description="First content after completing the quiz",
        system_prompt=(
            "You are a compassionate and knowledgeable personal development coach creating a "
            "personalized welcome message for someone starting their energy transformation "
            "journey. Your tone should be warm, understanding, and inspiring."
        ),
        user_prompt="""Create a 775-word motivational welcome script for {{name}} who just completed their assessment.

Their primary pain points are: {{pain_points}}
Their main goals are: {{goals}}
Their preferred learning style is: {{learning_style}}
Their current energy level is: {{current_level}}/10

Structure:
1. Warm welcome and acknowledgment of taking the first step (100 words)
2. Empathetic reflection on their pain points showing you understand (150 words)
3. Vision of what's possible: paint a picture of achieving their goals (150 words)
4. Introduction to the PowerPulse method and how it addresses their specific needs (150 words)
5. Their first simple exercise to try today based on their learning style (150 words)
6. Encouraging close with excitement about their journey ahead (75 words)

Make it personal, hopeful, and actionable. Use their name at least 3 times.""",
        variables=("name", "pain_points", "goals", "learning_style", "current_level"),
        tone="supportive",
    ),
    "standard_daily": PromptTemplate(
        name="Standard Daily Content",
        description="Regular daily motivational content",
        system_prompt=(
            "You are an energetic and supportive daily coach providing practical motivation "
            "and techniques. Your content should feel like advice from a trusted friend who "
            "genuinely cares about their progress."
        ),
        user_prompt="""Create a 775-word daily motivational script for {{name}}.

Context:
- Day {{current_streak}} of their journey
- Time of day: {{time_of_day}}
- Energy level: {{current_level}}/10
- Working on: {{primary_goal}}
- Main challenge: {{primary_pain_point}}

Structure:
1. Personal greeting acknowledging the time of day and their streak (75 words)
2. Check-in on how they might be feeling based on their stage (100 words)
3. Today's main teaching or insight related to their goal (200 words)
4. Practical exercise or technique to try (200 words)
5. Story or example that illustrates the concept (125 words)
6. Closing motivation and reminder of their "why" (75 words)

Keep it conversational, practical, and encouraging.""",
        variables=(
            "name", "current_streak", "time_of_day", "current_level",
            "primary_goal", "primary_pain_point",
        ),
        tone="motivational",
    ),
    "building_habits": PromptTemplate(
        name="Building Habits",
        description="Focus on establishing consistent practice",
        system_prompt=(
            "You are a habit formation expert helping someone establish sustainable energy "
            "practices. Focus on small wins and consistency over perfection."
        ),
        user_prompt="""Create a 775-word script about building energy habits for {{name}} on day {{current_streak}}.

Their focus: {{primary_goal}}
Their challenge: {{primary_pain_point}}
Learning style: {{learning_style}}

Structure:
1. Celebrate showing up for day {{current_streak}} (75 words)
2. The science of habit formation in simple terms (150 words)
3. How their specific pain point ({{primary_pain_point}}) relates to habits (125 words)
4. One keystone habit to focus on this week (175 words)
5. Making it stupidly easy: the 2-minute version (150 words)
6. Encouragement about compound effects over time (100 words)

Use examples and make it feel achievable, not overwhelming.""",
        variables=("name", "current_streak", "primary_goal", "primary_pain_point", "learning_style"),
        tone="educational",
    ),
    "weekly_milestone": PromptTemplate(
        name="Weekly Milestone",
        description="Celebrate completing a full week",
        system_prompt=(
            "You are a celebratory coach acknowledging a significant milestone. Be genuinely "
            "excited about their progress while providing reflection and forward momentum."
        ),
        user_prompt="""Create a 775-word celebration script for {{name}} completing {{current_streak}} days!

Their journey so far:
- Started at energy level: {{starting_level}}/10
- Current energy level: {{current_level}}/10
- Main goal: {{primary_goal}}
- Biggest win: Consistency for {{current_streak}} days

Structure:
1. Enthusiastic celebration of their {{current_streak}}-day achievement (100 words)
2. Reflection on what they've learned about themselves (150 words)
3. Specific progress they've likely noticed by now (150 words)
4. The compounding effect: what the next week will bring (150 words)
5. A slightly more advanced technique to try this week (150 words)
6. Proud acknowledgment and motivation for the week ahead (75 words)

Make them feel proud and excited to continue!""",
        variables=("name", "current_streak", "starting_level", "current_level", "primary_goal"),
        tone="celebratory",
    ),
    "monthly_milestone": PromptTemplate(
        name="Monthly Milestone",
        description="Major milestone: 30 days of consistency",
        system_prompt=(
            "You are celebrating a transformational milestone with someone who has shown "
            "remarkable commitment. Acknowledge the profound changes while inspiring "
            "continued growth."
        ),
        user_prompt="""Create a 775-word transformational celebration for {{name}} reaching {{current_streak}} days!

Their transformation:
- Energy improvement: {{starting_level}} → {{current_level}}/10
- Consistency: {{current_streak}} days without breaking
- Original pain point: {{primary_pain_point}}
- Main goal: {{primary_goal}}

Structure:
1. Powerful celebration of this major milestone (100 words)
2. Concrete changes they've likely experienced (150 words)
3. The identity shift: from someone who tries to someone who does (150 words)
4. Advanced strategies for the next level of growth (150 words)
5. Vision for the next 30 days based on their trajectory (125 words)
6. Honor their commitment and future potential (100 words)

Make this feel like a graduation to a new level of mastery.""",
        variables=(
            "name", "current_streak", "starting_level", "current_level",
            "primary_pain_point", "primary_goal",
        ),
        tone="celebratory",
    ),
    "comeback_encouragement": PromptTemplate(
        name="Comeback Encouragement",
        description="Supportive message after a broken streak",
        system_prompt=(
            "You are a compassionate coach helping someone restart after a setback. Focus on "
            "self-compassion, learning, and the ease of beginning again."
        ),
        user_prompt="""Create a 775-word comeback script for {{name}} who is restarting after a break.

Context:
- Previous streak: {{longest_streak}} days
- Total days on journey: {{total_days_active}}
- Main goal: {{primary_goal}}
- Likely feeling: disappointed, discouraged, or frustrated

Structure:
1. Warm, non-judgmental welcome back (100 words)
2. Normalize setbacks as part of every transformation journey (150 words)
3. Focus on what they've already built (not lost) in {{total_days_active}} days (125 words)
4. The power of restarting: often stronger than before (150 words)
5. One tiny action to take today to rebuild momentum (150 words)
6. Encouragement about their resilience and commitment to return (100 words)

Make them feel supported, not ashamed. Focus on progress, not perfection.""",
        variables=("name", "longest_streak", "total_days_active", "primary_goal"),
        tone="supportive",
    ),
    "deepening_practice": PromptTemplate(
        name="Deepening Practice",
        description="For users in the decision stage (7-30 days)",
        system_prompt=(
            "You are an expert coach helping someone deepen their energy practice. They have "
            "basic consistency; now it's time for nuanced growth."
        ),
        user_prompt="""Create a 775-word deepening practice script for {{name}} on day {{current_streak}}.

Their status:
- Consistent for {{current_streak}} days
- Energy level: {{current_level}}/10
- Ready for: deeper techniques
- Focus area: {{primary_goal}}

Structure:
1. Acknowledge their solid foundation (75 words)
2. Introduction to energy optimization vs. just management (150 words)
3. Advanced technique for their specific goal ({{primary_goal}}) (200 words)
4. How to track subtle improvements at this stage (125 words)
5. Dealing with plateaus and micro-adjustments (150 words)
6. Inspiration for the journey of mastery ahead (75 words)

Provide sophisticated insights while maintaining accessibility.""",
        variables=("name", "current_streak", "current_level", "primary_goal"),
        tone="educational",
    ),
    "mastery_refinement": PromptTemplate(
        name="Mastery Refinement",
        description="For advanced users (30+ days)",
        system_prompt=(
            "You are a master coach working with someone who has established strong habits. "
            "Focus on refinement, optimization, and helping others."
        ),
        user_prompt="""Create a 775-word mastery script for {{name}}, a PowerPulse veteran with {{current_streak}} days.

Their mastery journey:
- Consistency: {{current_streak}} days
- Energy level: {{current_level}}/10
- Original pain point: {{primary_pain_point}} (now managed)
- Current focus: {{primary_goal}}

Structure:
1. Honor their incredible consistency and transformation (75 words)
2. The shift from fixing problems to optimizing potential (150 words)
3. Advanced biohacking or energy technique to experiment with (175 words)
4. How to mentor others or share their transformation (150 words)
5. Preventing complacency: setting new horizons (125 words)
6. Celebrating who they've become through this practice (100 words)

Treat them as the energy master they've become.""",
        variables=("name", "current_streak", "current_level", "primary_pain_point", "primary_goal"),
        tone="motivational",
    ),
    "morning_energizer": PromptTemplate(
        name="Morning Energizer",
        description="Specific morning content to start the day",
        system_prompt=(
            "You are an energizing morning coach helping someone start their day with power "
            "and purpose. Be uplifting and action-oriented."
        ),
        user_prompt="""Create a 775-word morning energizer script for {{name}}.

Morning context:
- Day {{current_streak}} of their journey
- Energy focus: {{primary_goal}}
- Wants to overcome: {{primary_pain_point}}

Structure:
1. Energizing morning greeting and appreciation for showing up (75 words)
2. Morning energy activation technique (physical) (150 words)
3. Mental clarity exercise for the day ahead (150 words)
4. Setting a powerful intention for today (125 words)
5. Practical integration with their morning routine (150 words)
6. Launching into their day with confidence (125 words)

Make it energizing and actionable for morning implementation.""",
        variables=("name", "current_streak", "primary_goal", "primary_pain_point"),
        tone="motivational",
    ),
    "evening_reflection": PromptTemplate(
        name="Evening Reflection",
        description="Evening content for reflection and rest",
        system_prompt=(
            "You are a calming evening coach helping someone reflect on their day and prepare "
            "for restorative rest. Be soothing yet insightful."
        ),
        user_prompt="""Create a 775-word evening reflection script for {{name}}.

Evening context:
- Completing day {{current_streak}}
- Working on: {{primary_goal}}
- Energy level: {{current_level}}/10

Structure:
1. Calm evening greeting and transition from day (75 words)
2. Guided reflection on today's energy moments (150 words)
3. Releasing tension or stress from the day (150 words)
4. Gratitude practice specific to their journey (125 words)
5. Preparing body and mind for restorative sleep (150 words)
6. Peaceful close with tomorrow's possibility (125 words)

Create a calming, reflective experience perfect for evening.""",
        variables=("name", "current_streak", "primary_goal", "current_level"),
        tone="supportive",
    ),
    "supportive_recovery": PromptTemplate(
        name="Supportive Recovery",
        description="Regenerated content after negative feedback",
        system_prompt=(
            "You are a patient, attentive coach. The listener did not connect with yesterday's "
            "session, so slow down, listen closely to where they are, and offer gentle, "
            "practical support."
        ),
        user_prompt="""Create a 775-word supportive script for {{name}}, who did not find their last session helpful.

Context:
- Day {{current_streak}} of their journey
- Energy level: {{current_level}}/10
- Working on: {{primary_goal}}
- Main challenge: {{primary_pain_point}}
- What tends to get in the way: {{blockers}}

Structure:
1. Gentle greeting that acknowledges not every session lands (100 words)
2. Meeting them where they are today without pressure (150 words)
3. A simpler, more concrete angle on their main challenge (175 words)
4. One small technique matched to their learning style ({{learning_style}}) (175 words)
5. Permission to go at their own pace (100 words)
6. Warm close that invites them back tomorrow (75 words)

Keep it calm, specific, and free of hype.""",
        variables=(
            "name", "current_streak", "current_level", "primary_goal",
            "primary_pain_point", "blockers", "learning_style",
        ),
        tone="supportive",
    ),
}

WEEKLY_MILESTONES = (7, 14, 21)
MONTHLY_MILESTONE = 30


# ── Lookup helpers ───────────────────────────────────────────────

def get_prompt_template(name: str) -> Optional[PromptTemplate]:
    return PROMPT_TEMPLATES.get(name)


def fill_template(text: str, variables: dict[str, Any]) -> str:
    """Replace {{key}} occurrences. Keys missing from `variables` are left as-is."""

    def _sub(match: re.Match) -> str:
        key = match.group(1)
        if variables.get(key) is None:
            return match.group(0)
        return str(variables[key])

    return _PLACEHOLDER.sub(_sub, text)


def templates_by_tone(tone: str) -> list[str]:
    return [key for key, tpl in PROMPT_TEMPLATES.items() if tpl.tone == tone]


# ── Selection ────────────────────────────────────────────────────

def select_template(context, rng=random) -> str:
    """
    Pick the template key for today.

    Priority: comeback > first day > 30-day milestone > weekly milestones >
    time-of-day variants (30% chance each) > stage by total active days.
    """
    if context.is_returning:
        return "comeback_encouragement"

    if context.total_days_active == 0:
        return "initial_assessment"

    if context.current_streak == MONTHLY_MILESTONE:
        return "monthly_milestone"

    if context.current_streak in WEEKLY_MILESTONES:
        return "weekly_milestone"

    if context.time_of_day == "morning" and rng.random() > 0.7:
        return "morning_energizer"

    if context.time_of_day == "evening" and rng.random() > 0.7:
        return "evening_reflection"

    if context.total_days_active < 7:
        return "building_habits"

    if context.total_days_active < 30:
        return "deepening_practice"

    if context.total_days_active >= 30:
        return "mastery_refinement"

    return "standard_daily"


def template_variables(context) -> dict[str, Any]:
    """Placeholder values for every template, built from a UserContext."""
    return {
        "name": context.name or "Friend",
        "pain_points": ", ".join(context.pain_points),
        "goals": ", ".join(context.goals),
        "learning_style": context.learning_style or "direct",
        "current_level": context.current_level,
        "starting_level": context.starting_level,
        "current_streak": context.current_streak,
        "longest_streak": context.longest_streak,
        "total_days_active": context.total_days_active,
        "time_of_day": context.time_of_day,
        "primary_goal": context.goals[0] if context.goals else "building more energy",
        "primary_pain_point": context.pain_points[0] if context.pain_points else "low energy",
        "triggers": ", ".join(context.triggers) or "none noted",
        "blockers": ", ".join(context.blockers) or "none noted",
    }
