from __future__ import annotations

import json
from typing import Iterable, Mapping


MOOD_EVALUATOR_SCHEMA_HINT = json.dumps(
    {
        "sentiment": -1.0,
        "dominantEmotion": "joy|anger|sadness|fear|surprise|disgust|neutral|affection|playful|frustrated",
        "detectedPatterns": {
            "isChallenge": False,
            "isCompliment": False,
            "isPlayful": False,
            "isVulnerable": False,
            "isRude": False,
            "isSarcastic": False,
            "isPotentialJoke": False,
            "isQuestion": False,
        },
        "suggestedMood": "mood key or null",
        "moodConfidence": 0.0,
        "triggerReason": "short explanation",
    },
    ensure_ascii=False,
)


RELATIONSHIP_EVALUATOR_SCHEMA_HINT = json.dumps(
    {
        "interactionQuality": "positive|neutral|negative|mixed",
        "emotionalDepth": "surface|moderate|deep",
        "trustIndicators": {
            "sharedPersonalInfo": False,
            "askedForHelp": False,
            "showedVulnerability": False,
            "showedCare": False,
        },
        "relationshipDeltas": {"affection": 0.0, "trust": 0.0, "familiarity": 0.01, "rivalry": 0.0},
        "suggestedInsideJoke": "string or null",
        "noteworthyMoment": "string or null",
        "reasoning": "short explanation",
    },
    ensure_ascii=False,
)


SUMMARY_SCHEMA_HINT = json.dumps(
    {
        "summary": "2-3 sentence summary",
        "topics": ["topic1", "topic2"],
        "mood": "overall channel mood in one word",
    },
    ensure_ascii=False,
)


def build_mood_evaluator_system_prompt(mood_keys: Iterable[str]) -> str:
    moods = ", ".join(mood_keys)
    return (
        "You analyze chat messages to decide how a snarky, guarded chat persona should feel about them. "
        "Score sentiment from -1 (hostile) to 1 (warm). "
        "Flag the conversational patterns that apply: challenges or dares, compliments, playful teasing, "
        "vulnerability or distress, rudeness, sarcasm, moments that could become a running joke, questions. "
        f"If the message should change the persona's mood, suggest one of: {moods}. "
        "Otherwise return null for suggestedMood. "
        "moodConfidence is how sure you are that the mood change is warranted, from 0 to 1. "
        "Be conservative: ordinary small talk should not change mood."
    )


def build_mood_evaluator_user_prompt(message: str, *, relationship_stage: str, current_mood: str) -> str:
    return (
        f"Relationship stage with the speaker: {relationship_stage}\n"
        f"Persona's current mood: {current_mood}\n"
        f"Message:\n{message}\n\n"
        "Return JSON."
    )


RELATIONSHIP_EVALUATOR_SYSTEM_PROMPT = (
    "You evaluate one exchange between a user and a chat persona to decide how their relationship shifts. "
    "Relationships change slowly: a single exchange moves affection by at most 0.05, trust by at most 0.03, "
    "familiarity by 0.005 to 0.02 and rivalry by at most 0.02. "
    "Affection grows with warmth and shared laughs and drops with hostility. "
    "Trust grows when the user shares something personal or asks for real help. "
    "Rivalry grows with friendly competition, challenges and bets. "
    "Only suggest an inside joke when something genuinely funny or memorable happened, and keep it short. "
    "Only report a noteworthy moment when it would be worth remembering weeks from now."
)


def build_relationship_evaluator_user_prompt(
    user_message: str,
    bot_response: str,
    current: Mapping[str, object],
) -> str:
    jokes = current.get("inside_jokes") or []
    joke_text = "; ".join(str(item) for item in list(jokes)[-3:]) if jokes else "none"
    return (
        "Current relationship:\n"
        f"- stage: {current.get('stage', 'stranger')}\n"
        f"- affection: {float(current.get('affection', 0.3)):.2f}\n"
        f"- trust: {float(current.get('trust', 0.3)):.2f}\n"
        f"- familiarity: {float(current.get('familiarity', 0.1)):.2f}\n"
        f"- rivalry: {float(current.get('rivalry', 0.0)):.2f}\n"
        f"- interactions so far: {int(current.get('interaction_count', 0))}\n"
        f"- recent inside jokes: {joke_text}\n\n"
        f"User said:\n{user_message}\n\n"
        f"Persona replied:\n{bot_response or '(no reply)'}\n\n"
        "Return JSON."
    )


SUMMARY_SYSTEM_PROMPT = (
    "You summarize chat channel activity for a persona that wants to stay aware of what the server talks about. "
    "Write a short, factual summary of the main discussions, who drove them and any decisions or plans. "
    "List up to 5 short topic names (one to three words each, lowercase)."
)


def build_summary_user_prompt(conversation_text: str, period_type: str) -> str:
    return (
        f"Period: {period_type}\n"
        f"Conversation (oldest first):\n{conversation_text}\n\n"
        "Return JSON."
    )
