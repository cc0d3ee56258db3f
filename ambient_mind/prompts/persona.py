from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence


def trait_level(value: float) -> str:
    if value > 0.8:
        return "very high"
    if value > 0.65:
        return "high"
    if value < 0.2:
        return "very low"
    if value < 0.35:
        return "low"
    return "moderate"


def _trait_label(key: str) -> str:
    return key.replace("_", " ")


def select_notable_traits(
    traits: Mapping[str, float],
    *,
    limit: int = 5,
    minimum: int = 3,
) -> list[tuple[str, float]]:
    """Traits farthest from neutral 0.5, most extreme first."""
    ranked = sorted(traits.items(), key=lambda item: abs(float(item[1]) - 0.5), reverse=True)
    notable = [(key, float(value)) for key, value in ranked if value > 0.65 or value < 0.35][:limit]
    if len(notable) < minimum:
        chosen = {key for key, _ in notable}
        for key, value in ranked:
            if len(notable) >= minimum:
                break
            if key not in chosen:
                notable.append((key, float(value)))
                chosen.add(key)
    return notable


def render_personality_prompt(
    *,
    mood: Any,
    effective_traits: Mapping[str, float],
    relationship: Any | None = None,
) -> str:
    lines = ["PERSONALITY STATE"]
    label = str(getattr(mood, "label", "") or getattr(mood, "key", "Neutral"))
    description = str(getattr(mood, "description", "") or "")
    lines.append(f"Current mood: {label}" + (f" ({description})" if description else ""))
    hint = str(getattr(mood, "behavior_hint", "") or "")
    if hint:
        lines.append(f"Mood behavior: {hint}")

    notable = select_notable_traits(effective_traits)
    if notable:
        rendered = ", ".join(
            f"{_trait_label(key)} {trait_level(value)} ({value:.2f})" for key, value in notable
        )
        lines.append(f"Notable traits: {rendered}")

    if relationship is not None:
        lines.append("")
        lines.extend(render_relationship_block(relationship))
    return "\n".join(lines)


def render_relationship_block(relationship: Any) -> list[str]:
    stage = relationship.stage
    lines = [
        "RELATIONSHIP WITH THIS USER",
        f"Stage: {stage.label} ({stage.behavior})",
        f"Familiarity: {round(relationship.familiarity * 100)}%",
        f"Interactions: {relationship.interaction_count}",
    ]
    if relationship.nickname:
        lines.append(f"Nickname you use for them: {relationship.nickname}")
    jokes: Sequence[str] = relationship.inside_jokes[-3:]
    if jokes:
        lines.append("Inside jokes: " + "; ".join(jokes))
    return lines


def render_relationship_context(relationships: Iterable[Any], names: Mapping[str, str] | None = None) -> str:
    rows = []
    for relationship in relationships:
        label = (names or {}).get(relationship.user_id, relationship.user_id)
        tags = []
        if relationship.rivalry > 0.5:
            tags.append("[rival]")
        if relationship.affection > 0.7:
            tags.append("[secretly fond]")
        line = f"- {label}: {relationship.stage.label}, {round(relationship.familiarity * 100)}% familiar"
        if relationship.nickname:
            line += f', calls them "{relationship.nickname}"'
        if tags:
            line += " " + " ".join(tags)
        rows.append(line)
    if not rows:
        return ""
    return "PEOPLE IN THIS CONVERSATION\n" + "\n".join(rows)
