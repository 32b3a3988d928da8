"""Concept exports: markdown write-up, JSON dump and journey summary."""

from __future__ import annotations

import json
import re
from datetime import UTC, datetime
from typing import Any

from artify.models.project import Project


def _section(project: Project, stage: str) -> dict[str, Any]:
    return project.content.get(stage) or {}


def overlap_chips(chips: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Ikigai chips that sit in two or more categories."""
    return [chip for chip in chips if len(chip.get("categories") or []) >= 2]


def concept_markdown(project: Project, *, generated_on: datetime | None = None) -> str:
    idea = _section(project, "idea")
    final = _section(project, "finalize")
    spark = _section(project, "sparks").get("selected_spark")
    structured = idea.get("structured_idea")
    generated_on = generated_on or datetime.now(UTC)

    lines = [f"# {final.get('title') or 'Untitled Game Concept'}", ""]
    lines += [f"*Generated on {generated_on.date().isoformat()}*", ""]

    lines += ["## Context", ""]
    for label, key in (
        ("Platform", "platform"),
        ("Team Size", "team_size"),
        ("Timeline", "time_horizon"),
    ):
        if idea.get(key):
            lines.append(f"- **{label}:** {idea[key]}")
    lines.append("")

    lines += ["## Concept", "", final.get("concept") or "*No concept written yet.*", ""]

    if structured:
        lines += ["## Core Elements", ""]
        if structured.get("core_verbs"):
            lines.append(f"**Core Verbs:** {', '.join(structured['core_verbs'])}")
        if structured.get("loop_hook"):
            lines.append(f"**Core Loop:** {structured['loop_hook']}")
        lines.append("")

    if spark:
        lines += ["## Selected Spark", "", f"**{spark.get('title', '')}**", ""]
        lines += [spark.get("hook", ""), ""]
        for label, key in (
            ("Core Loop", "core_loop"),
            ("Unique Mechanic", "unique_mechanic"),
            ("Win/Lose", "win_lose_condition"),
            ("Platform", "target_platform"),
            ("Scope", "scope_level"),
        ):
            lines.append(f"- **{label}:** {spark.get(key, '')}")
        if spark.get("why_fun"):
            lines += ["", "**Why It's Fun:**"]
            lines += [f"- {reason}" for reason in spark["why_fun"]]
        if spark.get("prototype_plan"):
            lines += ["", f"**Prototype Plan:** {spark['prototype_plan']}"]
        lines.append("")

    overlaps = overlap_chips(_section(project, "ikigai").get("chips") or [])
    if overlaps:
        lines += ["## Ikigai Overlaps", "", "These elements span multiple categories:", ""]
        lines += [f"- {c.get('text', '')} *({', '.join(c['categories'])})*" for c in overlaps]
        lines.append("")

    if idea.get("vibe_chips"):
        lines += ["## Vibes", "", ", ".join(idea["vibe_chips"]), ""]

    lines += ["---", "", "*Created with Artify CREATE*"]
    return "\n".join(lines)


def project_json(project: Project) -> str:
    return json.dumps(project.to_storage(), indent=2, sort_keys=True)


def export_filename(project: Project, ext: str) -> str:
    """Filesystem-safe name derived from the title, ``concept`` when blank."""
    slug = re.sub(r"[^a-z0-9]+", "-", project.title.lower()).strip("-")
    return f"{slug or 'concept'}.{ext}"


def journey_summary(project: Project) -> str:
    """Plain-text digest of the whole journey, used as context for AI agents."""
    idea = _section(project, "idea")
    final = _section(project, "finalize")
    parts = [
        "=== PROJECT DETAILS ===",
        f"Title: {final.get('title') or 'Not set'}",
        f"Platform: {idea.get('platform') or 'Not set'}",
        f"Team Size: {idea.get('team_size') or 'Not set'}",
        f"Time Horizon: {idea.get('time_horizon') or 'Not set'}",
        f"Vibes: {', '.join(idea.get('vibe_chips') or []) or 'Not set'}",
        "",
        "=== GAME CONCEPT ===",
        final.get("concept") or "Not written",
        "",
    ]

    questions = final.get("game_questions") or {}
    if questions:
        parts.append("=== GAME DETAILS ===")
        for label, key in (
            ("One-Sentence Pitch", "one_sentence"),
            ("Genre", "genre"),
            ("Target Player", "target_player"),
            ("Price Point", "price_point"),
            ("Biggest Risk", "biggest_risk"),
        ):
            if questions.get(key):
                parts.append(f"{label}: {questions[key]}")
        parts.append("")

    nodes = _section(project, "gameloop").get("nodes") or []
    parts.append("=== GAME LOOP ===")
    if nodes:
        labels = {n.get("id"): n.get("label", "unknown") for n in nodes}
        for node in nodes:
            targets = [labels.get(c, "unknown") for c in node.get("connections") or []]
            line = f'  - {str(node.get("type", "")).upper()}: "{node.get("label", "")}"'
            if targets:
                line += f" -> {', '.join(targets)}"
            parts.append(line)
        types = {n.get("type") for n in nodes}
        missing = [t for t in ("action", "challenge", "reward") if t not in types]
        if missing:
            parts.append(f"WARNING: Missing core loop elements ({', '.join(missing)})")
    else:
        parts.append("Not yet created")
    parts.append("")

    skills = final.get("skill_tree") or []
    if skills:
        parts.append("=== SKILL TREE ===")
        for level in ("core", "advanced", "expert"):
            names = [s.get("label", "") for s in skills if s.get("level") == level]
            if names:
                parts.append(f"{level.capitalize()} Skills: {', '.join(names)}")
        parts.append("")

    return "\n".join(parts)
