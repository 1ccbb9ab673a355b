"""Default stage catalog for promotional-video runs."""

from __future__ import annotations

from ..models.datatypes import StageDefinition


WEB_SCRAPING = "web-scraping"
TEXT_CLEANER = "ai-text-cleaner"
SUMMARY = "ai-summary"
VIRAL_HOOKS = "viral-hooks"
SCRIPT = "script-generation"
TIMELINE = "timeline-creation"
BACKGROUND = "background-selection"
MUSIC = "music-sound"
AVATAR_BEHAVIOR = "avatar-behavior"
THUMBNAIL = "thumbnail-concept"
VOICE = "voice-generation"
AVATAR_GENERATION = "avatar-generation"
BACKGROUND_VIDEO = "background-video"
FINAL_MERGE = "final-merge"

_CATALOG: tuple[tuple[str, str, str, str, bool, bool], ...] = (
    (WEB_SCRAPING, "Web Scraping", "Extract product content from the page", "content", True, False),
    (TEXT_CLEANER, "Text Cleaner", "Clean feature and benefit lists", "openai", True, True),
    (SUMMARY, "Summary", "Summarize the product", "openai", True, True),
    (VIRAL_HOOKS, "Viral Hooks", "Generate opening hook lines", "openai", True, True),
    (SCRIPT, "Script", "Write the voiceover script", "openai", True, True),
    (TIMELINE, "Timeline", "Split the script into timed segments", "openai", True, True),
    (BACKGROUND, "Background", "Suggest background visuals", "openai", True, True),
    (MUSIC, "Music & Sound", "Suggest music and sound design", "openai", True, True),
    (AVATAR_BEHAVIOR, "Avatar Behavior", "Plan presenter gestures", "openai", True, True),
    (THUMBNAIL, "Thumbnail", "Describe the thumbnail concept", "openai", True, True),
    (VOICE, "Voice", "Synthesize the narration track", "tts", True, False),
    (AVATAR_GENERATION, "Avatar Video", "Render the presenter video", "video", False, False),
    (BACKGROUND_VIDEO, "Background Video", "Render background footage", "video", False, False),
    (FINAL_MERGE, "Final Merge", "Merge video and narration", "video", False, False),
)


def default_stage_definitions() -> list[StageDefinition]:
    """Return the ordered default stage list."""

    return [
        StageDefinition(
            stage_id=stage_id,
            name=name,
            order=order,
            description=description,
            service=service,
            implemented=implemented,
            generative=generative,
        )
        for order, (stage_id, name, description, service, implemented, generative) in enumerate(
            _CATALOG, start=1
        )
    ]
