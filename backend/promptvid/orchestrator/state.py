"""State machine constants and transition logic for the pipeline orchestrator.

Stages run strictly in order. Every active stage may also move straight to
"failed"; terminal stages never move again.
"""

# Pipeline stages in execution order, with the label reported to observers
PIPELINE_STAGES = {
    "pending": "Waiting to start",
    "health_check": "Checking content service health",
    "keyword_extraction": "Extracting image search keyword",
    "content_generation": "Generating bilingual content",
    "clip_assembly": "Preparing images and clips",
    "spec_compilation": "Compiling video job specs",
    "rendering": "Rendering clip videos",
    "finalizing": "Merging and uploading final video",
    "completed": "Pipeline finished successfully",
    "failed": "Pipeline encountered unrecoverable error",
}

STAGE_ORDER = [
    "pending",
    "health_check",
    "keyword_extraction",
    "content_generation",
    "clip_assembly",
    "spec_compilation",
    "rendering",
    "finalizing",
    "completed",
]

# State transitions for active pipeline steps
STEP_TRANSITIONS = {
    current: following
    for current, following in zip(STAGE_ORDER, STAGE_ORDER[1:])
}

TERMINAL_STAGES = {"completed", "failed"}


class InvalidTransition(RuntimeError):
    """Attempted to move a task backwards, sideways, or out of a terminal stage."""


def stage_label(stage: str) -> str:
    return PIPELINE_STAGES.get(stage, stage)


def can_transition(current: str, target: str) -> bool:
    """Check whether ``current -> target`` is a legal move.

    Examples:
        >>> can_transition("health_check", "keyword_extraction")
        True
        >>> can_transition("rendering", "failed")
        True
        >>> can_transition("rendering", "clip_assembly")
        False
    """
    if current in TERMINAL_STAGES:
        return False
    if target == "failed":
        return True
    return STEP_TRANSITIONS.get(current) == target


def check_transition(current: str, target: str) -> None:
    """Raise InvalidTransition unless ``current -> target`` is legal."""
    if not can_transition(current, target):
        raise InvalidTransition(f"Illegal stage transition {current} -> {target}")
