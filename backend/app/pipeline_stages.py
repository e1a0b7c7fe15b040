"""Pipeline stage taxonomy for the nextmic opportunity board.

Defines the closed set of pipeline stages, their display metadata, the
columns rendered on the default board, and the stage-specific timestamp
columns stamped on ``opportunity_scores`` when a card enters a stage.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional


class PipelineStage(str, Enum):
    """Where an opportunity sits in a speaker's outreach workflow.

    ``RESEARCHING`` and ``COMPLETED`` are legacy values: valid drop targets,
    but not rendered as columns on the default board.
    """
    NEW = "new"
    INTERESTED = "interested"
    PITCHED = "pitched"
    NEGOTIATING = "negotiating"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    RESEARCHING = "researching"
    COMPLETED = "completed"


DEFAULT_STAGE = PipelineStage.NEW


# ---------------------------------------------------------------------------
# Display metadata (label, border token, background token)
# ---------------------------------------------------------------------------
STAGE_DEFINITIONS: Dict[PipelineStage, Dict[str, str]] = {
    PipelineStage.NEW: {
        "label": "New",
        "color": "border-slate-400",
        "bg_color": "bg-slate-50",
    },
    PipelineStage.INTERESTED: {
        "label": "Interested",
        "color": "border-yellow-400",
        "bg_color": "bg-yellow-50",
    },
    PipelineStage.PITCHED: {
        "label": "Pitched",
        "color": "border-orange-400",
        "bg_color": "bg-orange-50",
    },
    PipelineStage.NEGOTIATING: {
        "label": "Negotiating",
        "color": "border-purple-400",
        "bg_color": "bg-purple-50",
    },
    PipelineStage.ACCEPTED: {
        "label": "Accepted",
        "color": "border-green-500",
        "bg_color": "bg-green-50",
    },
    PipelineStage.REJECTED: {
        "label": "Rejected",
        "color": "border-red-400",
        "bg_color": "bg-red-50",
    },
    PipelineStage.RESEARCHING: {
        "label": "Researching",
        "color": "border-blue-400",
        "bg_color": "bg-blue-50",
    },
    PipelineStage.COMPLETED: {
        "label": "Completed",
        "color": "border-emerald-500",
        "bg_color": "bg-emerald-50",
    },
}

# Columns on the default board, in display order
BOARD_STAGES: List[PipelineStage] = [
    PipelineStage.NEW,
    PipelineStage.INTERESTED,
    PipelineStage.PITCHED,
    PipelineStage.NEGOTIATING,
    PipelineStage.ACCEPTED,
    PipelineStage.REJECTED,
]

# Entering one of these stages stamps the matching column with "now"
STAGE_TIMESTAMP_FIELDS: Dict[PipelineStage, str] = {
    PipelineStage.INTERESTED: "interested_at",
    PipelineStage.ACCEPTED: "accepted_at",
    PipelineStage.REJECTED: "rejected_at",
    PipelineStage.COMPLETED: "completed_at",
}


def parse_stage(value) -> PipelineStage:
    """Coerce a raw stage value into a :class:`PipelineStage`.

    Raises:
        ValueError: if *value* is not one of the known stages.
    """
    if isinstance(value, PipelineStage):
        return value
    try:
        return PipelineStage(value)
    except ValueError:
        raise ValueError(
            f"Invalid pipeline stage {value!r}. Must be one of: "
            f"{', '.join(s.value for s in PipelineStage)}"
        ) from None


def stage_label(stage) -> str:
    return STAGE_DEFINITIONS[parse_stage(stage)]["label"]


def stage_timestamp_field(stage) -> Optional[str]:
    return STAGE_TIMESTAMP_FIELDS.get(parse_stage(stage))


def build_stage_update(stage, now: datetime) -> Dict[str, str]:
    """Build the partial ``opportunity_scores`` update for a stage change.

    Always carries ``pipeline_stage``; adds the stage timestamp column when
    the target stage has one.
    """
    stage = parse_stage(stage)
    update = {"pipeline_stage": stage.value}
    field = STAGE_TIMESTAMP_FIELDS.get(stage)
    if field:
        update[field] = now.isoformat()
    return update
