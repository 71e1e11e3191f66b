"""Pipeline stage policy for Stage 1 documents.

`current_step` values form an ordered pipeline:

  synopsis_planning -> scenario_development -> asset_addition
    -> concept_art_blocks_completed -> concept_art_generation

STAGE_POLICY is the only place that says what a stage expects. The validator
reads it to decide which substructures are required, the merger reads it to
advance the stage, and viewers read it (via available_sections) to decide
which sections can be shown.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Step(str, Enum):
    SYNOPSIS_PLANNING = "synopsis_planning"
    SCENARIO_DEVELOPMENT = "scenario_development"
    ASSET_ADDITION = "asset_addition"
    CONCEPT_ART_BLOCKS_COMPLETED = "concept_art_blocks_completed"
    CONCEPT_ART_GENERATION = "concept_art_generation"

    @property
    def rank(self) -> int:
        return _STEP_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, Step):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, Step):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, Step):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, Step):
            return NotImplemented
        return self.rank >= other.rank


_STEP_ORDER = list(Step)

VALID_STEPS = tuple(s.value for s in Step)

# Stage reached once any asset data has been merged in.
ASSETS_COMPLETED_STEP = Step.CONCEPT_ART_BLOCKS_COMPLETED

# Names from an older six-stage pipeline. Not valid values; only used to
# suggest the canonical replacement in diagnostics.
LEGACY_STEP_REPLACEMENTS = {
    "logline_synopsis_development": Step.SYNOPSIS_PLANNING,
    "treatment_expansion": Step.SCENARIO_DEVELOPMENT,
}

ASSET_COLLECTIONS = ("characters", "locations", "props")

SECTION_ORDER = (
    "metadata", "synopsis", "treatment", "scenario",
    "characters", "locations", "props",
)


# ---------------------------------------------------------------------------
# Requirements table
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StageRequirements:
    needs_logline_synopsis: bool
    needs_treatment: bool
    needs_scenario: bool
    needs_visual_blocks: bool
    sections: tuple[str, ...]


_NARRATIVE_SECTIONS = ("metadata", "synopsis", "treatment")
_SCENARIO_SECTIONS = _NARRATIVE_SECTIONS + ("scenario",)
_ASSET_SECTIONS = _SCENARIO_SECTIONS + ASSET_COLLECTIONS

STAGE_POLICY: dict[Step, StageRequirements] = {
    Step.SYNOPSIS_PLANNING: StageRequirements(
        needs_logline_synopsis=True,
        needs_treatment=False,
        needs_scenario=False,
        needs_visual_blocks=False,
        sections=_NARRATIVE_SECTIONS,
    ),
    Step.SCENARIO_DEVELOPMENT: StageRequirements(
        needs_logline_synopsis=False,
        needs_treatment=True,
        needs_scenario=True,
        needs_visual_blocks=False,
        sections=_SCENARIO_SECTIONS,
    ),
    Step.ASSET_ADDITION: StageRequirements(
        needs_logline_synopsis=False,
        needs_treatment=True,
        needs_scenario=True,
        needs_visual_blocks=True,
        sections=_ASSET_SECTIONS,
    ),
    Step.CONCEPT_ART_BLOCKS_COMPLETED: StageRequirements(
        needs_logline_synopsis=False,
        needs_treatment=True,
        needs_scenario=True,
        needs_visual_blocks=True,
        sections=_ASSET_SECTIONS,
    ),
    Step.CONCEPT_ART_GENERATION: StageRequirements(
        needs_logline_synopsis=False,
        needs_treatment=True,
        needs_scenario=True,
        needs_visual_blocks=True,
        sections=_ASSET_SECTIONS,
    ),
}

# Nothing is required of, or viewable for, a document whose stage is unknown.
NO_REQUIREMENTS = StageRequirements(
    needs_logline_synopsis=False,
    needs_treatment=False,
    needs_scenario=False,
    needs_visual_blocks=False,
    sections=(),
)


def parse_step(value) -> Step | None:
    """Map a raw current_step value to a Step, or None if it is not one."""
    if not isinstance(value, str):
        return None
    try:
        return Step(value)
    except ValueError:
        return None


def requirements_for(step: Step | None) -> StageRequirements:
    if step is None:
        return NO_REQUIREMENTS
    return STAGE_POLICY[step]


def advance_step(current, target: Step) -> str:
    """Return the later of `current` and `target` as a wire value.

    Stages only move forward: a current stage already past `target` is kept.
    An unknown current value is replaced by `target`.
    """
    step = parse_step(current)
    if step is not None and step >= target:
        return step.value
    return target.value


# ---------------------------------------------------------------------------
# Document-level helpers
# ---------------------------------------------------------------------------

def is_truthy(value) -> bool:
    """JSON truthiness: "", 0, false and null are empty; {} and [] are not."""
    if value is None or value is False:
        return False
    if isinstance(value, bool):
        return True
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value != ""
    return True


def as_object(value) -> dict:
    return value if isinstance(value, dict) else {}


def _has_items(value) -> bool:
    return isinstance(value, list) and len(value) > 0


def _section_has_data(section: str, document: dict) -> bool:
    work = as_object(document.get("current_work"))
    blocks = as_object(document.get("visual_blocks"))
    if section == "metadata":
        return True
    if section == "synopsis":
        return is_truthy(work.get("logline")) or is_truthy(work.get("synopsis"))
    if section == "treatment":
        treatment = as_object(work.get("treatment"))
        return _has_items(treatment.get("sequences")) or is_truthy(treatment.get("treatment_title"))
    if section == "scenario":
        return _has_items(as_object(work.get("scenario")).get("scenes"))
    if section in ASSET_COLLECTIONS:
        return _has_items(blocks.get(section))
    return False


def available_sections(document: dict) -> list[str]:
    """Sections a viewer may show: allowed at this stage and backed by data."""
    allowed = requirements_for(parse_step(document.get("current_step"))).sections
    return [
        section for section in SECTION_ORDER
        if section in allowed and _section_has_data(section, document)
    ]


def classify_document(document: dict) -> str:
    """Tag a document as 'main' (narrative), 'asset', or 'unknown'."""
    step = parse_step(document.get("current_step"))
    work = as_object(document.get("current_work"))
    if step is Step.SCENARIO_DEVELOPMENT or is_truthy(work.get("scenario")):
        return "main"
    blocks = document.get("visual_blocks")
    if step is Step.ASSET_ADDITION or (isinstance(blocks, dict) and blocks):
        return "asset"
    return "unknown"
