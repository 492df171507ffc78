"""Staff positions that users can apply for, and their questionnaires."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Question:
    id: str
    title: str
    required: bool = True
    sort_order: int = 0


@dataclass(frozen=True)
class Position:
    id: str
    title: str
    description: str
    active: bool = True
    questions: tuple[Question, ...] = field(default_factory=tuple)

    @property
    def required_question_ids(self) -> set[str]:
        return {q.id for q in self.questions if q.required}

    def sort_key(self, question_id: str) -> int:
        for question in self.questions:
            if question.id == question_id:
                return question.sort_order
        return len(self.questions) + 1


AVAILABLE_POSITIONS: tuple[Position, ...] = (
    Position(
        id="moderator",
        title="Community Moderator",
        description="Help maintain a healthy community by enforcing rules and assisting users.",
        questions=(
            Question("mod_exp", "Previous Experience", sort_order=1),
            Question("mod_age", "Age", sort_order=2),
            Question("mod_device", "Device", sort_order=3),
            Question("mod_scenario", "Scenario Question", sort_order=4),
            Question("mod_time", "Availability", sort_order=5),
            Question("mod_timezone", "Timezone", sort_order=6),
            Question("mod_rules", "Rules Understanding", sort_order=7),
            Question("mod_why", "Why Us?", sort_order=8),
            Question("mod_challenges", "Biggest Challenge", sort_order=9),
            Question("mod_style", "Moderation Style", sort_order=10),
            Question("mod_language", "Languages", sort_order=11),
            Question("mod_availability_detail", "Availability Details", required=False, sort_order=12),
            Question("mod_final", "Anything Else?", required=False, sort_order=13),
        ),
    ),
    Position(
        id="concept_creator",
        title="Concept Creator",
        description="Develop creative and innovative concepts for new features or community events.",
        questions=(
            Question("concept_exp", "Creative Experience", sort_order=1),
            Question("concept_age", "Age", sort_order=2),
            Question("concept_device", "Device", sort_order=3),
            Question("concept_example", "Your Best Concept", sort_order=4),
            Question("concept_collab", "Collaboration", sort_order=5),
            Question("concept_timezone", "Timezone", sort_order=6),
            Question("concept_feedback", "Handling Feedback", sort_order=7),
            Question("concept_tools", "Tools", required=False, sort_order=8),
            Question("concept_pitch", "Idea Pitch", sort_order=9),
            Question("concept_why", "Why This Role?", sort_order=10),
            Question("concept_language", "Languages", sort_order=11),
            Question("concept_final", "Anything Else?", required=False, sort_order=12),
        ),
    ),
)


def get_position(position_id: str) -> Position | None:
    for position in AVAILABLE_POSITIONS:
        if position.id == position_id:
            return position
    return None
