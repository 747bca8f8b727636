"""Flow content aggregate: the live, editable side of a learning flow.

A Flow owns a sequence of FlowContent versions (one per
create_content_version call) and points at the active one.  Content is
the draft surface moderators edit; publishing freezes it into
EntityVersion records (models/versioning.py) and assigning freezes it
into a FlowSnapshot (models/snapshot.py).

All records are frozen dataclasses; edits return new instances via
dataclasses.replace.  Validation runs in __post_init__ so an invalid
record cannot exist in memory, let alone be persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import UUID, uuid4

from onboarding.core.errors import ValidationError
from onboarding.models import ordering


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _require_text(value: str, name: str) -> None:
    if not value or not value.strip():
        raise ValidationError(f"{name} must be non-empty")


class ComponentType(StrEnum):
    ARTICLE = "article"
    QUIZ = "quiz"
    TASK = "task"


# ---------------------------------------------------------------------------
# Component payloads (closed union keyed by ComponentType)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ArticlePayload:
    content: str
    reading_time_minutes: int = 15

    def __post_init__(self) -> None:
        _require_text(self.content, "article content")
        if self.reading_time_minutes < 1:
            raise ValidationError("reading_time_minutes must be >= 1")

    @property
    def max_score(self) -> int:
        return 0


@dataclass(frozen=True, slots=True)
class QuizOption:
    text: str
    is_correct: bool = False
    points: int = 1
    message: str = ""

    def __post_init__(self) -> None:
        _require_text(self.text, "option text")
        if self.points < 1:
            raise ValidationError("option points must be >= 1")


@dataclass(frozen=True, slots=True)
class QuizQuestion:
    text: str
    order: str
    options: tuple[QuizOption, ...]

    def __post_init__(self) -> None:
        _require_text(self.text, "question text")
        if not ordering.is_valid(self.order):
            raise ValidationError(f"invalid order key {self.order!r}")
        if len(self.options) < 2:
            raise ValidationError("a question needs at least 2 options")
        if not any(o.is_correct for o in self.options):
            raise ValidationError("a question needs at least one correct option")

    @property
    def max_points(self) -> int:
        return max(o.points for o in self.options if o.is_correct)


@dataclass(frozen=True, slots=True)
class QuizPayload:
    questions: tuple[QuizQuestion, ...]

    def __post_init__(self) -> None:
        if not self.questions:
            raise ValidationError("a quiz needs at least one question")

    def ordered_questions(self) -> list[QuizQuestion]:
        return sorted(self.questions, key=lambda q: q.order)

    @property
    def max_score(self) -> int:
        return sum(q.max_points for q in self.questions)

    def score(self, answers: dict[int, int]) -> int:
        """Score answers keyed by question index (in order) → option index.

        Unanswered questions score zero; an out-of-range index is a
        validation error rather than a silent zero.
        """
        total = 0
        questions = self.ordered_questions()
        for q_index, o_index in answers.items():
            if not 0 <= q_index < len(questions):
                raise ValidationError(f"no question at index {q_index}")
            options = questions[q_index].options
            if not 0 <= o_index < len(options):
                raise ValidationError(
                    f"no option {o_index} for question {q_index}"
                )
            chosen = options[o_index]
            if chosen.is_correct:
                total += chosen.points
        return total


@dataclass(frozen=True, slots=True)
class TaskPayload:
    code_word: str
    score: int = 1
    is_case_sensitive: bool = False
    instruction: str = ""

    def __post_init__(self) -> None:
        _require_text(self.code_word, "code_word")
        if self.score < 1:
            raise ValidationError("task score must be >= 1")

    @property
    def max_score(self) -> int:
        return self.score

    def check_answer(self, answer: str) -> bool:
        answer = answer.strip()
        if not answer:
            raise ValidationError("answer must be non-empty")
        expected = self.code_word.strip()
        if self.is_case_sensitive:
            return answer == expected
        return answer.casefold() == expected.casefold()


ComponentPayload = ArticlePayload | QuizPayload | TaskPayload

_PAYLOAD_TYPES: dict[ComponentType, type] = {
    ComponentType.ARTICLE: ArticlePayload,
    ComponentType.QUIZ: QuizPayload,
    ComponentType.TASK: TaskPayload,
}


def payload_matches(component_type: ComponentType, payload: object) -> bool:
    return isinstance(payload, _PAYLOAD_TYPES[component_type])


def payload_to_dict(payload: ComponentPayload) -> dict[str, Any]:
    if isinstance(payload, ArticlePayload):
        return {
            "content": payload.content,
            "reading_time_minutes": payload.reading_time_minutes,
        }
    if isinstance(payload, TaskPayload):
        return {
            "code_word": payload.code_word,
            "score": payload.score,
            "is_case_sensitive": payload.is_case_sensitive,
            "instruction": payload.instruction,
        }
    return {
        "questions": [
            {
                "text": q.text,
                "order": q.order,
                "options": [
                    {
                        "text": o.text,
                        "is_correct": o.is_correct,
                        "points": o.points,
                        "message": o.message,
                    }
                    for o in q.options
                ],
            }
            for q in payload.questions
        ]
    }


def payload_from_dict(
    component_type: ComponentType, data: dict[str, Any]
) -> ComponentPayload:
    if component_type == ComponentType.ARTICLE:
        return ArticlePayload(
            content=data["content"],
            reading_time_minutes=data.get("reading_time_minutes", 15),
        )
    if component_type == ComponentType.TASK:
        return TaskPayload(
            code_word=data["code_word"],
            score=data.get("score", 1),
            is_case_sensitive=data.get("is_case_sensitive", False),
            instruction=data.get("instruction", ""),
        )
    return QuizPayload(
        questions=tuple(
            QuizQuestion(
                text=q["text"],
                order=q["order"],
                options=tuple(QuizOption(**o) for o in q["options"]),
            )
            for q in data["questions"]
        )
    )


# ---------------------------------------------------------------------------
# Components and steps
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Component:
    id: UUID
    type: ComponentType
    title: str
    order: str
    payload: ComponentPayload
    description: str = ""
    is_required: bool = True
    is_enabled: bool = True
    estimated_minutes: int = 0
    max_attempts: int | None = None
    minimum_score: int | None = None

    def __post_init__(self) -> None:
        _require_text(self.title, "component title")
        if not ordering.is_valid(self.order):
            raise ValidationError(f"invalid order key {self.order!r}")
        if not isinstance(self.payload, _PAYLOAD_TYPES[self.type]):
            raise ValidationError(
                f"{self.type} component cannot carry "
                f"{type(self.payload).__name__}"
            )
        if self.estimated_minutes < 0:
            raise ValidationError("estimated_minutes must be >= 0")
        if self.max_attempts is not None and self.max_attempts <= 0:
            raise ValidationError("max_attempts must be > 0")
        if self.minimum_score is not None and self.minimum_score < 0:
            raise ValidationError("minimum_score must be >= 0")

    @staticmethod
    def new(
        *,
        type: ComponentType,
        title: str,
        order: str,
        payload: ComponentPayload,
        description: str = "",
        is_required: bool = True,
        estimated_minutes: int = 0,
        max_attempts: int | None = None,
        minimum_score: int | None = None,
    ) -> Component:
        return Component(
            id=uuid4(),
            type=type,
            title=title,
            order=order,
            payload=payload,
            description=description,
            is_required=is_required,
            estimated_minutes=estimated_minutes,
            max_attempts=max_attempts,
            minimum_score=minimum_score,
        )

    @property
    def max_score(self) -> int:
        return self.payload.max_score

    def to_content(self) -> dict[str, Any]:
        """Serializable view used for version records and diffs."""
        return {
            "type": str(self.type),
            "title": self.title,
            "description": self.description,
            "order": self.order,
            "is_required": self.is_required,
            "is_enabled": self.is_enabled,
            "estimated_minutes": self.estimated_minutes,
            "max_attempts": self.max_attempts,
            "minimum_score": self.minimum_score,
            "payload": payload_to_dict(self.payload),
        }


@dataclass(frozen=True, slots=True)
class FlowStep:
    id: UUID
    title: str
    order: str
    description: str = ""
    is_required: bool = True
    is_enabled: bool = True
    components: tuple[Component, ...] = ()

    def __post_init__(self) -> None:
        _require_text(self.title, "step title")
        if not ordering.is_valid(self.order):
            raise ValidationError(f"invalid order key {self.order!r}")

    @staticmethod
    def new(
        *,
        title: str,
        order: str,
        description: str = "",
        is_required: bool = True,
    ) -> FlowStep:
        return FlowStep(
            id=uuid4(),
            title=title,
            order=order,
            description=description,
            is_required=is_required,
        )

    def ordered_components(self) -> list[Component]:
        return sorted(self.components, key=lambda c: c.order)

    def enabled_components(self) -> list[Component]:
        return [c for c in self.ordered_components() if c.is_enabled]

    def component(self, component_id: UUID) -> Component | None:
        return next((c for c in self.components if c.id == component_id), None)

    @property
    def estimated_minutes(self) -> int:
        return sum(c.estimated_minutes for c in self.components if c.is_enabled)

    def to_content(self) -> dict[str, Any]:
        """Step fields without children; components are versioned separately."""
        return {
            "title": self.title,
            "description": self.description,
            "order": self.order,
            "is_required": self.is_required,
            "is_enabled": self.is_enabled,
            "component_ids": [str(c.id) for c in self.ordered_components()],
        }


@dataclass(frozen=True, slots=True)
class FlowContent:
    id: UUID
    flow_id: UUID
    version: int
    created_at: datetime
    created_by: UUID | None = None
    steps: tuple[FlowStep, ...] = ()

    @staticmethod
    def new(
        *, flow_id: UUID, version: int = 1, created_by: UUID | None = None
    ) -> FlowContent:
        if version < 1:
            raise ValidationError("content version must be >= 1")
        return FlowContent(
            id=uuid4(),
            flow_id=flow_id,
            version=version,
            created_at=_utcnow(),
            created_by=created_by,
        )

    def ordered_steps(self) -> list[FlowStep]:
        return sorted(self.steps, key=lambda s: s.order)

    def enabled_steps(self) -> list[FlowStep]:
        return [s for s in self.ordered_steps() if s.is_enabled]

    def step(self, step_id: UUID) -> FlowStep | None:
        return next((s for s in self.steps if s.id == step_id), None)

    def find_component(self, component_id: UUID) -> tuple[FlowStep, Component] | None:
        for s in self.steps:
            c = s.component(component_id)
            if c is not None:
                return s, c
        return None

    def with_step(self, step: FlowStep) -> FlowContent:
        """Insert or replace a step (matched by id)."""
        others = tuple(s for s in self.steps if s.id != step.id)
        return replace(self, steps=others + (step,))

    def without_step(self, step_id: UUID) -> FlowContent:
        return replace(self, steps=tuple(s for s in self.steps if s.id != step_id))

    def clone(self, *, version: int, created_by: UUID | None) -> FlowContent:
        """Deep copy into a new content version with fresh ids throughout."""
        steps = tuple(
            replace(
                s,
                id=uuid4(),
                components=tuple(replace(c, id=uuid4()) for c in s.components),
            )
            for s in self.steps
        )
        return replace(
            FlowContent.new(flow_id=self.flow_id, version=version, created_by=created_by),
            steps=steps,
        )


# ---------------------------------------------------------------------------
# Flow root
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FlowSettings:
    days_per_step: int = 7
    requires_sequential_completion: bool = True
    allow_self_pause: bool = True
    working_days_only: bool = False
    send_start_notification: bool = True
    send_progress_reminders: bool = True
    send_completion_notification: bool = True
    reminder_interval_days: int = 1

    def __post_init__(self) -> None:
        if self.days_per_step < 1:
            raise ValidationError("days_per_step must be >= 1")
        if self.reminder_interval_days < 1:
            raise ValidationError("reminder_interval_days must be >= 1")

    def to_dict(self) -> dict[str, Any]:
        return {
            "days_per_step": self.days_per_step,
            "requires_sequential_completion": self.requires_sequential_completion,
            "allow_self_pause": self.allow_self_pause,
            "working_days_only": self.working_days_only,
            "send_start_notification": self.send_start_notification,
            "send_progress_reminders": self.send_progress_reminders,
            "send_completion_notification": self.send_completion_notification,
            "reminder_interval_days": self.reminder_interval_days,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> FlowSettings:
        return FlowSettings(**data)


@dataclass(frozen=True, slots=True)
class Flow:
    id: UUID
    name: str
    created_at: datetime
    updated_at: datetime
    description: str = ""
    created_by: UUID | None = None
    is_active: bool = True
    is_required: bool = False
    estimated_hours: int = 0
    tags: tuple[str, ...] = ()
    settings: FlowSettings = field(default_factory=FlowSettings)
    active_content_id: UUID | None = None

    def __post_init__(self) -> None:
        _require_text(self.name, "flow name")
        if self.estimated_hours < 0:
            raise ValidationError("estimated_hours must be >= 0")

    @staticmethod
    def new(
        *,
        name: str,
        description: str = "",
        created_by: UUID | None = None,
        is_required: bool = False,
        estimated_hours: int = 0,
        tags: tuple[str, ...] = (),
        settings: FlowSettings | None = None,
    ) -> Flow:
        now = _utcnow()
        return Flow(
            id=uuid4(),
            name=name,
            description=description,
            created_by=created_by,
            is_required=is_required,
            estimated_hours=estimated_hours,
            tags=tags,
            settings=settings or FlowSettings(),
            created_at=now,
            updated_at=now,
        )

    def to_content(self, content: FlowContent | None) -> dict[str, Any]:
        """Serializable view of the flow and its content, for publishing."""
        return {
            "name": self.name,
            "description": self.description,
            "is_required": self.is_required,
            "estimated_hours": self.estimated_hours,
            "tags": list(self.tags),
            "settings": self.settings.to_dict(),
            "content_version": content.version if content else None,
            "step_ids": [str(s.id) for s in content.ordered_steps()] if content else [],
        }


def can_be_activated(flow: Flow, content: FlowContent | None) -> bool:
    """Ready to publish: named, described, and at least one enabled step."""
    return (
        bool(flow.name.strip())
        and bool(flow.description.strip())
        and content is not None
        and content.id == flow.active_content_id
        and bool(content.enabled_steps())
    )
