"""
Curriculum Persistence Mapper

Centralized mediator for Domain <-> remote row transformations.
Field translation is table-driven, deterministic and total for known fields:
unknown remote columns are dropped, domain fields without a remote column are
never sent. Columns flagged optional may be stripped from a payload when the
remote reports them missing (schema drift); required columns never are.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Mapping, Tuple, Type

from pydantic import BaseModel

from curriculum_sync.domain.schemas import (
    CompletionRecord,
    Course,
    Folder,
    Lesson,
    Module,
    ProjectBrief,
    Quiz,
    Stage,
    Task,
    Walkthrough,
)
from curriculum_sync.domain.types import EntityKind


@dataclass(frozen=True)
class FieldMap:
    domain: str
    remote: str
    optional: bool = False


@dataclass(frozen=True)
class RemoteRow:
    """
    Typed remote payload: the values plus which of its columns may be dropped.
    """

    table: str
    values: Dict[str, Any]
    optional_columns: FrozenSet[str] = field(default_factory=frozenset)

    def can_strip(self, column: str) -> bool:
        return column in self.optional_columns and column in self.values

    def strip(self, column: str) -> "RemoteRow":
        if not self.can_strip(column):
            raise ValueError(f"column '{column}' of {self.table} is not a strippable optional field")
        values = {k: v for k, v in self.values.items() if k != column}
        return RemoteRow(self.table, values, self.optional_columns - {column})


_LEAF_COMMON: Tuple[FieldMap, ...] = (
    FieldMap("id", "id"),
    FieldMap("course_id", "course_id"),
    FieldMap("module_id", "module_id"),
    FieldMap("title", "title"),
    FieldMap("description", "description", optional=True),
    FieldMap("order", "order_index"),
    FieldMap("xp_reward", "xp_reward", optional=True),
    FieldMap("dowd_bucks_reward", "dowd_bucks_reward", optional=True),
    FieldMap("created_at", "created_at", optional=True),
)

FIELD_MAPS: Dict[EntityKind, Tuple[FieldMap, ...]] = {
    EntityKind.FOLDER: (
        FieldMap("id", "id"),
        FieldMap("title", "title"),
        FieldMap("description", "description", optional=True),
        FieldMap("color", "color", optional=True),
        FieldMap("order", "order_index"),
    ),
    EntityKind.COURSE: (
        FieldMap("id", "id"),
        FieldMap("title", "title"),
        FieldMap("description", "description", optional=True),
        FieldMap("color", "color", optional=True),
        FieldMap("order", "order_index"),
        FieldMap("folder_id", "folder_id", optional=True),
        FieldMap("created_at", "created_at", optional=True),
    ),
    EntityKind.STAGE: (
        FieldMap("id", "id"),
        FieldMap("course_id", "course_id"),
        FieldMap("title", "title"),
        FieldMap("description", "description", optional=True),
        FieldMap("order", "order_index"),
        FieldMap("xp_reward", "xp_reward", optional=True),
        FieldMap("dowd_bucks_reward", "dowd_bucks_reward", optional=True),
        FieldMap("created_at", "created_at", optional=True),
    ),
    EntityKind.MODULE: (
        FieldMap("id", "id"),
        FieldMap("stage_id", "stage_id"),
        FieldMap("title", "title"),
        FieldMap("description", "description", optional=True),
        FieldMap("order", "order_index"),
        FieldMap("xp_reward", "xp_reward", optional=True),
        FieldMap("dowd_bucks_reward", "dowd_bucks_reward", optional=True),
        FieldMap("created_at", "created_at", optional=True),
    ),
    EntityKind.QUIZ: _LEAF_COMMON
    + (
        FieldMap("questions", "questions"),
        FieldMap("status", "status", optional=True),
    ),
    EntityKind.LESSON: _LEAF_COMMON + (FieldMap("body", "content"),),
    EntityKind.WALKTHROUGH: _LEAF_COMMON + (FieldMap("steps", "steps"),),
    EntityKind.COMPLETION: (
        FieldMap("user_id", "student_id"),
        FieldMap("content_id", "content_id"),
        FieldMap("content_type", "content_type"),
        FieldMap("completed_at", "completed_at", optional=True),
        FieldMap("xp_awarded", "xp_awarded", optional=True),
        FieldMap("dowd_bucks_awarded", "dowdbucks_awarded", optional=True),
    ),
    EntityKind.PROJECT: (
        FieldMap("id", "id"),
        FieldMap("title", "title"),
        FieldMap("unit", "unit", optional=True),
        FieldMap("cohort", "cohort", optional=True),
        FieldMap("introduction", "introduction", optional=True),
        FieldMap("scenario", "scenario", optional=True),
        FieldMap("deadline", "deadline", optional=True),
        FieldMap("published", "published", optional=True),
        FieldMap("xp_reward", "xp_reward", optional=True),
        FieldMap("dowd_bucks_reward", "dowd_bucks_reward", optional=True),
    ),
    EntityKind.TASK: (
        FieldMap("id", "id"),
        FieldMap("project_id", "project_id"),
        FieldMap("title", "title"),
        FieldMap("description", "description", optional=True),
        FieldMap("order", "order_index"),
        FieldMap("deadline", "deadline", optional=True),
        FieldMap("evidence_requirements", "evidence_requirements", optional=True),
        FieldMap("xp_reward", "xp_reward", optional=True),
        FieldMap("dowd_bucks_reward", "dowd_bucks_reward", optional=True),
    ),
}

TABLES: Dict[EntityKind, str] = {
    EntityKind.FOLDER: "course_folders",
    EntityKind.COURSE: "courses",
    EntityKind.STAGE: "stages",
    EntityKind.MODULE: "modules",
    EntityKind.QUIZ: "quizzes",
    EntityKind.LESSON: "lessons",
    EntityKind.WALKTHROUGH: "walkthroughs",
    EntityKind.COMPLETION: "content_completion",
    EntityKind.PROJECT: "curriculum_projects",
    EntityKind.TASK: "curriculum_tasks",
}

CALENDAR_EVENTS_TABLE = "calendar_events"
NOTIFICATIONS_TABLE = "notifications"
PROFILES_TABLE = "profiles"

MODELS: Dict[EntityKind, Type[BaseModel]] = {
    EntityKind.FOLDER: Folder,
    EntityKind.COURSE: Course,
    EntityKind.STAGE: Stage,
    EntityKind.MODULE: Module,
    EntityKind.QUIZ: Quiz,
    EntityKind.LESSON: Lesson,
    EntityKind.WALKTHROUGH: Walkthrough,
    EntityKind.COMPLETION: CompletionRecord,
    EntityKind.PROJECT: ProjectBrief,
    EntityKind.TASK: Task,
}


class CurriculumMapper:
    """
    Standardized mapper for every persistent curriculum entity.
    """

    @staticmethod
    def table_for(kind: EntityKind) -> str:
        return TABLES[kind]

    @staticmethod
    def remote_column(kind: EntityKind, domain_field: str) -> str:
        for fm in FIELD_MAPS[kind]:
            if fm.domain == domain_field:
                return fm.remote
        raise KeyError(f"{kind.value}.{domain_field} has no remote column")

    @staticmethod
    def to_domain(row: Mapping[str, Any], kind: EntityKind) -> Any:
        data: Dict[str, Any] = {}
        for fm in FIELD_MAPS[kind]:
            if fm.remote not in row:
                continue
            value = row[fm.remote]
            # Missing optional columns and SQL NULLs fall back to the model default.
            if value is None and fm.optional:
                continue
            data[fm.domain] = value
        return MODELS[kind].model_validate(data)

    @staticmethod
    def to_remote(entity: BaseModel, kind: EntityKind) -> RemoteRow:
        dumped = entity.model_dump(mode="json", by_alias=True)
        values: Dict[str, Any] = {}
        optional = set()
        for fm in FIELD_MAPS[kind]:
            if fm.domain not in dumped:
                continue
            values[fm.remote] = dumped[fm.domain]
            if fm.optional:
                optional.add(fm.remote)
        return RemoteRow(TABLES[kind], values, frozenset(optional))
