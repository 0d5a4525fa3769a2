from enum import Enum


class EntityKind(str, Enum):
    FOLDER = "folder"
    COURSE = "course"
    STAGE = "stage"
    MODULE = "module"
    QUIZ = "quiz"
    LESSON = "lesson"
    WALKTHROUGH = "walkthrough"
    COMPLETION = "completion"
    PROJECT = "project"
    TASK = "task"


class ContentType(str, Enum):
    QUIZ = "quiz"
    LESSON = "lesson"
    WALKTHROUGH = "walkthrough"

    @property
    def entity_kind(self) -> EntityKind:
        return EntityKind(self.value)

    @property
    def rank(self) -> int:
        return _CONTENT_RANK[self]


_CONTENT_RANK = {
    ContentType.QUIZ: 0,
    ContentType.LESSON: 1,
    ContentType.WALKTHROUGH: 2,
}

LEAF_KINDS = frozenset(ct.entity_kind for ct in ContentType)
CONTAINER_KINDS = frozenset({EntityKind.COURSE, EntityKind.STAGE, EntityKind.MODULE})


class MutationKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"


class WriteMode(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    UPSERT = "upsert"


class Direction(str, Enum):
    UP = "up"
    DOWN = "down"


class CompletionEventKind(str, Enum):
    CONTENT_COMPLETED = "content_completed"
    MODULE_COMPLETED = "module_completed"
    STAGE_COMPLETED = "stage_completed"
    COURSE_COMPLETED = "course_completed"


class RemoteErrorKind(str, Enum):
    TRANSPORT = "transport"
    SCHEMA_DRIFT = "schema_drift"
    CONSTRAINT_VIOLATION = "constraint_violation"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"
