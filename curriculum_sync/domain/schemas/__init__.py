from curriculum_sync.domain.schemas.curriculum import (
    LEAF_MODELS,
    CompletionRecord,
    Course,
    CurriculumEntity,
    Folder,
    LeafContent,
    Lesson,
    Module,
    ParentKey,
    ProjectBrief,
    Question,
    QuestionOption,
    Quiz,
    Stage,
    Task,
    Walkthrough,
    WalkthroughStep,
)

__all__ = [
    "LEAF_MODELS",
    "CompletionRecord",
    "Course",
    "CurriculumEntity",
    "Folder",
    "LeafContent",
    "Lesson",
    "Module",
    "ParentKey",
    "ProjectBrief",
    "Question",
    "QuestionOption",
    "Quiz",
    "Stage",
    "Task",
    "Walkthrough",
    "WalkthroughStep",
]
