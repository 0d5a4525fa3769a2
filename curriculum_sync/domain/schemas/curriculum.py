"""
Domain entities of the curriculum hierarchy.

Course -> Stage -> Module -> leaf content (Quiz | Lesson | Walkthrough).
Leaf content without a module belongs directly to its course. Completion of
modules, stages and courses is always derived from leaf completion records.
"""
from typing import ClassVar, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from curriculum_sync.domain.types import ContentType, EntityKind

ParentKey = Optional[Tuple[EntityKind, str]]


class CurriculumEntity(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    kind: ClassVar[EntityKind]

    id: str
    order: int = 0

    @property
    def parent_key(self) -> ParentKey:
        return None


class Folder(CurriculumEntity):
    kind: ClassVar[EntityKind] = EntityKind.FOLDER

    title: str
    description: str = ""
    color: Optional[str] = None


class Course(CurriculumEntity):
    kind: ClassVar[EntityKind] = EntityKind.COURSE

    title: str
    description: str = ""
    color: Optional[str] = None
    folder_id: Optional[str] = None
    created_at: Optional[str] = None


class Stage(CurriculumEntity):
    kind: ClassVar[EntityKind] = EntityKind.STAGE

    course_id: str
    title: str
    description: str = ""
    xp_reward: int = 0
    dowd_bucks_reward: int = 0
    created_at: Optional[str] = None

    @property
    def parent_key(self) -> ParentKey:
        return (EntityKind.COURSE, self.course_id)


class Module(CurriculumEntity):
    kind: ClassVar[EntityKind] = EntityKind.MODULE

    stage_id: str
    title: str
    description: str = ""
    xp_reward: int = 0
    dowd_bucks_reward: int = 0
    created_at: Optional[str] = None

    @property
    def parent_key(self) -> ParentKey:
        return (EntityKind.STAGE, self.stage_id)


class LeafContent(CurriculumEntity):
    """
    Common shape of quizzes, lessons and walkthroughs.

    `module_id` set means the item belongs to that module; unset means it sits
    directly under `course_id`.
    """

    content_type: ClassVar[ContentType]

    course_id: str
    module_id: Optional[str] = None
    title: str
    description: str = ""
    xp_reward: int = 0
    dowd_bucks_reward: int = 0
    created_at: Optional[str] = None

    @property
    def parent_key(self) -> ParentKey:
        if self.module_id:
            return (EntityKind.MODULE, self.module_id)
        return (EntityKind.COURSE, self.course_id)


class QuestionOption(BaseModel):
    id: str
    text: str


class Question(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    text: str
    type: str = "multiple-choice"
    options: List[QuestionOption] = Field(default_factory=list)
    correct_option_id: str = Field("", alias="correctOptionId")


class Quiz(LeafContent):
    kind: ClassVar[EntityKind] = EntityKind.QUIZ
    content_type: ClassVar[ContentType] = ContentType.QUIZ

    questions: List[Question] = Field(default_factory=list)
    status: Literal["draft", "published"] = "draft"


class Lesson(LeafContent):
    kind: ClassVar[EntityKind] = EntityKind.LESSON
    content_type: ClassVar[ContentType] = ContentType.LESSON

    body: str = ""


class WalkthroughStep(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    title: str = ""
    content: str = ""
    media_url: Optional[str] = Field(None, alias="mediaUrl")
    media_type: Optional[Literal["image", "video"]] = Field(None, alias="mediaType")


class Walkthrough(LeafContent):
    kind: ClassVar[EntityKind] = EntityKind.WALKTHROUGH
    content_type: ClassVar[ContentType] = ContentType.WALKTHROUGH

    steps: List[WalkthroughStep] = Field(default_factory=list)


LEAF_MODELS = {
    ContentType.QUIZ: Quiz,
    ContentType.LESSON: Lesson,
    ContentType.WALKTHROUGH: Walkthrough,
}


class CompletionRecord(BaseModel):
    """
    Existence means `user_id` completed the leaf `content_id` of `content_type`.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    user_id: str
    content_id: str
    content_type: ContentType
    completed_at: Optional[str] = None
    xp_awarded: int = 0
    dowd_bucks_awarded: int = 0

    @property
    def key(self) -> Tuple[str, str, ContentType]:
        return (self.user_id, self.content_id, self.content_type)


class Task(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    project_id: Optional[str] = None
    title: str
    description: str = ""
    order: int = 0
    deadline: Optional[str] = None
    evidence_requirements: List[str] = Field(default_factory=list)
    xp_reward: int = 0
    dowd_bucks_reward: int = 0


class ProjectBrief(BaseModel):
    """
    Course-like container persisted together with its full task list.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    title: str
    unit: str = ""
    cohort: Optional[str] = None
    introduction: str = ""
    scenario: str = ""
    deadline: Optional[str] = None
    published: bool = False
    xp_reward: int = 0
    dowd_bucks_reward: int = 0
    tasks: List[Task] = Field(default_factory=list)
