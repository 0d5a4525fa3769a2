"""
Curriculum Store - the session-scoped in-memory mirror of the remote curriculum.

The store is an optimistically written cache of remote truth. Components
mutate it synchronously (install/remove) before their remote round trip and
revert on failure; `replace_all` is the reconciliation entry point and always
wins over optimistic values that were never echoed back.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

import structlog

from curriculum_sync.domain.exceptions import EntityNotFoundError
from curriculum_sync.domain.schemas import (
    Course,
    CurriculumEntity,
    Folder,
    LeafContent,
    Module,
    ParentKey,
    ProjectBrief,
    Stage,
)
from curriculum_sync.domain.types import ContentType, EntityKind

logger = structlog.get_logger(__name__)

CompletionKey = Tuple[ContentType, str]

_ENTITY_KINDS = (
    EntityKind.FOLDER,
    EntityKind.COURSE,
    EntityKind.STAGE,
    EntityKind.MODULE,
    EntityKind.QUIZ,
    EntityKind.LESSON,
    EntityKind.WALKTHROUGH,
)


def display_sort_key(entity: CurriculumEntity) -> Tuple[int, int, str]:
    """
    Combined display ordering. `order` is only unique per (parent, type), so
    items of different types sharing a position are tie-broken by type rank
    (quiz, lesson, walkthrough) and then by id.
    """
    rank = entity.content_type.rank if isinstance(entity, LeafContent) else 0
    return (entity.order, rank, entity.id)


@dataclass
class CurriculumSnapshot:
    """
    Entities plus completion-set membership captured for restore or bulk load.
    """

    entities: List[CurriculumEntity] = field(default_factory=list)
    completed: Set[CompletionKey] = field(default_factory=set)
    projects: List[ProjectBrief] = field(default_factory=list)


class CurriculumStore:
    def __init__(self):
        self.user_id: Optional[str] = None
        self._collections: Dict[EntityKind, Dict[str, CurriculumEntity]] = {
            kind: {} for kind in _ENTITY_KINDS
        }
        self._completed: Dict[ContentType, Set[str]] = {ct: set() for ct in ContentType}
        self._projects: Dict[str, ProjectBrief] = {}
        self.generation = 0

    # --- session lifecycle ---

    @property
    def is_active(self) -> bool:
        return self.user_id is not None

    def bind(self, user_id: str) -> None:
        if self.user_id == user_id:
            return
        if self.user_id is not None:
            self.clear()
        self.user_id = user_id
        self.generation += 1

    def clear(self) -> None:
        for collection in self._collections.values():
            collection.clear()
        for completed in self._completed.values():
            completed.clear()
        self._projects.clear()
        self.user_id = None
        self.generation += 1

    def is_current(self, generation: int) -> bool:
        """False once the session that read `generation` has ended or been replaced."""
        return self.generation == generation

    # --- generic access ---

    def _collection(self, kind: EntityKind) -> Dict[str, CurriculumEntity]:
        try:
            return self._collections[kind]
        except KeyError:
            raise ValueError(f"{kind.value} entities are not kept in the curriculum store") from None

    def get(self, kind: EntityKind, entity_id: str) -> Optional[CurriculumEntity]:
        return self._collection(kind).get(entity_id)

    def require(self, kind: EntityKind, entity_id: str) -> CurriculumEntity:
        entity = self.get(kind, entity_id)
        if entity is None:
            raise EntityNotFoundError(kind, entity_id)
        return entity

    def install(self, entity: CurriculumEntity) -> None:
        self._collection(entity.kind)[entity.id] = entity

    def install_many(self, entities: Iterable[CurriculumEntity]) -> None:
        for entity in entities:
            self._collection(entity.kind)[entity.id] = entity

    def remove(self, kind: EntityKind, entity_id: str) -> Optional[CurriculumEntity]:
        return self._collection(kind).pop(entity_id, None)

    def entities(self, kind: EntityKind) -> List[CurriculumEntity]:
        return sorted(self._collection(kind).values(), key=display_sort_key)

    @property
    def folders(self) -> List[Folder]:
        return self.entities(EntityKind.FOLDER)

    @property
    def courses(self) -> List[Course]:
        return self.entities(EntityKind.COURSE)

    @property
    def stages(self) -> List[Stage]:
        return self.entities(EntityKind.STAGE)

    @property
    def modules(self) -> List[Module]:
        return self.entities(EntityKind.MODULE)

    def leaves(self, content_type: ContentType) -> List[LeafContent]:
        return self.entities(content_type.entity_kind)

    # --- hierarchy queries ---

    def siblings(self, kind: EntityKind, parent_key: ParentKey) -> List[CurriculumEntity]:
        """Entities of exactly `kind` sharing `parent_key`, sorted by order."""
        return [e for e in self.entities(kind) if e.parent_key == parent_key]

    def courses_in_folder(self, folder_id: str) -> List[Course]:
        return [c for c in self.courses if c.folder_id == folder_id]

    def stages_for_course(self, course_id: str) -> List[Stage]:
        return [s for s in self.stages if s.course_id == course_id]

    def modules_for_stage(self, stage_id: str) -> List[Module]:
        return [m for m in self.modules if m.stage_id == stage_id]

    def leaves_for_module(self, module_id: str) -> List[LeafContent]:
        items: List[LeafContent] = []
        for content_type in ContentType:
            items.extend(l for l in self.leaves(content_type) if l.module_id == module_id)
        return sorted(items, key=display_sort_key)

    def leaves_for_course(self, course_id: str, direct_only: bool = False) -> List[LeafContent]:
        items: List[LeafContent] = []
        for content_type in ContentType:
            for leaf in self.leaves(content_type):
                if leaf.course_id != course_id:
                    continue
                if direct_only and leaf.module_id:
                    continue
                items.append(leaf)
        return sorted(items, key=display_sort_key)

    def roadmap(self, parent_key: ParentKey) -> List[LeafContent]:
        """All leaf types under one parent in combined display order."""
        items: List[LeafContent] = []
        for content_type in ContentType:
            items.extend(self.siblings(content_type.entity_kind, parent_key))
        return sorted(items, key=display_sort_key)

    def stage_of_module(self, module_id: str) -> Optional[Stage]:
        module = self.get(EntityKind.MODULE, module_id)
        if module is None:
            return None
        return self.get(EntityKind.STAGE, module.stage_id)

    # --- completion sets ---

    def is_completed(self, content_type: ContentType, content_id: str) -> bool:
        return content_id in self._completed[content_type]

    def completed_ids(self, content_type: ContentType) -> Set[str]:
        return set(self._completed[content_type])

    def mark_completed(self, content_type: ContentType, content_id: str) -> None:
        self._completed[content_type].add(content_id)

    def unmark_completed(self, content_type: ContentType, content_id: str) -> bool:
        present = content_id in self._completed[content_type]
        self._completed[content_type].discard(content_id)
        return present

    # --- projects ---

    @property
    def projects(self) -> List[ProjectBrief]:
        return sorted(self._projects.values(), key=lambda p: (p.title, p.id))

    def get_project(self, project_id: str) -> Optional[ProjectBrief]:
        return self._projects.get(project_id)

    def install_project(self, project: ProjectBrief) -> None:
        self._projects[project.id] = project

    def remove_project(self, project_id: str) -> Optional[ProjectBrief]:
        return self._projects.pop(project_id, None)

    # --- snapshots ---

    def restore(self, snapshot: CurriculumSnapshot) -> None:
        """Reinstall every captured entity and completion-set membership."""
        for entity in snapshot.entities:
            self._collection(entity.kind)[entity.id] = entity
        for content_type, content_id in snapshot.completed:
            self._completed[content_type].add(content_id)
        for project in snapshot.projects:
            self._projects[project.id] = project

    def replace_all(self, snapshot: CurriculumSnapshot) -> None:
        """Wholesale reconciliation; discards any unconfirmed optimistic state."""
        for collection in self._collections.values():
            collection.clear()
        for completed in self._completed.values():
            completed.clear()
        self._projects.clear()
        self.restore(snapshot)
        logger.debug(
            "curriculum_store_replaced",
            entities=len(snapshot.entities),
            completed=len(snapshot.completed),
            projects=len(snapshot.projects),
        )

    def counts(self) -> Dict[str, int]:
        counts = {kind.value: len(self._collections[kind]) for kind in _ENTITY_KINDS}
        counts["completed"] = sum(len(ids) for ids in self._completed.values())
        counts["projects"] = len(self._projects)
        return counts


