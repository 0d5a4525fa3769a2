import pytest

from curriculum_sync.domain.exceptions import EntityNotFoundError
from curriculum_sync.domain.schemas import Course, Lesson, Quiz, Walkthrough
from curriculum_sync.domain.types import ContentType, EntityKind
from curriculum_sync.services.curriculum.store import CurriculumSnapshot, CurriculumStore


def test_roadmap_breaks_cross_type_order_ties_by_type_then_id() -> None:
    store = CurriculumStore()
    store.bind("u1")
    store.install_many(
        [
            Walkthrough(id="w1", course_id="c1", module_id="m1", title="W", order=0),
            Lesson(id="l1", course_id="c1", module_id="m1", title="L", order=0),
            Quiz(id="q2", course_id="c1", module_id="m1", title="Q2", order=0),
            Quiz(id="q1", course_id="c1", module_id="m1", title="Q1", order=0),
            Lesson(id="l2", course_id="c1", module_id="m1", title="L2", order=1),
        ]
    )

    ids = [item.id for item in store.roadmap((EntityKind.MODULE, "m1"))]

    assert ids == ["q1", "q2", "l1", "w1", "l2"]


def test_leaves_for_course_can_exclude_module_content(course_tree) -> None:
    all_ids = {leaf.id for leaf in course_tree.leaves_for_course("c1")}
    direct_ids = [leaf.id for leaf in course_tree.leaves_for_course("c1", direct_only=True)]

    assert all_ids == {"q1", "l1", "w1", "l0"}
    assert direct_ids == ["l0"]


def test_bind_to_another_user_clears_previous_session_state(course_tree) -> None:
    course_tree.mark_completed(ContentType.QUIZ, "q1")

    course_tree.bind("user-2")

    assert course_tree.user_id == "user-2"
    assert course_tree.courses == []
    assert course_tree.completed_ids(ContentType.QUIZ) == set()


def test_replace_all_discards_unconfirmed_local_state(course_tree) -> None:
    course_tree.mark_completed(ContentType.LESSON, "l1")

    course_tree.replace_all(
        CurriculumSnapshot(
            entities=[Course(id="c9", title="Fresh")],
            completed={(ContentType.QUIZ, "q9")},
        )
    )

    assert [c.id for c in course_tree.courses] == ["c9"]
    assert course_tree.get(EntityKind.STAGE, "s1") is None
    assert course_tree.is_completed(ContentType.QUIZ, "q9") is True
    assert course_tree.is_completed(ContentType.LESSON, "l1") is False
    assert course_tree.user_id == "user-1"


def test_require_raises_for_unloaded_entities(store) -> None:
    with pytest.raises(EntityNotFoundError):
        store.require(EntityKind.MODULE, "missing")


def test_completion_records_are_not_a_store_collection(store) -> None:
    with pytest.raises(ValueError):
        store.entities(EntityKind.COMPLETION)


def test_generation_moves_when_the_session_ends_or_changes_user(store) -> None:
    started = store.generation

    store.bind("user-1")
    assert store.is_current(started)

    store.bind("user-2")
    assert not store.is_current(started)

    switched = store.generation
    store.clear()
    assert not store.is_current(switched)
