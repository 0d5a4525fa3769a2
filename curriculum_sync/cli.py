"""
curriculum-sync operations CLI.

  curriculum-sync dump --user-id U            print the loaded curriculum tree as JSON
  curriculum-sync cleanup-course C --user-id U cascade-delete one course
  curriculum-sync inspect-columns TABLE COL... report which columns exist remotely
"""

import argparse
import asyncio
import json
import sys
from typing import Any, Dict, List, Optional, Sequence

from dotenv import load_dotenv

from curriculum_sync.core.settings import ROOT_ENV, ROOT_ENV_LOCAL
from curriculum_sync.domain.exceptions import (
    EntityNotFoundError,
    MutationFailedError,
    RemoteStoreError,
    SchemaDriftError,
)
from curriculum_sync.domain.interfaces import IRemoteStore
from curriculum_sync.domain.schemas import CurriculumEntity
from curriculum_sync.infrastructure.container import CurriculumContainer
from curriculum_sync.infrastructure.observability.logger_config import configure_structlog
from curriculum_sync.services.curriculum.store import CurriculumStore


def _node(entity: CurriculumEntity, store: CurriculumStore) -> Dict[str, Any]:
    node = entity.model_dump(mode="json")
    node["kind"] = entity.kind.value
    if hasattr(entity, "content_type"):
        node["completed"] = store.is_completed(entity.content_type, entity.id)
    return node


def build_tree(store: CurriculumStore) -> Dict[str, Any]:
    courses: List[Dict[str, Any]] = []
    for course in store.courses:
        course_node = _node(course, store)
        course_node["content"] = [
            _node(leaf, store) for leaf in store.leaves_for_course(course.id, direct_only=True)
        ]
        course_node["stages"] = []
        for stage in store.stages_for_course(course.id):
            stage_node = _node(stage, store)
            stage_node["modules"] = []
            for module in store.modules_for_stage(stage.id):
                module_node = _node(module, store)
                module_node["content"] = [
                    _node(leaf, store) for leaf in store.leaves_for_module(module.id)
                ]
                stage_node["modules"].append(module_node)
            course_node["stages"].append(stage_node)
        courses.append(course_node)

    return {
        "user_id": store.user_id,
        "folders": [_node(folder, store) for folder in store.folders],
        "courses": courses,
        "projects": [project.model_dump(mode="json") for project in store.projects],
        "counts": store.counts(),
    }


async def inspect_columns(
    remote: IRemoteStore, table: str, columns: Sequence[str]
) -> Dict[str, Optional[bool]]:
    """
    True = column exists, False = remote reports it missing, None = the probe
    failed for another reason.
    """
    report: Dict[str, Optional[bool]] = {}
    for column in columns:
        try:
            await remote.select(table, columns=column, limit=1)
            report[column] = True
        except SchemaDriftError:
            report[column] = False
        except RemoteStoreError:
            report[column] = None
    return report


async def _dump(container: CurriculumContainer, args: argparse.Namespace) -> int:
    session = container.build_session(watch_changes=False)
    await session.start(args.user_id)
    try:
        print(json.dumps(build_tree(session.store), indent=2, ensure_ascii=False))
    finally:
        await session.end()
    return 0


async def _cleanup_course(container: CurriculumContainer, args: argparse.Namespace) -> int:
    session = container.build_session(watch_changes=False)
    await session.start(args.user_id)
    try:
        plan = await session.delete_course(args.course_id)
    except EntityNotFoundError as exc:
        print(f"cleanup failed: {exc}", file=sys.stderr)
        return 1
    except MutationFailedError as exc:
        print(f"cleanup failed: {exc.user_message}", file=sys.stderr)
        return 1
    finally:
        await session.end()
    print(
        json.dumps(
            {
                "course_id": args.course_id,
                "stages": len(plan.stages),
                "modules": len(plan.modules),
                "content": len(plan.leaves),
            }
        )
    )
    return 0


async def _inspect_columns(container: CurriculumContainer, args: argparse.Namespace) -> int:
    report = await inspect_columns(container.remote_store, args.table, args.columns)
    print(json.dumps({"table": args.table, "columns": report}, indent=2))
    return 0 if all(report.values()) else 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="curriculum-sync", description="Curriculum sync engine operations"
    )
    commands = parser.add_subparsers(dest="command", required=True)

    dump = commands.add_parser("dump", help="Print the loaded curriculum tree as JSON")
    dump.add_argument("--user-id", required=True, help="Learner whose completions are loaded")
    dump.set_defaults(handler=_dump)

    cleanup = commands.add_parser("cleanup-course", help="Cascade-delete a course")
    cleanup.add_argument("course_id", help="Course UUID")
    cleanup.add_argument("--user-id", required=True, help="Session user performing the delete")
    cleanup.set_defaults(handler=_cleanup_course)

    inspect = commands.add_parser("inspect-columns", help="Probe remote columns of a table")
    inspect.add_argument("table")
    inspect.add_argument("columns", nargs="+")
    inspect.set_defaults(handler=_inspect_columns)
    return parser


async def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return await args.handler(CurriculumContainer(), args)


def run() -> None:
    load_dotenv(ROOT_ENV, override=False)
    load_dotenv(ROOT_ENV_LOCAL, override=False)
    configure_structlog()
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    run()
