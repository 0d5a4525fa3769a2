from typing import Optional

from curriculum_sync.domain.types import EntityKind, RemoteErrorKind


class RemoteStoreError(Exception):
    """
    Failure reported by the remote store, already classified at the adapter boundary.
    """

    kind = RemoteErrorKind.UNKNOWN

    def __init__(self, message: str, *, table: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.table = table
        self.code = code


class TransportError(RemoteStoreError):
    kind = RemoteErrorKind.TRANSPORT


class SchemaDriftError(RemoteStoreError):
    """
    The remote rejected a payload because `column` does not exist there.
    """

    kind = RemoteErrorKind.SCHEMA_DRIFT

    def __init__(
        self,
        message: str,
        *,
        column: str,
        table: Optional[str] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message, table=table, code=code)
        self.column = column


class ConstraintViolationError(RemoteStoreError):
    kind = RemoteErrorKind.CONSTRAINT_VIOLATION


class NotFoundError(RemoteStoreError):
    kind = RemoteErrorKind.NOT_FOUND


class MutationFailedError(Exception):
    """
    A logical operation failed and every optimistic change it made was reverted.
    """

    def __init__(
        self,
        entity_kind: EntityKind,
        entity_id: str,
        cause: Optional[BaseException] = None,
        message: Optional[str] = None,
    ):
        detail = message or (str(cause) if cause is not None else "remote write failed")
        super().__init__(f"{entity_kind.value} {entity_id}: {detail}")
        self.entity_kind = entity_kind
        self.entity_id = entity_id
        self.cause = cause
        self.user_message = detail


class CascadeDeleteError(MutationFailedError):
    def __init__(
        self,
        entity_kind: EntityKind,
        entity_id: str,
        step: str,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(entity_kind, entity_id, cause)
        self.step = step


class ReorderFailedError(MutationFailedError):
    pass


class CompletionFailedError(MutationFailedError):
    pass


class EntityNotFoundError(LookupError):
    def __init__(self, kind: EntityKind, entity_id: str):
        super().__init__(f"{kind.value} {entity_id} is not loaded")
        self.kind = kind
        self.entity_id = entity_id


class SessionNotActiveError(RuntimeError):
    pass
