from contextvars import ContextVar
from typing import Optional

from structlog.contextvars import bind_contextvars

# Context Variables for the active curriculum session
session_id_ctx: ContextVar[Optional[str]] = ContextVar("session_id", default=None)
user_id_ctx: ContextVar[Optional[str]] = ContextVar("user_id", default=None)


def get_session_id() -> Optional[str]:
    return session_id_ctx.get()


def get_user_id() -> Optional[str]:
    return user_id_ctx.get()


def set_session_context(session_id: Optional[str], user_id: Optional[str]) -> None:
    session_id_ctx.set(session_id)
    user_id_ctx.set(user_id)


def bind_context(**kwargs):
    """
    Binds the provided key-value pairs to the current structlog context.
    """
    bind_contextvars(**kwargs)
