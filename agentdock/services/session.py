from pathlib import Path

from agentdock.config import CLAUDE_PROJECTS_DIR
from agentdock.constants import MAX_SESSION_PAGE
from agentdock.errors import AuthorizationError, NotFoundError, ValidationError
from agentdock.logging import get_logger
from agentdock.sessions.models import Provider, Session, SessionState
from agentdock.sessions.store import SessionStore
from agentdock.utils import new_id, utcnow

_logger = get_logger(__name__)


def git_root(path: Path) -> Path | None:
    for candidate in (path, *path.parents):
        if (candidate / ".git").exists():
            return candidate
    return None


def session_name(path: Path) -> str:
    """`repo` at a git root, `repo/sub/dir` below one, else the directory name."""
    root = git_root(path)
    if root is not None:
        rel = path.relative_to(root)
        return root.name if rel == Path(".") else f"{root.name}/{rel.as_posix()}"
    return path.name or "root"


def claude_directory_for(path: Path) -> Path:
    return CLAUDE_PROJECTS_DIR / str(path).replace("/", "-").replace("_", "-")


class SessionService:
    def __init__(self, store: SessionStore, projects_root: Path | None = None):
        self.store = store
        self.projects_root = projects_root

    def _validate_path(self, project_path: str) -> Path:
        if not project_path or not Path(project_path).is_absolute():
            raise ValidationError("projectPath must be an absolute path")
        path = Path(project_path).resolve()
        if not path.is_dir():
            raise ValidationError(f"Project path does not exist: {project_path}")
        if self.projects_root is not None and not path.is_relative_to(self.projects_root):
            raise AuthorizationError(f"Project path is outside {self.projects_root}")
        return path

    async def create(self, project_path: str, provider: Provider | str, context: str | None = None) -> Session:
        try:
            provider = Provider(provider)
        except ValueError:
            raise ValidationError(f"Unknown provider: {provider}") from None
        path = self._validate_path(project_path)

        now = utcnow()
        session = Session(
            id=new_id(),
            provider=provider,
            project_path=str(path),
            name=session_name(path),
            context=context,
            claude_directory_path=str(claude_directory_for(path)) if provider is Provider.CLAUDE_CODE else None,
            created_at=now,
            updated_at=now,
            last_accessed_at=now,
        )
        await self.store.create(session)
        _logger.info("Created %s session %s for %s", provider, session.id, path)
        return session

    async def get(self, session_id: str) -> Session:
        session = await self.store.get(session_id)
        if session is None:
            raise NotFoundError("Session")
        await self.store.touch(session_id)
        return session

    async def list(
        self,
        state: SessionState | None = None,
        is_working: bool | None = None,
        limit: int = MAX_SESSION_PAGE,
        offset: int = 0,
    ) -> dict:
        """Sessions that have at least one message, most recent activity first."""
        limit = max(1, min(limit, MAX_SESSION_PAGE))
        offset = max(0, offset)
        sessions, total = await self.store.list_sessions(state=state, is_working=is_working, limit=limit, offset=offset)
        return {
            "sessions": [s.to_dict() for s in sessions],
            "total": total,
            "limit": limit,
            "offset": offset,
            "hasMore": offset + len(sessions) < total,
        }

    async def update(self, session_id: str, context: str | None = None, metadata: dict | None = None) -> Session:
        if not await self.store.update(session_id, context=context, metadata=metadata):
            raise NotFoundError("Session")
        return await self.store.get(session_id)

    async def delete(self, session_id: str) -> None:
        if not await self.store.set_state(session_id, SessionState.INACTIVE):
            raise NotFoundError("Session")
        _logger.info("Deactivated session %s", session_id)

    async def active_count(self) -> int:
        return await self.store.count_active()
