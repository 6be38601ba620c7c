import asyncio
import json
import logging
import re
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from jinja2 import ChoiceLoader, Environment, FileSystemLoader, TemplateError, TemplateNotFound

from hrops.core.config import settings
from hrops.core.exceptions import ExternalCallFailure
from hrops.models.dto.reports import StoredDocument

logger = logging.getLogger(__name__)

_builtin_template_dir = Path(__file__).parent / "templates"
_UNSAFE_NAME_RE = re.compile(r'[\\/:*?"<>|\r\n]+')
_MAX_NAME_ATTEMPTS = 100


@runtime_checkable
class DocumentStoreProtocol(Protocol):
    async def create_document(
        self, template_name: str, title: str, folder_id: str, values: dict[str, Any],
    ) -> StoredDocument: ...
    async def is_ready(self, document_id: str) -> bool: ...
    async def add_editors(self, document_id: str, emails: list[str]) -> None: ...
    async def export(self, document_id: str) -> bytes: ...


def _safe_filename(title: str) -> str:
    return _UNSAFE_NAME_RE.sub("_", title).strip() or "untitled"


def _write_new_file(folder: Path, stem: str, content: str) -> Path:
    """Write ``content`` to ``stem.html``, or ``stem (2).html`` etc. if taken."""
    folder.mkdir(parents=True, exist_ok=True)
    for attempt in range(1, _MAX_NAME_ATTEMPTS + 1):
        path = folder / (f"{stem}.html" if attempt == 1 else f"{stem} ({attempt}).html")
        try:
            with path.open("x", encoding="utf-8") as f:
                f.write(content)
        except FileExistsError:
            continue
        return path
    raise ExternalCallFailure("Documents", f"too many documents named {stem!r}")


def _merge_editors(acl: Path, emails: list[str]) -> None:
    existing = json.loads(acl.read_text(encoding="utf-8")) if acl.exists() else []
    merged = list(dict.fromkeys([*existing, *emails]))
    acl.write_text(json.dumps(merged, ensure_ascii=False), encoding="utf-8")


class LocalDocumentStore:
    """Renders ``{{name}}`` templates into HTML files, one directory per folder id."""

    def __init__(self, root: str | Path | None = None, template_dir: str | Path | None = None):
        self._root = Path(root) if root is not None else settings.documents_path
        custom_dir = Path(template_dir) if template_dir is not None else settings.document_templates_path
        self._env = Environment(
            loader=ChoiceLoader([
                FileSystemLoader(str(custom_dir)),
                FileSystemLoader(str(_builtin_template_dir)),
            ]),
            autoescape=True,
        )

    def _path(self, document_id: str) -> Path:
        path = (self._root / document_id).resolve()
        if self._root.resolve() not in path.parents:
            raise ExternalCallFailure("Documents", f"invalid document id {document_id!r}")
        return path

    async def create_document(
        self, template_name: str, title: str, folder_id: str, values: dict[str, Any],
    ) -> StoredDocument:
        try:
            html = self._env.get_template(template_name).render({"title": title, **values})
        except TemplateNotFound as e:
            raise ExternalCallFailure("Documents", f"template {template_name!r} not found") from e
        except TemplateError as e:
            raise ExternalCallFailure("Documents", f"cannot render {template_name!r}: {e}") from e

        folder = self._root / _safe_filename(folder_id)
        try:
            path = await asyncio.to_thread(_write_new_file, folder, _safe_filename(title), html)
        except OSError as e:
            logger.error("Cannot write document %r: %s", title, e)
            raise ExternalCallFailure("Documents", f"cannot write {title!r}: {e.strerror or e}") from e

        document_id = path.relative_to(self._root).as_posix()
        logger.info("Document created: %s", document_id)
        return StoredDocument(
            id=document_id,
            name=title,
            folder_id=folder_id,
            url=path.resolve().as_uri(),
        )

    async def is_ready(self, document_id: str) -> bool:
        return await asyncio.to_thread(self._path(document_id).is_file)

    async def add_editors(self, document_id: str, emails: list[str]) -> None:
        path = self._path(document_id)
        if not await asyncio.to_thread(path.is_file):
            raise ExternalCallFailure("Documents", f"document {document_id!r} not found")
        try:
            await asyncio.to_thread(_merge_editors, path.with_suffix(".editors.json"), emails)
        except (OSError, ValueError) as e:
            raise ExternalCallFailure("Documents", f"cannot share {document_id!r}: {e}") from e

    async def export(self, document_id: str) -> bytes:
        try:
            return await asyncio.to_thread(self._path(document_id).read_bytes)
        except OSError as e:
            raise ExternalCallFailure("Documents", f"cannot export {document_id!r}: {e.strerror or e}") from e


async def wait_until_ready(
    store: DocumentStoreProtocol,
    document_id: str,
    timeout_seconds: float | None = None,
    poll_seconds: float | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> None:
    """Poll until the document is accessible; raise ExternalCallFailure on timeout."""
    timeout = settings.document_ready_timeout_seconds if timeout_seconds is None else timeout_seconds
    interval = settings.document_ready_poll_seconds if poll_seconds is None else poll_seconds
    started = clock()
    while clock() - started < timeout:
        try:
            if await store.is_ready(document_id):
                return
        except ExternalCallFailure:
            logger.debug("Document %s not accessible yet", document_id)
        await sleep(interval)
    raise ExternalCallFailure("Documents", f"timed out waiting for document {document_id}")


class FakeDocumentStore:
    """Test fake keeping rendered values in memory."""

    def __init__(self, ready_after_polls: int = 0, fail_templates: set[str] | None = None):
        self.documents: dict[str, dict[str, Any]] = {}
        self.editors: dict[str, list[str]] = {}
        self.ready_after_polls = ready_after_polls
        self.fail_templates = fail_templates or set()
        self._polls: dict[str, int] = {}

    async def create_document(
        self, template_name: str, title: str, folder_id: str, values: dict[str, Any],
    ) -> StoredDocument:
        if template_name in self.fail_templates:
            raise ExternalCallFailure("Documents", f"cannot render {template_name}")
        document_id = f"{folder_id}/{title}"
        self.documents[document_id] = {
            "template": template_name, "title": title, "folder_id": folder_id, "values": values,
        }
        return StoredDocument(
            id=document_id, name=title, folder_id=folder_id,
            url=f"https://docs.example.com/{document_id}",
        )

    async def is_ready(self, document_id: str) -> bool:
        self._polls[document_id] = self._polls.get(document_id, 0) + 1
        return (
            document_id in self.documents
            and self._polls[document_id] > self.ready_after_polls
        )

    async def add_editors(self, document_id: str, emails: list[str]) -> None:
        self.editors.setdefault(document_id, []).extend(emails)

    async def export(self, document_id: str) -> bytes:
        if document_id not in self.documents:
            raise ExternalCallFailure("Documents", f"document {document_id!r} not found")
        return json.dumps(self.documents[document_id], ensure_ascii=False, default=str).encode("utf-8")
