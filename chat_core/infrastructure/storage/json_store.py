"""基于本地文件的版本化会话存储。

目录结构::

    <root>/schema.json        {"version": N}
    <root>/chats/<id>.json    完整会话记录
    <root>/index.json         元数据索引（按 timestamp 倒序）
    <root>/corrupt/           无法解析、被移出的记录

一致性：所有文件都通过"临时文件 + os.replace"原子写入；put 先写记录再写索引，
delete 先删索引项再删记录，因此索引永远不会指向缺失的记录。打开存储时会用磁盘上的
记录校正索引，修复两次写入之间崩溃留下的不一致。
"""

import json
import logging
import os
import shutil
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.chat import ChatStore, MetadataListener
from chat_core.domain.exceptions import StorageError
from chat_core.domain.models import ChatSession, ChatSessionMetadata
from chat_core.infrastructure.events.observable import Observable, Subscription
from chat_core.infrastructure.logging.logger import log_event


SCHEMA_VERSION = 2


def _sorted_desc(items: List[ChatSessionMetadata]) -> List[ChatSessionMetadata]:
    return sorted(items, key=lambda m: (m.timestamp, m.id), reverse=True)


class JsonChatStore(ChatStore):
    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._chats_root = self._root / "chats"
        self._index_path = self._root / "index.json"
        self._schema_path = self._root / "schema.json"
        self._lock = threading.RLock()
        self.metadata: Observable[List[ChatSessionMetadata]] = Observable([], name="chat_metadata")
        self._upgrades: Dict[int, Callable[[], None]] = {1: self._upgrade_v1_to_v2}
        with self._lock:
            self._open()
        self._publish()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def version(self) -> int:
        return self._read_version()

    # ---- 对外接口 ----

    def put(self, session: ChatSession) -> None:
        with self._lock:
            path = self._record_path(session.id)
            index = [m for m in self._read_index() if m.id != session.id]
            index.append(session.metadata)
            previous = self._read_raw(path)
            self._write_json(path, session.to_dict())
            try:
                self._write_index(index)
            except StorageError:
                # 索引写入失败时撤销记录，保证索引项与记录一致
                self._restore_record(path, previous)
                raise
            log_event(logging.INFO, "Stored chat session", {"session_id": session.id}, messages=len(session.messages))
            self._publish()

    def get(self, session_id: str) -> Optional[ChatSession]:
        with self._lock:
            path = self._record_path(session_id)
            if not path.exists():
                return None
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                return ChatSession.from_dict(data)
            except (OSError, ValueError, KeyError, TypeError) as e:
                raise StorageError(code="STORE_READ_ERROR", message=str(e), session_id=session_id)

    def delete(self, session_id: str) -> None:
        with self._lock:
            path = self._record_path(session_id)
            index = self._read_index()
            remaining = [m for m in index if m.id != session_id]
            if len(remaining) != len(index):
                self._write_index(remaining)
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                raise StorageError(code="STORE_DELETE_ERROR", message=str(e), session_id=session_id)
            log_event(logging.INFO, "Deleted chat session", {"session_id": session_id})
            self._publish()

    def list_metadata(self) -> List[ChatSessionMetadata]:
        with self._lock:
            return _sorted_desc(self._read_index())

    def update_title(self, session_id: str, title: str) -> None:
        """更新会话标题。"""
        with self._lock:
            session = self.get(session_id)
            if session is None:
                raise StorageError(code="CONVERSATION_NOT_FOUND", message=session_id)
            session.title = title
            self.put(session)

    def subscribe(self, listener: MetadataListener) -> Subscription:
        return self.metadata.subscribe(listener)

    # ---- 打开、升级与校正 ----

    def _open(self) -> None:
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(code="STORE_WRITE_ERROR", message=str(e))
        on_disk = self._read_version()
        if on_disk > SCHEMA_VERSION:
            raise StorageError(
                code="STORE_VERSION_ERROR",
                message=f"Store version {on_disk} is newer than supported version {SCHEMA_VERSION}",
            )
        if on_disk == 0:
            self._chats_root.mkdir(parents=True, exist_ok=True)
            self._write_index([])
            self._write_version(SCHEMA_VERSION)
            log_event(logging.INFO, "Initialized chat store", {"root": str(self._root)}, version=SCHEMA_VERSION)
            return
        # 每一步升级完成后才提升版本号；中途崩溃时下次打开会从同一步重新执行
        while on_disk < SCHEMA_VERSION:
            self._upgrades[on_disk]()
            on_disk += 1
            self._write_version(on_disk)
            log_event(logging.INFO, "Upgraded chat store", {"root": str(self._root)}, version=on_disk)
        self._reconcile_index()

    def _read_version(self) -> int:
        if self._schema_path.exists():
            try:
                data = json.loads(self._schema_path.read_text(encoding="utf-8"))
                return int(data["version"])
            except (OSError, ValueError, KeyError, TypeError) as e:
                raise StorageError(code="STORE_READ_ERROR", message=f"Unreadable schema file: {e}")
        # 没有 schema.json 但已有记录目录：v1 时代的存储
        if self._chats_root.exists():
            return 1
        return 0

    def _write_version(self, version: int) -> None:
        self._write_json(self._schema_path, {"version": version})

    def _upgrade_v1_to_v2(self) -> None:
        """v1 -> v2：新增 index.json。

        只追加新文件，不改写已有记录；v1 记录缺少的 tokenUsage / isStreaming
        在读取时取默认值。
        """
        self._write_index(self._scan_records())

    def _reconcile_index(self) -> None:
        records = {m.id: m for m in self._scan_records()}
        index = {m.id: m for m in self._read_index()}
        if records == index:
            return
        log_event(
            logging.WARNING,
            "Repairing chat index",
            {"root": str(self._root)},
            dropped=sorted(set(index) - set(records)),
            added=sorted(set(records) - set(index)),
        )
        self._write_index(list(records.values()))

    def _scan_records(self) -> List[ChatSessionMetadata]:
        items: List[ChatSessionMetadata] = []
        if not self._chats_root.exists():
            return items
        for path in sorted(self._chats_root.glob("*.json")):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                items.append(ChatSession.from_dict(data).metadata)
            except (OSError, ValueError, KeyError, TypeError) as e:
                self._quarantine(path, e)
        return items

    def _quarantine(self, path: Path, error: Exception) -> None:
        """无法解析的记录移入 corrupt/，避免阻塞升级与索引校正。"""
        corrupt_dir = self._root / "corrupt"
        try:
            corrupt_dir.mkdir(parents=True, exist_ok=True)
            shutil.move(str(path), str(corrupt_dir / path.name))
        except OSError as e:
            raise StorageError(code="STORE_WRITE_ERROR", message=str(e))
        log_event(logging.WARNING, "Quarantined unreadable record", {"file": path.name}, error=str(error))

    # ---- 文件读写 ----

    def _record_path(self, session_id: str) -> Path:
        if not session_id or "/" in session_id or "\\" in session_id or session_id.startswith("."):
            raise StorageError(code="INVALID_SESSION_ID", message=repr(session_id))
        return self._chats_root / f"{session_id}.json"

    def _read_index(self) -> List[ChatSessionMetadata]:
        if not self._index_path.exists():
            return []
        try:
            data = json.loads(self._index_path.read_text(encoding="utf-8"))
            return [ChatSessionMetadata.from_dict(item) for item in data]
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise StorageError(code="STORE_READ_ERROR", message=f"Unreadable index: {e}")

    def _write_index(self, items: List[ChatSessionMetadata]) -> None:
        self._write_json(self._index_path, [m.to_dict() for m in _sorted_desc(items)])

    def _write_json(self, path: Path, obj) -> None:
        tmp_path = path.parent / f".{path.stem}.{uuid4().hex}.tmp"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            tmp_path.unlink(missing_ok=True)
            raise StorageError(code="STORE_WRITE_ERROR", message=str(e))

    def _read_raw(self, path: Path) -> Optional[bytes]:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(code="STORE_READ_ERROR", message=str(e))

    def _restore_record(self, path: Path, previous: Optional[bytes]) -> None:
        try:
            if previous is None:
                path.unlink(missing_ok=True)
            else:
                tmp_path = path.parent / f".{path.stem}.{uuid4().hex}.tmp"
                tmp_path.write_bytes(previous)
                os.replace(tmp_path, path)
        except OSError as e:
            log_event(logging.ERROR, "Failed to restore chat record", {"file": path.name}, error=str(e))

    def _publish(self) -> None:
        # 在锁内发布，保证最后一次发布的列表就是最新提交的状态
        with self._lock:
            try:
                items = self.list_metadata()
            except StorageError as e:
                log_event(logging.ERROR, "Failed to publish chat list", {}, error=e.message)
                return
            self.metadata.publish(items)
