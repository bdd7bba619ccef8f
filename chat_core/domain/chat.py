from typing import Callable, List, Optional, Protocol

from .models import ChatSession, ChatSessionMetadata


MetadataListener = Callable[[List[ChatSessionMetadata]], None]


class ChatStore(Protocol):
    """会话存储抽象。

    put/delete 对调用方而言是原子的：读者永远不会看到指向缺失或过期记录的元数据项。
    每次成功写入后，都会把完整的元数据列表重新推送给订阅者。
    """

    def put(self, session: ChatSession) -> None:
        ...

    def get(self, session_id: str) -> Optional[ChatSession]:
        ...

    def delete(self, session_id: str) -> None:
        ...

    def list_metadata(self) -> List[ChatSessionMetadata]:
        ...

    def update_title(self, session_id: str, title: str) -> None:
        ...

    def subscribe(self, listener: MetadataListener):
        ...
