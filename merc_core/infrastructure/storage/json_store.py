import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List
from uuid import uuid4

from merc_core.config.settings import settings
from merc_core.domain.exceptions import BusinessError
from merc_core.domain.models import Message, Role
from merc_core.domain.stores import CartStore, MessageStore
from merc_core.infrastructure.logging.logger import logger


class JsonMessageStore(MessageStore):
    """把消息以 JSON Lines 形式追加到 <root>/messages.jsonl。

    构造时读回已有消息，之后的读取直接走内存副本。
    """

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._path = self._root / "messages.jsonl"
        self._messages: List[Message] = self._read_all()

    def append(self, message: Message) -> None:
        payload = {
            "id": message.id,
            "role": message.role.value,
            "text": message.text,
            "created_at": message.created_at.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
        }
        try:
            with self._path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(payload, ensure_ascii=False) + "\n")
        except OSError as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))
        self._messages.append(message)

    def list_messages(self) -> List[Message]:
        return list(self._messages)

    def count(self) -> int:
        return len(self._messages)

    def _read_all(self) -> List[Message]:
        items: List[Message] = []
        if not self._path.exists():
            return items
        try:
            lines = self._path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e))
        # 文件顺序即追加顺序，不按时间戳重排
        for lineno, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                items.append(self._to_message(json.loads(line)))
            except (ValueError, KeyError, TypeError, AttributeError) as e:
                logger.warning(
                    "Skipping corrupt message line",
                    extra={"extra": {"path": str(self._path), "line": lineno, "error": str(e)}},
                )
        return items

    @staticmethod
    def _to_message(data: Dict[str, Any]) -> Message:
        return Message(
            id=data["id"],
            role=Role(data["role"]),
            text=data.get("text") or "",
            created_at=datetime.fromisoformat(str(data["created_at"]).replace("Z", "+00:00")),
        )


class JsonCartStore(CartStore):
    """购物车快照保存在 <root>/cart.json，写入时先写临时文件再原子替换。"""

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._path = self._root / "cart.json"

    def load(self) -> Dict[str, int]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e))
        entries = data.get("entries", []) if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise BusinessError(code="STORE_READ_ERROR", message=f"{self._path}: expected an 'entries' list")
        quantities: Dict[str, int] = {}
        for item in entries:
            if not isinstance(item, dict):
                raise BusinessError(code="STORE_READ_ERROR", message=f"{self._path}: invalid cart entry {item!r}")
            pid = item.get("product_id")
            qty = item.get("quantity", 0)
            if isinstance(qty, bool) or not isinstance(qty, int):
                raise BusinessError(
                    code="STORE_READ_ERROR",
                    message=f"{self._path}: quantity for {pid!r} must be an integer",
                )
            if pid and qty >= 1:
                quantities[pid] = qty
        return quantities

    def save(self, quantities: Dict[str, int]) -> None:
        obj = {
            "updated_at": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "entries": [{"product_id": pid, "quantity": qty} for pid, qty in quantities.items()],
        }
        tmp_path = self._root / f"cart.{uuid4().hex}.json.tmp"
        try:
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))
