"""从 YAML/JSON 文件加载商品目录。

文件格式可以是 ``products: [...]`` 映射，也可以直接是商品列表；
JSON 是 YAML 的子集，因此统一用 yaml.safe_load 解析。
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from merc_core.domain.exceptions import BusinessError, ValidationError
from merc_core.domain.models import Product
from merc_core.infrastructure.storage.memory_store import InMemoryCatalog


DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent / "default_catalog.yaml"


def load_catalog(path: Optional[str | Path] = None) -> InMemoryCatalog:
    """读取目录文件并构造 InMemoryCatalog，未指定路径时使用内置示例目录。"""

    catalog_path = Path(path).expanduser() if path else DEFAULT_CATALOG_PATH
    try:
        data = yaml.safe_load(catalog_path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise BusinessError(code="CATALOG_READ_ERROR", message=f"{catalog_path}: {e}")

    if isinstance(data, dict):
        data = data.get("products")
    if not isinstance(data, list):
        raise ValidationError(
            code="CATALOG_FORMAT_ERROR",
            message=f"{catalog_path}: expected a list of products",
        )
    return InMemoryCatalog(_to_product(item) for item in data)


def _to_product(item: Dict[str, Any]) -> Product:
    if not isinstance(item, dict):
        raise ValidationError(code="CATALOG_FORMAT_ERROR", message=f"invalid product entry: {item!r}")
    try:
        return Product(
            id=str(item["id"]),
            name=str(item["name"]),
            image_ref=str(item.get("image_ref") or item.get("image") or ""),
            price_cents=item["price_cents"],
            tags=tuple(str(t) for t in _as_list(item.get("tags"))),
            description=str(item.get("description") or ""),
        )
    except KeyError as e:
        raise ValidationError(
            code="CATALOG_FORMAT_ERROR",
            message=f"product entry missing field {e.args[0]!r}",
        )


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]
