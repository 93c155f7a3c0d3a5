"""
隐式关联抽取

从实体文档的反范式字段推导关联边，纯函数，不做 I/O。
每种实体类型对应一条抽取规则，未登记规则的类型返回空列表。

字段缺失、为 None 或类型不对时视为没有关联；数组中的异常元素直接丢弃。
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from ..core.models import (
    AssociationKind,
    EntityType,
    ImplicitEdge,
    Strength,
    parse_datetime,
)

logger = logging.getLogger(__name__)

ExtractionRule = Callable[["_EdgeBuilder", Mapping[str, Any]], None]


def normalize_ids(value: Any) -> List[str]:
    """
    将字段值规范为 ID 列表

    元素可以是字符串 ID 或带 id 字段的对象，其余元素丢弃。
    非数组值返回空列表。
    """
    if not isinstance(value, list):
        return []

    ids = []
    for entry in value:
        if isinstance(entry, str):
            entry_id = entry
        elif isinstance(entry, dict):
            entry_id = entry.get("id")
        else:
            continue
        if isinstance(entry_id, str) and entry_id.strip():
            ids.append(entry_id)
    return ids


def _single_id(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


class _EdgeBuilder:
    """为单个实体文档收集隐式边"""

    def __init__(
        self,
        entity_type: EntityType,
        entity_id: str,
        document: Mapping[str, Any],
        now: datetime,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        # 文档缺少时间戳时取解析时间
        self.created_at = parse_datetime(document.get("createdAt")) or now
        self.updated_at = parse_datetime(document.get("updatedAt")) or now
        self.edges: List[ImplicitEdge] = []

    def add(
        self,
        target_type: EntityType,
        target_ids: Iterable[str],
        kind: AssociationKind,
        strength: Strength,
        source_field: str,
    ) -> None:
        for target_id in target_ids:
            self.edges.append(
                ImplicitEdge(
                    id=ImplicitEdge.make_id(self.entity_type, self.entity_id, target_type, target_id),
                    source_type=self.entity_type,
                    source_id=self.entity_id,
                    target_type=target_type,
                    target_id=target_id,
                    kind=kind,
                    strength=strength,
                    metadata={"source": source_field},
                    created_at=self.created_at,
                    updated_at=self.updated_at,
                    derived_from=source_field,
                )
            )

    def add_one(
        self,
        target_type: EntityType,
        value: Any,
        kind: AssociationKind,
        strength: Strength,
        source_field: str,
    ) -> None:
        target_id = _single_id(value)
        if target_id:
            self.add(target_type, [target_id], kind, strength, source_field)


# ==================== 抽取规则 ====================


def _deal_rule(builder: _EdgeBuilder, doc: Mapping[str, Any]) -> None:
    builder.add_one(EntityType.COMPANY, doc.get("companyId"),
                    AssociationKind.PRIMARY, Strength.STRONG, "companyId")
    builder.add_one(EntityType.LOCATION, doc.get("locationId"),
                    AssociationKind.PRIMARY, Strength.MEDIUM, "locationId")
    builder.add(EntityType.CONTACT, normalize_ids(doc.get("contactIds")),
                AssociationKind.INVOLVEMENT, Strength.STRONG, "contactIds")
    builder.add(EntityType.SALESPERSON, normalize_ids(doc.get("salespeopleIds")),
                AssociationKind.ASSIGNMENT, Strength.STRONG, "salespeopleIds")
    builder.add_one(EntityType.SALESPERSON, doc.get("salesOwnerId"),
                    AssociationKind.OWNERSHIP, Strength.STRONG, "salesOwnerId")


def _contact_rule(builder: _EdgeBuilder, doc: Mapping[str, Any]) -> None:
    builder.add_one(EntityType.COMPANY, doc.get("companyId"),
                    AssociationKind.PRIMARY, Strength.STRONG, "companyId")

    associations = doc.get("associations")
    if isinstance(associations, dict):
        builder.add(EntityType.DEAL, normalize_ids(associations.get("deals")),
                    AssociationKind.INVOLVEMENT, Strength.STRONG, "associations.deals")


def _task_rule(builder: _EdgeBuilder, doc: Mapping[str, Any]) -> None:
    associations = doc.get("associations")
    if not isinstance(associations, dict):
        return

    for plural, value in associations.items():
        if not isinstance(plural, str) or not isinstance(value, list):
            continue
        target_type = EntityType.from_plural(plural)
        if target_type is None:
            logger.debug(f"任务关联字段无法识别: associations.{plural}")
            continue
        builder.add(target_type, normalize_ids(value),
                    AssociationKind.INVOLVEMENT, Strength.MEDIUM, f"associations.{plural}")


class ImplicitEdgeExtractor:
    """
    隐式关联抽取器

    使用示例:
        extractor = ImplicitEdgeExtractor()
        edges = extractor.extract(EntityType.DEAL, "D1", {"companyId": "C1"})
    """

    def __init__(self):
        self._rules: Dict[EntityType, ExtractionRule] = {
            EntityType.DEAL: _deal_rule,
            EntityType.CONTACT: _contact_rule,
            EntityType.TASK: _task_rule,
        }

    def register_rule(self, entity_type: EntityType, rule: ExtractionRule) -> None:
        """登记（或覆盖）某类实体的抽取规则"""
        self._rules[entity_type] = rule

    def has_rule(self, entity_type: EntityType) -> bool:
        return entity_type in self._rules

    def extract(
        self,
        entity_type: EntityType,
        entity_id: str,
        document: Optional[Mapping[str, Any]],
        now: Optional[datetime] = None,
    ) -> List[ImplicitEdge]:
        """
        抽取隐式关联

        Args:
            entity_type: 实体类型
            entity_id: 实体 ID
            document: 实体文档，None 表示文档不存在
            now: 文档缺少 createdAt/updatedAt 时使用的时间，默认当前 UTC 时间

        Returns:
            隐式边列表，文档不存在或无规则时为空
        """
        if not document:
            return []

        rule = self._rules.get(entity_type)
        if rule is None:
            return []

        builder = _EdgeBuilder(entity_type, entity_id, document, now or datetime.now(timezone.utc))
        rule(builder, document)
        return builder.edges
