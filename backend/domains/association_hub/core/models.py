"""
关联数据模型

定义 CRM 实体之间的关联（边）以及关联解析结果。

边分为两类:
- ExplicitEdge: 显式关联，独立存储在 crm_associations 集合中，可单独删除
- ImplicitEdge: 隐式关联，每次解析时从实体文档的外键字段推导，不落库
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, ClassVar, Dict, Iterable, List, Mapping, Optional, Tuple


class EntityType(str, Enum):
    """
    实体类型枚举

    - 客户侧: 公司、门店、联系人
    - 销售侧: 商机、销售人员
    - 协作侧: 任务
    """

    COMPANY = "company"
    LOCATION = "location"  # 门店，嵌套在公司文档下
    CONTACT = "contact"
    DEAL = "deal"
    SALESPERSON = "salesperson"  # 用户，分租户/全局两个命名空间
    TASK = "task"

    @property
    def plural(self) -> str:
        """复数形式，用作结果中的分类名"""
        return PLURAL_NAMES[self]

    @classmethod
    def from_plural(cls, name: str) -> Optional["EntityType"]:
        """
        由复数名还原实体类型

        未登记的复数名按去掉末尾 s 处理，仍无法识别时返回 None。
        """
        for entity_type, plural in PLURAL_NAMES.items():
            if plural == name:
                return entity_type
        singular = name[:-1] if name.endswith("s") else name
        try:
            return cls(singular)
        except ValueError:
            return None


PLURAL_NAMES: Dict[EntityType, str] = {
    EntityType.COMPANY: "companies",
    EntityType.LOCATION: "locations",
    EntityType.CONTACT: "contacts",
    EntityType.DEAL: "deals",
    EntityType.SALESPERSON: "salespeople",
    EntityType.TASK: "tasks",
}

# 解析时需要加载实体详情的类型，任务不在其中
ESSENTIAL_TYPES: Tuple[EntityType, ...] = (
    EntityType.COMPANY,
    EntityType.LOCATION,
    EntityType.CONTACT,
    EntityType.DEAL,
    EntityType.SALESPERSON,
)


class AssociationKind(str, Enum):
    """关联语义"""

    PRIMARY = "primary"  # 主归属（商机 -> 公司）
    SECONDARY = "secondary"
    OWNERSHIP = "ownership"  # 负责人
    ASSIGNMENT = "assignment"  # 分配
    INVOLVEMENT = "involvement"  # 参与


class Strength(str, Enum):
    """关联强度，strong > medium > weak"""

    STRONG = "strong"
    MEDIUM = "medium"
    WEAK = "weak"

    @property
    def rank(self) -> int:
        return STRENGTH_RANK[self]


STRENGTH_RANK: Dict[Strength, int] = {
    Strength.STRONG: 3,
    Strength.MEDIUM: 2,
    Strength.WEAK: 1,
}


class EdgeOrigin(str, Enum):
    """边的来源"""

    EXPLICIT = "explicit"
    IMPLICIT = "implicit"


class AssociationAction(str, Enum):
    """关联变更动作"""

    ADD = "add"
    REMOVE = "remove"


# (source_type, source_id, target_type, target_id, kind)
EdgeKey = Tuple[str, str, str, str, str]


def freeze(value: Any) -> Any:
    """递归转为只读结构: 映射 -> MappingProxyType，列表 -> tuple"""
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    return value


def thaw(value: Any) -> Any:
    """freeze 的逆操作，返回可序列化的普通 dict / list 副本"""
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [thaw(v) for v in value]
    return value


def parse_datetime(value: Any) -> Optional[datetime]:
    """解析时间戳，支持 datetime 与 ISO 字符串（含 Z 后缀）"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def _enum_or_default(enum_cls, value: Any, default):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return default


@dataclass(frozen=True)
class Edge:
    """
    关联边基类

    有方向、有类型的实体关系。不直接实例化，使用 ExplicitEdge / ImplicitEdge。
    """

    id: str
    source_type: EntityType
    source_id: str
    target_type: EntityType
    target_id: str
    kind: AssociationKind
    strength: Strength
    metadata: Mapping[str, Any] = field(default_factory=dict, hash=False)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    origin: ClassVar[EdgeOrigin]

    def __post_init__(self):
        object.__setattr__(self, "metadata", freeze(self.metadata))

    @property
    def key(self) -> EdgeKey:
        """去重键"""
        return (
            self.source_type.value,
            self.source_id,
            self.target_type.value,
            self.target_id,
            self.kind.value,
        )

    @property
    def is_deletable(self) -> bool:
        """只有显式边可以单独删除"""
        return self.origin == EdgeOrigin.EXPLICIT

    def involves(self, entity_type: EntityType, entity_id: str) -> bool:
        return (self.source_type == entity_type and self.source_id == entity_id) or (
            self.target_type == entity_type and self.target_id == entity_id
        )

    def other_end(self, entity_type: EntityType, entity_id: str) -> Tuple[EntityType, str]:
        """
        返回不是被解析实体的那一端

        被解析实体作为 source 时返回 target，反之返回 source。
        """
        if self.source_type == entity_type and self.source_id == entity_id:
            return self.target_type, self.target_id
        return self.source_type, self.source_id

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        return {
            "id": self.id,
            "origin": self.origin.value,
            "source_type": self.source_type.value,
            "source_id": self.source_id,
            "target_type": self.target_type.value,
            "target_id": self.target_id,
            "kind": self.kind.value,
            "strength": self.strength.value,
            "metadata": thaw(self.metadata),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class ExplicitEdge(Edge):
    """
    显式关联

    crm_associations 集合中的一条记录，有独立的创建/更新/删除生命周期。
    存储字段沿用文档库中的驼峰命名（sourceEntityType、associationType 等）。
    """

    tenant_id: str = ""
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    origin: ClassVar[EdgeOrigin] = EdgeOrigin.EXPLICIT

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["created_by"] = self.created_by
        data["updated_by"] = self.updated_by
        return data

    def to_document(self) -> Dict[str, Any]:
        """转换为存储文档（不含 id）"""
        doc = {
            "sourceEntityType": self.source_type.value,
            "sourceEntityId": self.source_id,
            "targetEntityType": self.target_type.value,
            "targetEntityId": self.target_id,
            "associationType": self.kind.value,
            "strength": self.strength.value,
            "metadata": thaw(self.metadata),
            "tenantId": self.tenant_id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
        if self.created_by is not None:
            doc["createdBy"] = self.created_by
        if self.updated_by is not None:
            doc["updatedBy"] = self.updated_by
        return doc

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> Optional["ExplicitEdge"]:
        """
        从存储文档创建

        端点类型无法识别时返回 None；关联语义、强度无法识别时分别回落为 primary、medium。
        """
        try:
            source_type = EntityType(doc.get("sourceEntityType"))
            target_type = EntityType(doc.get("targetEntityType"))
        except ValueError:
            return None

        source_id = doc.get("sourceEntityId")
        target_id = doc.get("targetEntityId")
        if not isinstance(source_id, str) or not isinstance(target_id, str):
            return None

        metadata = doc.get("metadata")
        return cls(
            id=str(doc.get("id", "")),
            source_type=source_type,
            source_id=source_id,
            target_type=target_type,
            target_id=target_id,
            kind=_enum_or_default(AssociationKind, doc.get("associationType"), AssociationKind.PRIMARY),
            strength=_enum_or_default(Strength, doc.get("strength"), Strength.MEDIUM),
            metadata=dict(metadata) if isinstance(metadata, dict) else {},
            created_at=parse_datetime(doc.get("createdAt")),
            updated_at=parse_datetime(doc.get("updatedAt")),
            tenant_id=str(doc.get("tenantId") or ""),
            created_by=doc.get("createdBy"),
            updated_by=doc.get("updatedBy"),
        )


@dataclass(frozen=True)
class ImplicitEdge(Edge):
    """
    隐式关联

    由实体文档中的反范式字段推导（如商机的 companyId），不独立存储，
    字段被清空后该边随即消失。
    """

    derived_from: str = ""

    origin: ClassVar[EdgeOrigin] = EdgeOrigin.IMPLICIT

    @staticmethod
    def make_id(
        source_type: EntityType,
        source_id: str,
        target_type: EntityType,
        target_id: str,
    ) -> str:
        return f"implicit:{source_type.value}:{source_id}:{target_type.value}:{target_id}"

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["derived_from"] = self.derived_from
        return data


# ==================== 实体加载结果 ====================


class LoadStatus(str, Enum):
    """单个实体类别的加载状态"""

    OK = "ok"
    EMPTY = "empty"  # 没有需要加载的实体，或都不存在
    FAILED = "failed"  # 出错或超时


@dataclass(frozen=True)
class CategoryLoad:
    """单个实体类别的加载结果"""

    status: LoadStatus
    items: Tuple[Mapping[str, Any], ...] = ()
    reason: Optional[str] = None

    def __post_init__(self):
        # 缓存中的结果会被多个调用方共享，记录只读
        object.__setattr__(self, "items", freeze(self.items))

    @classmethod
    def ok(cls, items: Iterable[Mapping[str, Any]]) -> "CategoryLoad":
        items = tuple(items)
        if not items:
            return cls(status=LoadStatus.EMPTY)
        return cls(status=LoadStatus.OK, items=items)

    @classmethod
    def empty(cls) -> "CategoryLoad":
        return cls(status=LoadStatus.EMPTY)

    @classmethod
    def failed(cls, reason: str) -> "CategoryLoad":
        return cls(status=LoadStatus.FAILED, reason=reason)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "count": len(self.items),
            "reason": self.reason,
        }


@dataclass(frozen=True)
class HydratedEntities:
    """
    按类别分组的实体详情

    companies/locations/... 属性返回实体列表（失败的类别为空列表），
    需要区分"没有数据"与"加载失败"时使用 status() / load()。
    """

    loads: Mapping[str, CategoryLoad] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        object.__setattr__(self, "loads", MappingProxyType(dict(self.loads)))

    def load(self, category: str) -> CategoryLoad:
        return self.loads.get(category, CategoryLoad.empty())

    def items(self, category: str) -> List[Mapping[str, Any]]:
        return list(self.load(category).items)

    @property
    def companies(self) -> List[Mapping[str, Any]]:
        return self.items("companies")

    @property
    def locations(self) -> List[Mapping[str, Any]]:
        return self.items("locations")

    @property
    def contacts(self) -> List[Mapping[str, Any]]:
        return self.items("contacts")

    @property
    def deals(self) -> List[Mapping[str, Any]]:
        return self.items("deals")

    @property
    def salespeople(self) -> List[Mapping[str, Any]]:
        return self.items("salespeople")

    @property
    def tasks(self) -> List[Mapping[str, Any]]:
        return self.items("tasks")

    def status(self) -> Dict[str, LoadStatus]:
        return {plural: self.load(plural).status for plural in PLURAL_NAMES.values()}

    def to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {plural: thaw(self.load(plural).items) for plural in PLURAL_NAMES.values()}


@dataclass(frozen=True)
class AssociationSummary:
    """关联统计"""

    total_edges: int = 0
    by_kind: Mapping[str, int] = field(default_factory=dict, hash=False)
    by_strength: Mapping[str, int] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        object.__setattr__(self, "by_kind", freeze(self.by_kind))
        object.__setattr__(self, "by_strength", freeze(self.by_strength))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_edges": self.total_edges,
            "by_kind": dict(self.by_kind),
            "by_strength": dict(self.by_strength),
        }


@dataclass(frozen=True)
class AssociationResult:
    """
    关联解析结果

    不可变值对象，每次解析新建或从缓存返回。
    """

    entity_type: EntityType
    entity_id: str
    edges: Tuple[Edge, ...]
    entities: HydratedEntities
    summary: AssociationSummary
    resolved_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        return {
            "entity_type": self.entity_type.value,
            "entity_id": self.entity_id,
            "edges": [e.to_dict() for e in self.edges],
            "entities": self.entities.to_dict(),
            "entity_status": {
                plural: self.entities.load(plural).to_dict() for plural in PLURAL_NAMES.values()
            },
            "summary": self.summary.to_dict(),
            "resolved_at": self.resolved_at.isoformat(),
        }


__all__ = [
    "EntityType",
    "AssociationKind",
    "Strength",
    "EdgeOrigin",
    "AssociationAction",
    "LoadStatus",
    "PLURAL_NAMES",
    "ESSENTIAL_TYPES",
    "STRENGTH_RANK",
    "EdgeKey",
    "Edge",
    "ExplicitEdge",
    "ImplicitEdge",
    "CategoryLoad",
    "HydratedEntities",
    "AssociationSummary",
    "AssociationResult",
    "parse_datetime",
]
