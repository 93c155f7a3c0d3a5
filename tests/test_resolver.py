"""Tests for the unified association resolver."""

import asyncio

import pytest

from conftest import explicit_edge_doc, tpath

from domains.association_hub.core import (
    EdgeOrigin,
    EntityType,
    LoadStatus,
    Strength,
)
from domains.association_hub.services import AssociationResolverFactory
from domains.core.exceptions import (
    InvalidEntityTypeError,
    StoreUnavailableError,
    ValidationError,
)

ASSOCIATIONS = tpath("crm_associations")


def _edge_map(result):
    return {(e.target_type.value, e.target_id): e for e in result.edges}


# ==================== 解析 ====================


@pytest.mark.asyncio
async def test_deal_scenario(crm_data, resolver):
    result = await resolver.resolve("deal", "D1")

    edges = _edge_map(result)
    assert set(edges) == {("company", "C1"), ("contact", "K1"), ("contact", "K2"), ("salesperson", "S1")}
    assert (edges[("company", "C1")].kind.value, edges[("company", "C1")].strength.value) == ("primary", "strong")
    assert edges[("salesperson", "S1")].kind.value == "ownership"

    # 显式 weak 关联被隐式 strong 关联取代
    k1 = edges[("contact", "K1")]
    assert k1.strength == Strength.STRONG
    assert k1.origin == EdgeOrigin.IMPLICIT

    assert sorted(c["id"] for c in result.entities.contacts) == ["K1", "K2"]
    assert [c["id"] for c in result.entities.companies] == ["C1"]
    assert result.entities.salespeople[0]["firstName"] == "Sam"
    assert result.summary.total_edges == 4
    assert result.summary.by_kind == {"primary": 1, "involvement": 2, "ownership": 1}


@pytest.mark.asyncio
async def test_contact_without_links(crm_data, resolver):
    result = await resolver.resolve("contact", "K3")

    assert result.edges == ()
    assert result.summary.total_edges == 0
    assert all(items == [] for items in result.entities.to_dict().values())
    assert set(result.entities.status().values()) == {LoadStatus.EMPTY}


@pytest.mark.asyncio
async def test_missing_entity_document_is_not_an_error(crm_data, resolver):
    crm_data.seed(ASSOCIATIONS, "E9", explicit_edge_doc("deal", "D404", "company", "C1"))

    result = await resolver.resolve("deal", "D404")

    assert [(e.target_id, e.origin) for e in result.edges] == [("C1", EdgeOrigin.EXPLICIT)]


@pytest.mark.asyncio
async def test_explicit_edges_are_read_from_both_sides(crm_data, resolver):
    result = await resolver.resolve("contact", "K1")

    # K1 自身的 companyId 隐式关联 + D1 -> K1 的显式关联（K1 为 target）
    ends = {e.other_end(EntityType.CONTACT, "K1") for e in result.edges}
    assert ends == {(EntityType.COMPANY, "C1"), (EntityType.DEAL, "D1")}
    assert [d["id"] for d in result.entities.deals] == ["D1"]


@pytest.mark.asyncio
async def test_merged_edges_have_unique_keys(crm_data, resolver):
    crm_data.seed(ASSOCIATIONS, "E2", explicit_edge_doc("deal", "D1", "company", "C1", strength="strong"))
    crm_data.seed(ASSOCIATIONS, "E3", explicit_edge_doc("deal", "D1", "company", "C1", strength="weak"))

    result = await resolver.resolve("deal", "D1")

    keys = [e.key for e in result.edges]
    assert len(keys) == len(set(keys))


@pytest.mark.asyncio
async def test_null_foreign_keys(documents, resolver):
    documents.seed(tpath("crm_deals"), "D2", {
        "companyId": None,
        "contactIds": None,
        "salespeopleIds": [None, {"id": None}],
    })

    result = await resolver.resolve("deal", "D2")

    assert result.edges == ()


@pytest.mark.asyncio
async def test_cached_result_needs_no_store_reads(crm_data, resolver):
    first = await resolver.resolve("deal", "D1")
    crm_data.reset_calls()

    second = await resolver.resolve(EntityType.DEAL, "D1")

    assert second is first
    assert crm_data.count() == 0


@pytest.mark.asyncio
async def test_cached_result_is_read_only(crm_data, resolver):
    first = await resolver.resolve("deal", "D1")

    with pytest.raises(TypeError):
        first.entities.contacts[0]["name"] = "changed"
    with pytest.raises(TypeError):
        first.summary.by_kind["primary"] = 99
    with pytest.raises(TypeError):
        first.edges[0].metadata["note"] = "changed"

    data = first.to_dict()
    data["entities"]["contacts"][0]["name"] = "changed"
    data["summary"]["by_kind"]["primary"] = 99
    first.entities.contacts.clear()

    second = await resolver.resolve("deal", "D1")

    assert sorted(c["name"] for c in second.entities.contacts) == ["Kai", "Kim"]
    assert second.summary.by_kind == {"primary": 1, "involvement": 2, "ownership": 1}


@pytest.mark.asyncio
async def test_expired_entry_is_resolved_again(crm_data, resolver, clock):
    first = await resolver.resolve("deal", "D1")
    clock.advance(301)
    crm_data.reset_calls()

    second = await resolver.resolve("deal", "D1")

    assert second is not first
    assert crm_data.count("query", ASSOCIATIONS) == 2


@pytest.mark.asyncio
async def test_zero_ttl_always_reads(crm_data, make_resolver):
    resolver = make_resolver(cache_ttl_seconds=0)

    await resolver.resolve("deal", "D1")
    await resolver.resolve("deal", "D1")

    assert crm_data.count("query", ASSOCIATIONS) == 4


@pytest.mark.asyncio
async def test_partial_hydration_failure(crm_data, resolver):
    crm_data.fail("get", tpath("users"))

    result = await resolver.resolve("deal", "D1")

    assert result.summary.total_edges == 4
    assert result.entities.salespeople == []
    assert result.entities.status()["salespeople"] == LoadStatus.FAILED
    assert sorted(c["id"] for c in result.entities.contacts) == ["K1", "K2"]


@pytest.mark.asyncio
async def test_edge_store_failure_raises(crm_data, resolver):
    crm_data.fail("query", ASSOCIATIONS)

    with pytest.raises(StoreUnavailableError) as exc_info:
        await resolver.resolve("deal", "D1")

    assert exc_info.value.details["entity_id"] == "D1"
    assert exc_info.value.http_status_code == 502

    # 失败不写缓存
    crm_data.heal()
    result = await resolver.resolve("deal", "D1")
    assert result.summary.total_edges == 4


@pytest.mark.asyncio
async def test_entity_document_failure_raises(crm_data, resolver):
    crm_data.fail("get", tpath("crm_deals"))

    with pytest.raises(StoreUnavailableError):
        await resolver.resolve("deal", "D1")


@pytest.mark.asyncio
async def test_invalid_input(resolver):
    with pytest.raises(InvalidEntityTypeError):
        await resolver.resolve("widget", "W1")

    with pytest.raises(ValidationError):
        await resolver.resolve("deal", "  ")


# ==================== 查询 ====================


@pytest.mark.asyncio
async def test_query_filters_and_recounts(crm_data, resolver):
    contacts = await resolver.query("deal", "D1", target_types=["contact"])
    assert {e.target_id for e in contacts.edges} == {"K1", "K2"}
    assert contacts.summary.total_edges == 2
    assert contacts.summary.by_kind == {"involvement": 2}

    owners = await resolver.query("deal", "D1", kinds=["ownership"], strengths=["strong"])
    assert [e.target_id for e in owners.edges] == ["S1"]

    limited = await resolver.query("deal", "D1", limit=1)
    assert len(limited.edges) == 1

    unfiltered = await resolver.query("deal", "D1")
    assert unfiltered.summary.total_edges == 4
    assert crm_data.count("query", ASSOCIATIONS) == 2


@pytest.mark.asyncio
async def test_query_rejects_unknown_filters(resolver):
    with pytest.raises(ValidationError):
        await resolver.query("deal", "D1", kinds=["friendship"])

    with pytest.raises(ValidationError):
        await resolver.query("deal", "D1", limit=-1)


# ==================== 变更 ====================


@pytest.mark.asyncio
async def test_add_creates_explicit_edge_and_invalidates_both_ends(crm_data, resolver):
    before = await resolver.resolve("company", "C2")
    assert before.edges == ()

    result = await resolver.apply_association_change(
        "deal", "D1", "company", "C2", "add", kind="secondary", strength="weak"
    )

    added = _edge_map(result)[("company", "C2")]
    assert added.origin == EdgeOrigin.EXPLICIT
    assert added.kind.value == "secondary"

    other_side = await resolver.resolve("company", "C2")
    assert [e.source_id for e in other_side.edges] == ["D1"]


@pytest.mark.asyncio
async def test_add_existing_edge_updates_it(crm_data, resolver):
    await resolver.apply_association_change("deal", "D1", "company", "C2", "add", strength="weak")
    result = await resolver.apply_association_change("deal", "D1", "company", "C2", "add", strength="strong")

    stored = [
        doc for doc in crm_data.collections[ASSOCIATIONS].values()
        if doc["targetEntityId"] == "C2"
    ]
    assert len(stored) == 1
    assert stored[0]["strength"] == "strong"
    assert _edge_map(result)[("company", "C2")].strength == Strength.STRONG


@pytest.mark.asyncio
async def test_remove_deletes_explicit_edges_only(crm_data, resolver):
    await resolver.resolve("deal", "D1")

    result = await resolver.apply_association_change("deal", "D1", "contact", "K1", "remove")

    assert "E1" not in crm_data.collections[ASSOCIATIONS]
    # companyId/contactIds 推导的隐式关联不受影响
    assert _edge_map(result)[("contact", "K1")].origin == EdgeOrigin.IMPLICIT
    assert result.summary.total_edges == 4


@pytest.mark.asyncio
async def test_remove_clears_target_cache(crm_data, resolver):
    before = await resolver.resolve("contact", "K1")
    assert any(e.source_id == "D1" and e.origin == EdgeOrigin.EXPLICIT for e in before.edges)

    await resolver.apply_association_change("deal", "D1", "contact", "K1", "remove")

    after = await resolver.resolve("contact", "K1")
    assert all(e.origin == EdgeOrigin.IMPLICIT for e in after.edges)


@pytest.mark.asyncio
async def test_change_rejects_invalid_action(resolver):
    with pytest.raises(ValidationError):
        await resolver.apply_association_change("deal", "D1", "company", "C1", "merge")


@pytest.mark.asyncio
async def test_bulk_add_skips_existing(crm_data, resolver):
    await resolver.resolve("deal", "D1")

    created = await resolver.bulk_add([
        {"source_type": "deal", "source_id": "D1", "target_type": "contact", "target_id": "K1",
         "kind": "involvement"},
        {"source_type": "deal", "source_id": "D1", "target_type": "company", "target_id": "C9",
         "kind": "secondary", "strength": "weak"},
    ])

    assert len(created) == 1
    result = await resolver.resolve("deal", "D1")
    assert ("company", "C9") in _edge_map(result)


@pytest.mark.asyncio
async def test_invalidate(crm_data, resolver):
    await resolver.resolve("deal", "D1")

    assert resolver.invalidate("deal", "D1") is True
    assert resolver.invalidate("deal", "D1") is False


# ==================== 并发合并 ====================


@pytest.mark.asyncio
async def test_concurrent_misses_are_coalesced(crm_data, make_resolver):
    resolver = make_resolver(coalesce_requests=True)
    crm_data.slow("query", ASSOCIATIONS, 0.05)

    results = await asyncio.gather(*(resolver.resolve("deal", "D1") for _ in range(3)))

    assert results[0] is results[1] is results[2]
    assert crm_data.count("query", ASSOCIATIONS) == 2


@pytest.mark.asyncio
async def test_concurrent_misses_without_coalescing(crm_data, make_resolver):
    resolver = make_resolver()

    await asyncio.gather(*(resolver.resolve("deal", "D1") for _ in range(3)))

    assert crm_data.count("query", ASSOCIATIONS) == 6


@pytest.mark.asyncio
async def test_coalesced_failure_reaches_every_caller(crm_data, make_resolver):
    resolver = make_resolver(coalesce_requests=True)
    crm_data.slow("query", ASSOCIATIONS, 0.05)
    crm_data.fail("query", ASSOCIATIONS)

    results = await asyncio.gather(
        *(resolver.resolve("deal", "D1") for _ in range(2)), return_exceptions=True
    )

    assert all(isinstance(r, StoreUnavailableError) for r in results)


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_cancel_shared_resolution(crm_data, make_resolver):
    resolver = make_resolver(coalesce_requests=True)
    crm_data.slow("query", ASSOCIATIONS, 0.05)

    first = asyncio.ensure_future(resolver.resolve("deal", "D1"))
    await asyncio.sleep(0)
    second = asyncio.ensure_future(resolver.resolve("deal", "D1"))
    await asyncio.sleep(0)
    first.cancel()

    result = await second

    assert first.cancelled()
    assert result.entity_id == "D1"
    assert len(result.edges) == 4
    assert crm_data.count("query", ASSOCIATIONS) == 2
    assert await resolver.resolve("deal", "D1") is result


# ==================== 租户工厂 ====================


@pytest.mark.asyncio
async def test_factory_scopes_resolvers_by_tenant(crm_data, resolver_settings):
    factory = AssociationResolverFactory(crm_data, settings=resolver_settings)

    t1 = factory.get("t1")
    assert factory.get("t1") is t1
    assert factory.get("t2") is not t1

    result = await factory.get("t2").resolve("deal", "D1")
    assert result.edges == ()

    scoped = factory.get("t1", user_id="u1")
    assert scoped.cache is t1.cache
    await scoped.apply_association_change("deal", "D1", "company", "C5", "add")
    created = [d for d in crm_data.collections[ASSOCIATIONS].values() if d["targetEntityId"] == "C5"]
    assert created[0]["createdBy"] == "u1"

    factory.clear()
    assert factory.tenants == []


def test_factory_evicts_least_recently_used_tenant(crm_data, resolver_settings):
    factory = AssociationResolverFactory(
        crm_data, settings=resolver_settings.model_copy(update={"max_tenants": 2})
    )

    t1 = factory.get("t1")
    factory.get("t2")
    factory.get("t1")
    factory.get("t3")

    assert factory.tenants == ["t1", "t3"]
    assert factory.get("t1") is t1
