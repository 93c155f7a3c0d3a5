"""Tests for entity hydration."""

import pytest

from conftest import TENANT, tpath

from domains.association_hub.core import (
    AssociationKind,
    EntityStore,
    EntityType,
    ImplicitEdge,
    LoadStatus,
    Strength,
)
from domains.association_hub.services import EntityHydrator


def _edge(target_type, target_id, source_type=EntityType.DEAL, source_id="D1"):
    return ImplicitEdge(
        id=ImplicitEdge.make_id(source_type, source_id, target_type, target_id),
        source_type=source_type,
        source_id=source_id,
        target_type=target_type,
        target_id=target_id,
        kind=AssociationKind.INVOLVEMENT,
        strength=Strength.STRONG,
    )


@pytest.fixture
def hydrator(documents):
    return EntityHydrator(EntityStore(documents, TENANT), batch_size=10, timeout=2.0)


@pytest.mark.asyncio
async def test_batches_multi_key_lookups(documents, hydrator):
    ids = [f"K{i:02d}" for i in range(25)]
    for contact_id in ids:
        documents.seed(tpath("crm_contacts"), contact_id, {"name": contact_id})

    entities = await hydrator.hydrate(
        [_edge(EntityType.CONTACT, i) for i in ids], EntityType.DEAL, "D1"
    )

    batches = documents.calls("get_many", tpath("crm_contacts"))
    assert [len(b) for b in batches] == [10, 10, 5]
    assert sorted(c["id"] for c in entities.contacts) == ids
    assert entities.status()["contacts"] == LoadStatus.OK


@pytest.mark.asyncio
async def test_hydrates_the_other_endpoint(documents, hydrator):
    documents.seed(tpath("crm_deals"), "D1", {"name": "Deal"})
    documents.seed(tpath("crm_deals"), "D2", {"name": "Other deal"})

    # K1 作为 target 被解析时，另一端是 source
    entities = await hydrator.hydrate(
        [_edge(EntityType.CONTACT, "K1", source_id="D1"), _edge(EntityType.CONTACT, "K1", source_id="D2")],
        EntityType.CONTACT,
        "K1",
    )

    assert sorted(d["id"] for d in entities.deals) == ["D1", "D2"]
    assert entities.contacts == []


@pytest.mark.asyncio
async def test_ids_are_deduplicated(documents, hydrator):
    documents.seed(tpath("crm_companies"), "C1", {"name": "Acme"})

    edges = [_edge(EntityType.COMPANY, "C1"), _edge(EntityType.COMPANY, "C1")]
    edges.append(
        ImplicitEdge(
            id="x",
            source_type=EntityType.DEAL,
            source_id="D1",
            target_type=EntityType.COMPANY,
            target_id="C1",
            kind=AssociationKind.PRIMARY,
            strength=Strength.STRONG,
        )
    )
    entities = await hydrator.hydrate(edges, EntityType.DEAL, "D1")

    assert documents.calls("get_many", tpath("crm_companies")) == [["C1"]]
    assert len(entities.companies) == 1


@pytest.mark.asyncio
async def test_tasks_are_never_hydrated(documents, hydrator):
    documents.seed(tpath("crm_tasks"), "T1", {"title": "Call"})

    entities = await hydrator.hydrate([_edge(EntityType.TASK, "T1")], EntityType.DEAL, "D1")

    assert entities.tasks == []
    assert entities.status()["tasks"] == LoadStatus.EMPTY
    assert documents.count(path=tpath("crm_tasks")) == 0


@pytest.mark.asyncio
async def test_missing_records_are_empty_not_failed(hydrator):
    entities = await hydrator.hydrate([_edge(EntityType.COMPANY, "C404")], EntityType.DEAL, "D1")

    assert entities.companies == []
    assert entities.status()["companies"] == LoadStatus.EMPTY


@pytest.mark.asyncio
async def test_failed_category_does_not_affect_others(documents, hydrator):
    documents.seed(tpath("crm_companies"), "C1", {"name": "Acme"})
    documents.seed(tpath("crm_contacts"), "K1", {"name": "Kim"})
    documents.fail("get", tpath("users"))

    entities = await hydrator.hydrate(
        [
            _edge(EntityType.COMPANY, "C1"),
            _edge(EntityType.CONTACT, "K1"),
            _edge(EntityType.SALESPERSON, "S1"),
        ],
        EntityType.DEAL,
        "D1",
    )

    assert [c["id"] for c in entities.companies] == ["C1"]
    assert [c["id"] for c in entities.contacts] == ["K1"]
    assert entities.salespeople == []
    load = entities.load("salespeople")
    assert load.status == LoadStatus.FAILED
    assert "injected failure" in load.reason


@pytest.mark.asyncio
async def test_slow_category_times_out_alone(documents):
    hydrator = EntityHydrator(EntityStore(documents, TENANT), timeout=0.05)
    documents.seed(tpath("crm_companies"), "C1", {"name": "Acme"})
    documents.seed(tpath("crm_contacts"), "K1", {"name": "Kim"})
    documents.slow("get_many", tpath("crm_contacts"), 0.3)

    entities = await hydrator.hydrate(
        [_edge(EntityType.COMPANY, "C1"), _edge(EntityType.CONTACT, "K1")],
        EntityType.DEAL,
        "D1",
    )

    assert [c["id"] for c in entities.companies] == ["C1"]
    assert entities.contacts == []
    assert entities.load("contacts").status == LoadStatus.FAILED
    assert entities.load("contacts").reason.startswith("timeout")


@pytest.mark.asyncio
async def test_no_edges_means_every_category_empty(hydrator):
    entities = await hydrator.hydrate([], EntityType.CONTACT, "K3")

    assert set(entities.status().values()) == {LoadStatus.EMPTY}
    assert all(items == [] for items in entities.to_dict().values())


def test_batch_size_is_capped():
    hydrator = EntityHydrator(entities=None, batch_size=50)

    assert hydrator.batch_size == 10
