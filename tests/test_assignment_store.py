from __future__ import annotations

import asyncio

import pytest

from elementhooks.cache import keys
from elementhooks.core.exceptions import DuplicateAssignmentError, NotFoundError, ValidationError
from elementhooks.core.metadata import DetectedElement, ElementMetadata, ElementType, Rect, WebhookStatus
from elementhooks.remote.models import CreateAssignmentInput, Pagination, SearchFilters
from elementhooks.store.assignments import ASSIGNMENTS_TABLE, METRICS_TABLE, TEST_EXECUTION_RPC
from tests.helpers import assignment_row


def _element(element_id: str, page_path: str = "/dashboard") -> DetectedElement:
    return DetectedElement(
        id=element_id,
        element_type=ElementType.BUTTON,
        dom_path="button",
        content_hash="0",
        bounding_rect=Rect(width=100, height=30),
        metadata=ElementMetadata(tag_name="button", page_path=page_path),
    )


@pytest.mark.asyncio
async def test_get_uses_cache_and_handles_missing_and_empty_ids(store, fake_client):
    seeded = fake_client.seed(ASSIGNMENTS_TABLE, **assignment_row())

    first = await store.get(seeded["id"])
    second = await store.get(seeded["id"])

    assert first.id == second.id == seeded["id"]
    assert fake_client.count("select") == 1
    assert await store.get("wh-404") is None
    assert await store.get("") is None
    assert fake_client.count("select") == 2


@pytest.mark.asyncio
async def test_update_replaces_cached_detail_with_server_record(store, fake_client):
    seeded = fake_client.seed(ASSIGNMENTS_TABLE, **assignment_row(health_status="healthy"))
    await store.get(seeded["id"])

    def recompute_health(row):
        row["health_status"] = "critical" if not row["is_active"] else "healthy"

    fake_client.on_update = recompute_health
    returned = await store.update(seeded["id"], {"is_active": False})
    selects_before = fake_client.count("select")
    cached = await store.get(seeded["id"])

    assert fake_client.count("select") == selects_before
    assert cached == returned
    assert cached.is_active is False
    assert cached.health_status == "critical"
    assert cached.updated_by == "user-1"


@pytest.mark.asyncio
async def test_create_and_delete_invalidate_cached_searches(store, fake_client):
    fake_client.seed(ASSIGNMENTS_TABLE, **assignment_row(element_id="id_a"))
    filters = SearchFilters(feature_slug="dashboard")
    before = await store.search(filters)
    list_key = keys.webhook_list(filters, Pagination())

    created = await store.create(
        CreateAssignmentInput(
            feature_slug="dashboard",
            page_path="/dashboard",
            element_id="id_b",
            endpoint_url="https://hooks.example.com/b",
        )
    )

    assert store.cache.entry(list_key).invalidated
    assert store.cache.peek(list_key) == before
    after_create = await store.search(filters)
    assert after_create.total_count == 2

    await store.delete(created.id)

    assert store.cache.entry(list_key).invalidated
    assert store.cache.entry(keys.webhook_detail(created.id)) is None
    assert (await store.search(filters)).total_count == 1


@pytest.mark.asyncio
async def test_create_applies_defaults_and_rejects_duplicates(store, fake_client):
    created = await store.create(
        {
            "feature_slug": "admin",
            "page_path": "/admin",
            "element_id": "id_save",
            "endpoint_url": "https://hooks.example.com/save",
            "timeout_seconds": 900,
            "retry_count": 25,
        }
    )

    assert created.display_name == "admin - id_save"
    assert created.timeout_seconds == 300
    assert created.retry_count == 10
    assert created.rate_limit_per_minute == 60
    assert created.health_status == "unknown"
    assert created.created_by == "user-1"
    assert store.cache.peek(keys.webhook_detail(created.id)) == created

    with pytest.raises(DuplicateAssignmentError) as excinfo:
        await store.create(
            {
                "feature_slug": "admin",
                "page_path": "/admin",
                "element_id": "id_save",
                "endpoint_url": "https://hooks.example.com/other",
            }
        )
    assert excinfo.value.code == "WEBHOOK_ALREADY_EXISTS"
    assert isinstance(excinfo.value, ValidationError)


@pytest.mark.asyncio
async def test_update_and_delete_of_unknown_ids_raise_not_found(store):
    with pytest.raises(NotFoundError):
        await store.update("wh-missing", {"is_active": True})
    with pytest.raises(NotFoundError):
        await store.delete("wh-missing")


@pytest.mark.asyncio
async def test_search_paginates_sorts_and_filters(store, fake_client):
    for index in range(5):
        fake_client.seed(
            ASSIGNMENTS_TABLE,
            **assignment_row(element_id=f"id_{index}", display_name=f"Hook {index}", is_active=index != 2),
        )
    fake_client.seed(ASSIGNMENTS_TABLE, **assignment_row(element_id="id_other", organization_id="org-2"))

    first = await store.search(pagination=Pagination(page=1, limit=2))
    last = await store.search(pagination=Pagination(page=3, limit=2))
    inactive = await store.search(SearchFilters(is_active=False))
    searched = await store.search(SearchFilters(search="hook 4"))

    assert [item.element_id for item in first.items] == ["id_4", "id_3"]
    assert (first.total_count, first.total_pages, first.has_next_page, first.has_previous_page) == (5, 3, True, False)
    assert [item.element_id for item in last.items] == ["id_0"]
    assert not last.has_next_page
    assert [item.element_id for item in inactive.items] == ["id_2"]
    assert [item.element_id for item in searched.items] == ["id_4"]


@pytest.mark.asyncio
async def test_paged_search_keeps_previous_page_visible_while_loading(store, fake_client):
    for index in range(3):
        fake_client.seed(ASSIGNMENTS_TABLE, **assignment_row(element_id=f"id_{index}"))
    pager = store.paged_search(page_size=2)
    await pager.load(1)
    first_page = pager.data

    fake_client.select_gate = asyncio.Event()
    loading = asyncio.ensure_future(pager.next_page())
    await asyncio.sleep(0.01)

    assert pager.is_loading
    assert pager.is_placeholder
    assert pager.data is first_page

    fake_client.select_gate.set()
    second_page = await loading

    assert pager.data is second_page
    assert pager.page == 2
    assert not pager.is_placeholder
    assert [item.element_id for item in pager.items] == ["id_0"]


@pytest.mark.asyncio
async def test_next_page_before_any_load_starts_at_the_first_page(store, fake_client):
    for index in range(3):
        fake_client.seed(ASSIGNMENTS_TABLE, **assignment_row(element_id=f"id_{index}"))
    pager = store.paged_search(page_size=2)

    first = await pager.next_page()

    assert pager.page == 1
    assert first.current_page == 1
    assert [item.element_id for item in pager.items] == ["id_2", "id_1"]


@pytest.mark.asyncio
async def test_lookups_by_element_page_and_feature(store, fake_client):
    fake_client.seed(ASSIGNMENTS_TABLE, **assignment_row(element_id="id_a", page_path="/admin", feature_slug="admin"))
    fake_client.seed(ASSIGNMENTS_TABLE, **assignment_row(element_id="id_b", page_path="/admin", feature_slug="admin"))
    fake_client.seed(ASSIGNMENTS_TABLE, **assignment_row(element_id="id_c", page_path="/kb", feature_slug="knowledge-base"))

    assert [item.element_id for item in await store.for_element("id_a", "/admin")] == ["id_a"]
    assert {item.element_id for item in await store.for_page("/admin")} == {"id_a", "id_b"}
    assert [item.element_id for item in await store.for_feature("knowledge-base")] == ["id_c"]


@pytest.mark.asyncio
async def test_status_for_maps_active_binding_health(store, fake_client):
    fake_client.seed(ASSIGNMENTS_TABLE, **assignment_row(element_id="id_warn", health_status="warning"))
    fake_client.seed(ASSIGNMENTS_TABLE, **assignment_row(element_id="id_off", is_active=False))

    assert await store.status_for(_element("id_warn")) is WebhookStatus.WARNING
    assert await store.status_for(_element("id_off")) is WebhookStatus.UNKNOWN
    assert await store.status_for(_element("id_free")) is WebhookStatus.NONE


@pytest.mark.asyncio
async def test_status_for_is_scoped_to_the_page(store, fake_client):
    fake_client.seed(ASSIGNMENTS_TABLE, **assignment_row(element_id="id_save", page_path="/a", health_status="critical"))

    assert await store.status_for(_element("id_save", "/a")) is WebhookStatus.CRITICAL
    assert await store.status_for(_element("id_save", "/b")) is WebhookStatus.NONE
    assert fake_client.count("select") == 2


@pytest.mark.asyncio
async def test_test_execution_and_reset_statistics_call_remote(store, fake_client):
    seeded = fake_client.seed(ASSIGNMENTS_TABLE, **assignment_row())
    fake_client.seed(METRICS_TABLE, webhook_id=seeded["id"], response_ms=120)
    fake_client.seed(METRICS_TABLE, webhook_id=seeded["id"], response_ms=340)

    await store.test_execution(seeded["id"])
    removed = await store.reset_statistics(seeded["id"])

    assert fake_client.rpc_calls == [
        (TEST_EXECUTION_RPC, {"p_webhook_id": seeded["id"], "p_element_id": "id_submit-btn"})
    ]
    assert removed == 2
    assert fake_client.tables[METRICS_TABLE] == []


@pytest.mark.asyncio
async def test_bulk_create_reports_per_input_outcomes(store, fake_client):
    fake_client.seed(ASSIGNMENTS_TABLE, **assignment_row(element_id="id_taken"))
    inputs = [
        {"feature_slug": "dashboard", "page_path": "/dashboard", "element_id": "id_new", "endpoint_url": "https://h/1"},
        {"feature_slug": "dashboard", "page_path": "/dashboard", "element_id": "id_taken", "endpoint_url": "https://h/2"},
    ]

    outcome = await store.bulk_create(inputs)

    assert [item.element_id for item in outcome.created] == ["id_new"]
    assert [(failure.index, failure.code) for failure in outcome.failed] == [(1, "WEBHOOK_ALREADY_EXISTS")]

    with pytest.raises(ValidationError):
        await store.bulk_create([inputs[0]] * 101)
