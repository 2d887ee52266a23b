"""Integration tests for the read API.

Tests cover:
- GET /api/projects, /api/projects/{id}, /api/projects/{id}/nfts
- GET /api/nfts/{token_id}, /api/owners/{address}/nfts
- GET /api/listings, /api/offers with filters
- GET /api/statistics and per-project statistics
- GET /api/status, /api/alerts, /api/randao/rounds/{round_id}
- GET /health, including the halted state

State is produced by running the pipeline over an in-memory chain.
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from eventtracker.app import app
from eventtracker.services.ingestion.checkpoint import CheckpointStore
from fakes import (
    ALICE,
    ARTIST,
    BOB,
    CAROL,
    PRICE,
    nft_minted,
    nft_revealed,
    offer_made,
    project_created,
    randao_committed,
    randao_revealed,
    sale_filled,
    sale_listed,
    secret,
    transfer,
)


@pytest_asyncio.fixture
async def test_client(session_factory, uow_factory):
    """Provide AsyncClient for testing API endpoints with database access."""
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest_asyncio.fixture
async def indexed(chain, pipeline, settings):
    """Two projects, a finalized round, a sale, an open listing and an open offer."""
    chain.mine(
        project_created(0, editions=10, price=PRICE),
        project_created(1, editions=5, price=2 * PRICE, name="Fidenza"),
        randao_committed(1, ALICE, secret(1)),
        randao_committed(1, BOB, secret(2)),
        randao_committed(1, CAROL, secret(4)),
    )
    chain.mine(nft_minted(0, to=ALICE))
    chain.mine(
        randao_revealed(1, ALICE, secret(1)),
        randao_revealed(1, BOB, secret(2)),
        randao_revealed(1, CAROL, secret(4)),
    )
    chain.mine(nft_minted(1, to=BOB), nft_minted(2, project_id=1, to=ALICE, price_paid=2 * PRICE))
    chain.mine(nft_revealed(0, "ipfs://bafy/0.json"), sale_listed(0, 0, ALICE, PRICE))
    chain.mine(sale_filled(0, BOB, PRICE), transfer(0, ALICE, BOB))
    chain.mine(sale_listed(1, 2, ALICE, 3 * PRICE), offer_made(0, 1, CAROL, PRICE // 2))
    # From a non-owner: raises an integrity alert
    chain.mine(transfer(2, BOB, CAROL))
    chain.mine_empty(settings.confirmation_depth)
    return await pipeline.sync_once()


@pytest.mark.asyncio
async def test_list_projects(test_client, indexed):
    response = await test_client.get("/api/projects")

    assert response.status_code == 200
    data = response.json()
    assert [p["project_id"] for p in data] == [0, 1]
    first = data[0]
    assert first["artist"] == ARTIST
    assert first["editions"] == 8
    assert first["max_editions"] == 10
    # Wei amounts are strings
    assert first["price"] == str(PRICE)
    assert first["splits"] == [{"beneficiary": ARTIST, "percentage": 100}]

    paged = await test_client.get("/api/projects", params={"limit": 1, "offset": 1})
    assert [p["name"] for p in paged.json()] == ["Fidenza"]


@pytest.mark.asyncio
async def test_get_project_not_found(test_client, indexed):
    response = await test_client.get("/api/projects/99")

    assert response.status_code == 404
    assert "not found" in response.json()["detail"]


@pytest.mark.asyncio
async def test_project_nfts(test_client, indexed):
    response = await test_client.get("/api/projects/0/nfts")

    assert response.status_code == 200
    assert [n["token_id"] for n in response.json()] == [0, 1]
    assert (await test_client.get("/api/projects/99/nfts")).status_code == 404


@pytest.mark.asyncio
async def test_get_nft(test_client, indexed):
    placeholder = (await test_client.get("/api/nfts/0")).json()
    final = (await test_client.get("/api/nfts/1")).json()

    assert placeholder["owner"] == BOB
    assert placeholder["revealed"] is True
    assert placeholder["token_uri"] == "ipfs://bafy/0.json"
    assert placeholder["seed_final"] is False
    assert placeholder["seed_round"] is None
    assert final["seed_final"] is True
    assert final["seed_round"] == 1
    assert (await test_client.get("/api/nfts/42")).status_code == 404


@pytest.mark.asyncio
async def test_owner_nfts(test_client, indexed):
    response = await test_client.get(f"/api/owners/{BOB.lower()}/nfts")

    assert response.status_code == 200
    assert [n["token_id"] for n in response.json()] == [0, 1]


@pytest.mark.asyncio
async def test_owner_nfts_rejects_malformed_address(test_client, indexed):
    response = await test_client.get("/api/owners/alice/nfts")

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_listings_filter(test_client, indexed):
    everything = (await test_client.get("/api/listings")).json()
    open_only = (await test_client.get("/api/listings", params={"status": "open"})).json()
    by_project = (await test_client.get("/api/listings", params={"project_id": 0})).json()

    assert sorted(listing["listing_id"] for listing in everything) == [0, 1]
    assert [listing["listing_id"] for listing in open_only] == [1]
    assert [listing["listing_id"] for listing in by_project] == [0]
    assert by_project[0]["status"] == "filled"
    assert by_project[0]["buyer"] == BOB

    assert (await test_client.get("/api/listings", params={"status": "bogus"})).status_code == 422
    assert (await test_client.get("/api/listings/9")).status_code == 404


@pytest.mark.asyncio
async def test_get_offer(test_client, indexed):
    response = await test_client.get("/api/offers/0")

    assert response.status_code == 200
    offer = response.json()
    assert offer["bidder"] == CAROL
    assert offer["price"] == str(PRICE // 2)
    assert offer["status"] == "open"
    assert (await test_client.get("/api/offers", params={"status": "accepted"})).json() == []


@pytest.mark.asyncio
async def test_platform_statistics(test_client, indexed):
    response = await test_client.get("/api/statistics")

    assert response.status_code == 200
    stats = response.json()
    assert stats["scope"] == "all"
    assert stats["sale_count"] == 1
    assert stats["volume_total"] == str(PRICE)
    assert stats["median_price"] == str(PRICE)
    assert stats["floor_price"] == str(PRICE)
    assert stats["best_offer"] == str(PRICE // 2)
    assert stats["open_listing_count"] == 1


@pytest.mark.asyncio
async def test_project_statistics(test_client, indexed):
    response = await test_client.get("/api/projects/1/statistics")

    assert response.status_code == 200
    stats = response.json()
    assert stats["scope"] == "project:1"
    assert stats["sale_count"] == 0
    assert stats["floor_price"] == str(3 * PRICE)
    assert stats["median_price"] is None
    assert (await test_client.get("/api/projects/7/statistics")).status_code == 404


@pytest.mark.asyncio
async def test_statistics_before_any_activity(test_client):
    response = await test_client.get("/api/statistics")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_status(test_client, indexed):
    response = await test_client.get("/api/status")

    assert response.status_code == 200
    body = response.json()
    assert body["checkpoint_block"] == indexed.checkpoint.block_number
    assert body["checkpoint_hash"] == indexed.checkpoint.block_hash
    assert body["halted"] is False
    assert body["event_count"] == 18


@pytest.mark.asyncio
async def test_alerts(test_client, indexed):
    response = await test_client.get("/api/alerts", params={"category": "integrity"})

    assert response.status_code == 200
    alerts = response.json()
    assert len(alerts) == 1
    assert alerts[0]["kind"] == "Transfer"
    assert "owner is" in alerts[0]["reason"]
    assert (await test_client.get("/api/alerts", params={"category": "halt"})).json() == []
    assert (await test_client.get("/api/alerts", params={"category": "x"})).status_code == 422


@pytest.mark.asyncio
async def test_randao_round(test_client, indexed):
    response = await test_client.get("/api/randao/rounds/1")

    assert response.status_code == 200
    round_ = response.json()
    assert round_["commit_count"] == 3
    assert round_["reveal_count"] == 3
    assert round_["finalized"] is True
    assert round_["final_value"] == "0x" + secret(1 ^ 2 ^ 4).hex()
    assert (await test_client.get("/api/randao/rounds/2")).status_code == 404


@pytest.mark.asyncio
async def test_health_check(test_client, indexed):
    response = await test_client.get("/health")

    assert response.status_code == 200
    assert response.json() == {
        "status": "healthy",
        "checkpoint": indexed.checkpoint.block_number,
    }


@pytest.mark.asyncio
async def test_health_check_reports_halt(test_client, uow_factory):
    async with await uow_factory() as uow:
        await CheckpointStore(uow).set_halt("boom", "SchemaMismatchError", 3)

    response = await test_client.get("/health")

    assert response.status_code == 503
    body = response.json()
    assert body["status"] == "halted"
    assert body["halt"]["error_type"] == "SchemaMismatchError"
