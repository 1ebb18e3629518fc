"""
Integration tests for non-client ticket transitions and the expiry sweep.
"""

import json
import os
from datetime import timedelta

import pytest

from fieldsync.store.repositories import ShopTicketRepository
from fieldsync.sync.applier import MutationApplier
from fieldsync.sync.delta import SyncCoordinator
from fieldsync.sync.mutations import ClientMutation
from fieldsync.sync.queue import QueueCoordinator
from fieldsync.sync.tickets import TicketLifecycle, TicketTransitionError
from fieldsync.tools import seed, ticket_expiry


def create_ticket(ticket_id, **data):
    return ClientMutation(
        mutation_id=f"create-{ticket_id}",
        user_id="u1",
        entity="shop_ticket",
        op="insert",
        data=dict(
            {
                "id": ticket_id,
                "crop": "rice",
                "diagnosis_key": "blast",
                "recommended_classes": ["fungicide"],
            },
            **data,
        ),
    )


class TestTicketLifecycle:
    """Scan, complete and expire."""

    @pytest.fixture
    def queue(self, db, clock):
        return QueueCoordinator(db, MutationApplier(clock=clock), clock=clock)

    @pytest.fixture
    def lifecycle(self, db, clock):
        return TicketLifecycle(db, clock=clock)

    def stored(self, db, ticket_id="t1"):
        with db.read_transaction() as conn:
            return ShopTicketRepository().get(conn, ticket_id)

    @pytest.mark.asyncio
    async def test_scan_then_complete(self, queue, lifecycle, db):
        await queue.process_queue([create_ticket("t1")])
        issued = self.stored(db)

        scanned = await lifecycle.scan_ticket("t1", shop_id=7)
        assert scanned.status == "scanned"
        assert scanned.shop_id == 7
        assert scanned.scanned_at == scanned.updated_at
        assert scanned.updated_at > issued.updated_at

        completed = await lifecycle.complete_ticket("t1", shop_id=7)
        assert completed.status == "completed"
        assert completed.completed_at is not None

    @pytest.mark.asyncio
    async def test_scan_missing(self, lifecycle):
        with pytest.raises(TicketTransitionError, match="not found"):
            await lifecycle.scan_ticket("nope", shop_id=7)

    @pytest.mark.asyncio
    async def test_scan_twice(self, queue, lifecycle):
        await queue.process_queue([create_ticket("t1")])
        await lifecycle.scan_ticket("t1", shop_id=7)

        with pytest.raises(TicketTransitionError, match="already used"):
            await lifecycle.scan_ticket("t1", shop_id=8)

    @pytest.mark.asyncio
    async def test_scan_past_expiry(self, queue, lifecycle, clock):
        await queue.process_queue([create_ticket("t1")])
        clock.advance(timedelta(days=8))

        with pytest.raises(TicketTransitionError, match="expired"):
            await lifecycle.scan_ticket("t1", shop_id=7)

    @pytest.mark.asyncio
    async def test_complete_by_other_shop(self, queue, lifecycle, db):
        await queue.process_queue([create_ticket("t1")])
        await lifecycle.scan_ticket("t1", shop_id=7)

        with pytest.raises(TicketTransitionError):
            await lifecycle.complete_ticket("t1", shop_id=8)
        assert self.stored(db).status == "scanned"

    @pytest.mark.asyncio
    async def test_complete_unscanned(self, queue, lifecycle):
        await queue.process_queue([create_ticket("t1")])
        with pytest.raises(TicketTransitionError):
            await lifecycle.complete_ticket("t1", shop_id=7)

    @pytest.mark.asyncio
    async def test_unknown_stored_status_blocks_transitions(self, queue, lifecycle, db):
        await queue.process_queue([create_ticket("t1")])
        with db.write_transaction() as conn:
            conn.execute("UPDATE shop_tickets SET status = 'lost', shop_id = 7 WHERE id = 't1'")

        with pytest.raises(TicketTransitionError, match="already used"):
            await lifecycle.scan_ticket("t1", shop_id=7)
        with pytest.raises(TicketTransitionError, match="not scanned"):
            await lifecycle.complete_ticket("t1", shop_id=7)
        assert self.stored(db).status == "lost"

    @pytest.mark.asyncio
    async def test_expire_overdue(self, queue, lifecycle, db, clock):
        await queue.process_queue(
            [
                create_ticket("issued"),
                create_ticket("scanned"),
                create_ticket("completed"),
                create_ticket("fresh", expires_at="2030-01-01T00:00:00Z"),
            ]
        )
        await lifecycle.scan_ticket("scanned", shop_id=7)
        await lifecycle.scan_ticket("completed", shop_id=7)
        await lifecycle.complete_ticket("completed", shop_id=7)
        clock.advance(timedelta(days=8))

        assert await lifecycle.expire_overdue_tickets() == 2
        assert await lifecycle.expire_overdue_tickets() == 0

        states = {t: self.stored(db, t).status for t in ("issued", "scanned", "completed", "fresh")}
        assert states == {
            "issued": "expired",
            "scanned": "expired",
            "completed": "completed",
            "fresh": "issued",
        }

    @pytest.mark.asyncio
    async def test_expiry_reaches_clients(self, queue, lifecycle, db, clock):
        sync = SyncCoordinator(db, clock=clock)
        await queue.process_queue([create_ticket("t1")])
        before = await sync.sync("u1")
        clock.advance(timedelta(days=8))

        await lifecycle.expire_overdue_tickets()
        after = await sync.sync("u1", since=before.next_since)

        assert [(t["id"], t["status"]) for t in after.user["shop_tickets"]] == [("t1", "expired")]


class TestOperatorTools:
    """Command line entry points."""

    @pytest.mark.asyncio
    async def test_run_expiry(self, db):
        assert await ticket_expiry.run_expiry(db) == 0

    def test_expiry_cli(self, data_dir, capsys):
        ticket_expiry.main(["--db-path", os.path.join(data_dir, "cli.db")])
        assert "Expired tickets: 0" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_seed_reaches_clients(self, db, clock):
        sync = SyncCoordinator(db, clock=clock)
        before = await sync.sync("u1")

        data = seed.SeedFile.model_validate(
            {
                "shops": [{"id": 1, "name_th": "A", "province_code": "10"}],
                "product_classes": [
                    {"key": "fungicide", "name_th": "F"},
                    {"key": "herbicide", "name_th": "H"},
                ],
            }
        )
        result = seed.ReferenceSeeder(db, clock=clock).load(data)
        assert (result.shops, result.product_classes) == (1, 2)

        bundle = await sync.sync("u1", since=before.next_since)
        stamps = [bundle.refs["shops"][0]["updated_at"]] + [
            c["updated_at"] for c in bundle.refs["product_classes"]
        ]
        assert stamps == sorted(set(stamps))
        assert [c["key"] for c in bundle.refs["product_classes"]] == ["fungicide", "herbicide"]

    def test_seed_cli(self, data_dir, capsys):
        path = os.path.join(data_dir, "reference.json")
        with open(path, "w", encoding="utf-8") as f:
            json.dump({"shops": [{"id": 1, "name_th": "A"}]}, f)

        seed.main([path, "--db-path", os.path.join(data_dir, "cli.db")])

        assert "Seeded 1 shops and 0 product classes" in capsys.readouterr().out

    def test_seed_invalid_file(self, data_dir):
        path = os.path.join(data_dir, "reference.json")
        with open(path, "w", encoding="utf-8") as f:
            json.dump({"shops": [{"name_th": "no id"}]}, f)

        with pytest.raises(ValueError, match="Invalid seed file"):
            seed.load_seed_file(path)
