"""
Tests for sender-wide bulk operations.
Runs delete-all and keep-latest against the fake Gmail mailbox.
"""

import pytest

from conftest import build_raw_message
from gmail_client import GmailAuthError
from triage.bulk import BulkOperationError, BulkSenderOperator, sender_query


@pytest.fixture
def operator(gmail_client):
    return BulkSenderOperator(gmail_client, page_delay=0)


class TestSenderQuery:
    def test_query_is_scoped_to_inbox(self):
        assert sender_query("news@example.com") == "in:inbox from:news@example.com"


# ============================================================================
# Delete All Tests
# ============================================================================


class TestDeleteAll:
    """Tests for trashing every message from a sender."""

    @pytest.mark.asyncio
    async def test_deletes_every_message(self, operator, fake_gmail):
        ids = fake_gmail.add_many(3)

        result = await operator.delete_all("news@example.com")

        assert result.total_processed == 3
        assert result.deleted_count == 3
        assert result.failed_ids == []
        assert sorted(fake_gmail.trashed) == sorted(ids)

    @pytest.mark.asyncio
    async def test_unconfirmed_trash_is_not_counted(self, operator, fake_gmail):
        fake_gmail.add_many(3)
        fake_gmail.trash_status["m1"] = 500

        result = await operator.delete_all("news@example.com")

        assert result.total_processed == 3
        assert result.deleted_count == 2
        assert result.failed_ids == ["m1"]

    @pytest.mark.asyncio
    async def test_other_senders_untouched(self, operator, fake_gmail):
        fake_gmail.add_many(2)
        fake_gmail.add(build_raw_message("friend1", sender="Friend <friend@example.org>"))

        result = await operator.delete_all("news@example.com")

        assert result.deleted_count == 2
        assert "friend1" not in fake_gmail.trashed

    @pytest.mark.asyncio
    async def test_no_messages(self, operator):
        result = await operator.delete_all("nobody@example.com")

        assert result.total_processed == 0
        assert result.deleted_count == 0
        assert result.capped is False

    @pytest.mark.asyncio
    async def test_pages_through_results(self, gmail_client, fake_gmail):
        fake_gmail.add_many(5)
        operator = BulkSenderOperator(gmail_client, page_size=2, page_delay=0)

        result = await operator.delete_all("news@example.com")

        assert result.total_processed == 5
        assert result.deleted_count == 5
        assert len(fake_gmail.calls("GET", r"/messages$")) == 3

    @pytest.mark.asyncio
    async def test_safety_cap_stops_paging(self, gmail_client, fake_gmail):
        fake_gmail.add_many(7)
        operator = BulkSenderOperator(gmail_client, page_size=2, safety_cap=4, page_delay=0)

        result = await operator.delete_all("news@example.com")

        assert result.total_processed == 4
        assert result.capped is True
        assert len(fake_gmail.trashed) == 4

    @pytest.mark.asyncio
    async def test_first_page_failure_raises(self, operator, fake_gmail):
        fake_gmail.add_many(2)
        fake_gmail.list_status[None] = 500

        with pytest.raises(BulkOperationError):
            await operator.delete_all("news@example.com")
        assert fake_gmail.trashed == []

    @pytest.mark.asyncio
    async def test_later_page_failure_returns_partial_result(self, gmail_client, fake_gmail):
        fake_gmail.add_many(4)
        fake_gmail.list_status["2"] = 500
        operator = BulkSenderOperator(gmail_client, page_size=2, page_delay=0)

        result = await operator.delete_all("news@example.com")

        assert result.total_processed == 2
        assert result.deleted_count == 2
        assert len(result.errors) == 1

    @pytest.mark.asyncio
    async def test_auth_failure_propagates(self, operator, fake_gmail):
        fake_gmail.add_many(2)
        fake_gmail.trash_status["m0"] = 401

        with pytest.raises(GmailAuthError):
            await operator.delete_all("news@example.com")

    @pytest.mark.asyncio
    async def test_result_to_dict(self, operator, fake_gmail):
        fake_gmail.add_many(1)
        result = await operator.delete_all("news@example.com")

        assert result.to_dict() == {
            "total_processed": 1,
            "deleted_count": 1,
            "kept_count": 0,
            "failed_ids": [],
            "errors": [],
            "capped": False,
        }


# ============================================================================
# Keep Latest Tests
# ============================================================================


class TestKeepLatest:
    """Tests for keeping the newest N messages."""

    @pytest.mark.asyncio
    async def test_trashes_exactly_the_oldest(self, operator, fake_gmail):
        # add_many gives m0 the newest timestamp and m7 the oldest
        fake_gmail.add_many(8)

        result = await operator.keep_latest_n("news@example.com", 5)

        assert result.total_processed == 8
        assert result.kept_count == 5
        assert result.deleted_count == 3
        assert sorted(fake_gmail.trashed) == ["m5", "m6", "m7"]

    @pytest.mark.asyncio
    async def test_order_comes_from_timestamps_not_listing(self, operator, fake_gmail):
        fake_gmail.add(build_raw_message("old", sender="news@example.com", internal_date=100))
        fake_gmail.add(build_raw_message("new", sender="news@example.com", internal_date=300))
        fake_gmail.add(build_raw_message("mid", sender="news@example.com", internal_date=200))

        result = await operator.keep_latest_n("news@example.com", 1)

        assert result.deleted_count == 2
        assert sorted(fake_gmail.trashed) == ["mid", "old"]

    @pytest.mark.asyncio
    async def test_nothing_to_delete(self, operator, fake_gmail):
        fake_gmail.add_many(5)

        result = await operator.keep_latest_n("news@example.com", 5)

        assert result.kept_count == 5
        assert result.deleted_count == 0
        assert fake_gmail.calls("POST", r"/trash$") == []

    @pytest.mark.asyncio
    async def test_default_keeps_five(self, operator, fake_gmail):
        fake_gmail.add_many(6)

        result = await operator.keep_latest_n("news@example.com")

        assert result.kept_count == 5
        assert fake_gmail.trashed == ["m5"]

    @pytest.mark.asyncio
    async def test_failed_timestamp_sorts_last(self, operator, fake_gmail):
        fake_gmail.add_many(3)
        fake_gmail.get_status["m0"] = 500

        result = await operator.keep_latest_n("news@example.com", 2)

        assert fake_gmail.trashed == ["m0"]
        assert result.deleted_count == 1

    @pytest.mark.asyncio
    async def test_failed_trash_reported(self, operator, fake_gmail):
        fake_gmail.add_many(4)
        fake_gmail.trash_status["m3"] = 404

        result = await operator.keep_latest_n("news@example.com", 2)

        assert result.deleted_count == 1
        assert result.failed_ids == ["m3"]

    @pytest.mark.asyncio
    async def test_first_page_failure_raises(self, operator, fake_gmail):
        fake_gmail.add_many(3)
        fake_gmail.list_status[None] = 500

        with pytest.raises(BulkOperationError):
            await operator.keep_latest_n("news@example.com", 1)


# ============================================================================
# Pacing Tests
# ============================================================================


class TestPacing:
    """Tests for the pauses between pages and between individual deletions."""

    @pytest.fixture
    def sleeps(self, monkeypatch, fake_gmail):
        recorded = []

        async def record_sleep(delay):
            recorded.append((delay, len(fake_gmail.trashed)))

        monkeypatch.setattr("triage.bulk.asyncio.sleep", record_sleep)
        return recorded

    @pytest.mark.asyncio
    async def test_keep_latest_pauses_every_twenty_deletions(self, gmail_client, fake_gmail, sleeps):
        fake_gmail.add_many(46)

        result = await BulkSenderOperator(gmail_client).keep_latest_n("news@example.com", 5)

        assert result.deleted_count == 41
        assert sleeps == [(0.2, 20), (0.2, 40)]

    @pytest.mark.asyncio
    async def test_keep_latest_short_run_never_pauses(self, gmail_client, fake_gmail, sleeps):
        fake_gmail.add_many(25)

        result = await BulkSenderOperator(gmail_client).keep_latest_n("news@example.com", 5)

        assert result.deleted_count == 20
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_delete_all_pauses_between_pages(self, gmail_client, fake_gmail, sleeps):
        fake_gmail.add_many(5)

        result = await BulkSenderOperator(gmail_client, page_size=2).delete_all("news@example.com")

        assert result.deleted_count == 5
        assert sleeps == [(0.2, 2), (0.2, 4)]

    @pytest.mark.asyncio
    async def test_zero_delay_disables_pauses(self, gmail_client, fake_gmail, sleeps):
        fake_gmail.add_many(46)

        await BulkSenderOperator(gmail_client, page_size=10, page_delay=0).keep_latest_n("news@example.com", 5)

        assert sleeps == []
