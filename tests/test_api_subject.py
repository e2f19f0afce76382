"""Tests for ApiSubject subscription handling and polling."""

import asyncio
import unittest

from haystack_client.config import MIN_POLL_RATE_SECS
from haystack_client.errors import (
    ClosedError,
    ConnectionError,
    NotFoundError,
    SubscriptionLostError,
)
from haystack_client.models import Grid, WatchPollResult
from haystack_client.watches import ApiSubject, SubjectState
from tests.fakes import FakeWatchApis, settle, wait_until

RECORDS = {
    "a": {"id": "a", "dis": "A", "curVal": 1},
    "b": {"id": "b", "dis": "B", "curVal": 2},
    "c": {"id": "c", "dis": "C", "curVal": 3},
}


class Observer:
    def __init__(self):
        self.updates = []
        self.lost = []

    def on_update(self, changed):
        self.updates.append(changed)

    def on_lost(self, error):
        self.lost.append(error)


class TestApiSubjectIds(unittest.IsolatedAsyncioTestCase):
    """Tests for opening, extending and shrinking the subscription."""

    async def asyncSetUp(self):
        self.apis = FakeWatchApis(RECORDS)
        self.subject = ApiSubject(self.apis, poll_rate=60)

    async def asyncTearDown(self):
        await self.subject.close()

    async def test_first_add_opens_subscription(self):
        """The first add should open a subscription and load its records."""
        self.assertEqual(self.subject.state, SubjectState.UNOPENED)
        await self.subject.add_ids(["a", "b"])
        self.assertEqual(self.apis.calls, [("open", ["a", "b"])])
        self.assertEqual(self.subject.state, SubjectState.OPEN)
        self.assertEqual(self.subject.watch_id, "w1")
        self.assertEqual(self.subject.grid.rows, [RECORDS["a"], RECORDS["b"]])

    async def test_later_add_only_sends_new_ids(self):
        """Ids already referenced should not be sent again."""
        await self.subject.add_ids(["a", "b"])
        await self.subject.add_ids(["b", "c"])
        self.assertEqual(self.apis.calls[1], ("add", "w1", ["c"]))
        self.assertEqual(self.subject.ref_count("b"), 2)

    async def test_add_of_referenced_ids_makes_no_call(self):
        await self.subject.add_ids(["a"])
        await self.subject.add_ids(["a"])
        self.assertEqual(self.apis.ops(), ["open"])

    async def test_remove_keeps_ids_still_referenced(self):
        """Only ids whose last reference goes should be removed."""
        await self.subject.add_ids(["a", "b"])
        await self.subject.add_ids(["b", "c"])
        await self.subject.remove_ids(["a", "b"])
        self.assertEqual(self.apis.calls[-1], ("remove", "w1", ["a"]))
        self.assertEqual(self.subject.ids, ["b", "c"])

    async def test_removing_last_id_closes_once(self):
        """Releasing every id should close the subscription exactly once."""
        await self.subject.add_ids(["a", "b"])
        await self.subject.remove_ids(["a", "b"])
        self.assertEqual(self.apis.calls[-1], ("close", "w1"))
        self.assertEqual(self.apis.count("close"), 1)
        self.assertEqual(self.apis.count("remove"), 0)
        self.assertEqual(self.subject.state, SubjectState.UNOPENED)
        self.assertIsNone(self.subject.watch_id)

        await self.subject.close()
        self.assertEqual(self.apis.count("close"), 1)

    async def test_reopens_after_last_id_released(self):
        await self.subject.add_ids(["a"])
        await self.subject.remove_ids(["a"])
        await self.subject.add_ids(["b"])
        self.assertEqual(self.apis.calls[-1], ("open", ["b"]))
        self.assertEqual(self.subject.watch_id, "w2")

    async def test_repeated_ids_count_as_separate_references(self):
        """Each occurrence of an id in one call should take its own reference."""
        await self.subject.add_ids(["a", "a", "b"])
        self.assertEqual(self.apis.calls, [("open", ["a", "b"])])
        self.assertEqual(self.subject.ref_count("a"), 2)

        await self.subject.remove_ids(["a", "b"])
        self.assertEqual(self.apis.calls[-1], ("remove", "w1", ["b"]))
        self.assertEqual(self.subject.ids, ["a"])

        await self.subject.remove_ids(["a"])
        self.assertEqual(self.apis.calls[-1], ("close", "w1"))

    async def test_failed_open_rolls_back(self):
        """A failed open should leave no references behind."""
        self.apis.errors["open"] = ConnectionError("down")
        with self.assertRaises(ConnectionError):
            await self.subject.add_ids(["a"])
        self.assertEqual(self.subject.ids, [])
        self.assertEqual(self.subject.state, SubjectState.UNOPENED)

        await self.subject.add_ids(["a"])
        self.assertEqual(self.subject.state, SubjectState.OPEN)

    async def test_failed_remove_still_releases(self):
        """References should be released even if the remove call fails."""
        await self.subject.add_ids(["a", "b"])
        self.apis.errors["remove"] = ConnectionError("down")
        with self.assertRaises(ConnectionError):
            await self.subject.remove_ids(["a"])
        self.assertEqual(self.subject.ids, ["b"])


class TestApiSubjectPolling(unittest.IsolatedAsyncioTestCase):
    """Tests for polling, rate changes and lost subscriptions."""

    async def asyncSetUp(self):
        self.apis = FakeWatchApis(RECORDS)
        self.subject = ApiSubject(self.apis, poll_rate=60)
        self.observer = Observer()
        self.subject.subscribe(self.observer)

    async def asyncTearDown(self):
        await self.subject.close()

    async def test_poll_before_open_returns_empty(self):
        grid = await self.subject.poll()
        self.assertTrue(grid.is_empty())
        self.assertEqual(self.apis.calls, [])

    async def test_poll_merges_changes_and_notifies(self):
        """Changed rows should replace the snapshot and reach observers."""
        await self.subject.add_ids(["a", "b"])
        changed = {"id": "a", "dis": "A", "curVal": 10}
        self.apis.poll_results.append(WatchPollResult(grid=Grid(rows=[changed])))

        grid = await self.subject.poll()

        self.assertEqual(grid.rows, [changed])
        self.assertEqual(self.subject.grid.get("a"), changed)
        self.assertEqual(self.subject.grid.get("b"), RECORDS["b"])
        self.assertEqual(self.observer.updates[-1].rows, [changed])

    async def test_poll_ignores_unreferenced_rows(self):
        await self.subject.add_ids(["a"])
        self.apis.poll_results.append(
            WatchPollResult(grid=Grid(rows=[{"id": "zzz", "curVal": 1}]))
        )
        grid = await self.subject.poll()
        self.assertTrue(grid.is_empty())

    async def test_removed_rows_leave_snapshot(self):
        await self.subject.add_ids(["a", "b"])
        self.apis.poll_results.append(
            WatchPollResult(grid=Grid(rows=[{"id": "a", "removed": True}]))
        )
        await self.subject.poll()
        self.assertEqual(self.subject.grid.ids(), ["b"])

    async def test_server_rate_is_adopted(self):
        """Rates reported on open and poll should replace the configured rate."""
        self.apis.poll_rate = 2
        await self.subject.add_ids(["a"])
        self.assertEqual(self.subject.poll_rate, 2)

        self.apis.poll_results.append(WatchPollResult(poll_rate=7))
        await self.subject.poll()
        self.assertEqual(self.subject.poll_rate, 7)

    async def test_server_rate_has_a_floor(self):
        """A zero or tiny rate from the server should not make polls run back to back."""
        self.apis.poll_rate = 0
        await self.subject.add_ids(["a"])
        self.assertEqual(self.subject.poll_rate, MIN_POLL_RATE_SECS)

        self.apis.poll_results.append(WatchPollResult(poll_rate=0.01))
        await self.subject.poll()
        self.assertEqual(self.subject.poll_rate, MIN_POLL_RATE_SECS)

    async def test_refresh_replaces_snapshot(self):
        await self.subject.add_ids(["a", "b"])
        self.apis.records["a"] = {"id": "a", "dis": "A2"}
        grid = await self.subject.refresh()
        self.assertEqual(self.apis.calls[-1], ("refresh", "w1"))
        self.assertEqual(grid.get("a"), {"id": "a", "dis": "A2"})
        self.assertEqual(self.subject.grid.get("a"), {"id": "a", "dis": "A2"})

    async def test_not_found_loses_subscription(self):
        """A poll that finds no subscription should be terminal."""
        await self.subject.add_ids(["a"])
        self.apis.poll_results.append(NotFoundError("unknown watch"))

        with self.assertRaises(SubscriptionLostError):
            await self.subject.poll()

        self.assertEqual(self.subject.state, SubjectState.LOST)
        self.assertTrue(self.subject.closed)
        self.assertEqual(len(self.observer.lost), 1)
        self.assertEqual(self.observer.lost[0].watch_id, "w1")
        with self.assertRaises(ClosedError):
            await self.subject.poll()
        with self.assertRaises(ClosedError):
            await self.subject.add_ids(["b"])

        await self.subject.close()
        self.assertEqual(self.apis.count("close"), 0)

    async def test_transport_failure_keeps_state(self):
        """A failed poll should propagate without changing the subscription."""
        await self.subject.add_ids(["a"])
        self.apis.poll_results.append(ConnectionError("down"))
        with self.assertRaises(ConnectionError):
            await self.subject.poll()
        self.assertEqual(self.subject.state, SubjectState.OPEN)
        self.assertEqual(self.subject.grid.get("a"), RECORDS["a"])


class TestApiSubjectTimer(unittest.IsolatedAsyncioTestCase):
    """Tests for the recurring poll."""

    async def asyncSetUp(self):
        self.apis = FakeWatchApis(RECORDS)

    async def test_polls_never_overlap(self):
        """A poll should never start while another is in flight."""
        self.apis.poll_delay = 0.005
        subject = ApiSubject(self.apis, poll_rate=0)
        await subject.add_ids(["a"])

        await asyncio.gather(subject.poll(), subject.poll(), subject.poll())
        await wait_until(lambda: self.apis.count("poll") >= 6)
        await subject.close()

        self.assertEqual(self.apis.max_in_flight_polls, 1)

    async def test_timer_polls_after_failure(self):
        """A failed scheduled poll should not stop the recurring poll."""
        self.apis.poll_results.append(ConnectionError("down"))
        subject = ApiSubject(self.apis, poll_rate=0.001)
        with self.assertLogs("haystack_client.watches.api_subject", "WARNING"):
            await subject.add_ids(["a"])
            await wait_until(lambda: self.apis.count("poll") >= 3)
        await subject.close()

    async def test_timer_stops_when_lost(self):
        self.apis.poll_results.append(NotFoundError("unknown watch"))
        subject = ApiSubject(self.apis, poll_rate=0.001)
        await subject.add_ids(["a"])
        await wait_until(lambda: subject.state is SubjectState.LOST)
        await asyncio.sleep(0.02)
        self.assertEqual(self.apis.count("poll"), 1)

    async def test_timer_stops_when_closed(self):
        subject = ApiSubject(self.apis, poll_rate=0.001)
        await subject.add_ids(["a"])
        await wait_until(lambda: self.apis.count("poll") >= 1)
        await subject.close()
        polls = self.apis.count("poll")
        await asyncio.sleep(0.02)
        self.assertEqual(self.apis.count("poll"), polls)

    async def test_result_after_close_is_discarded(self):
        """A poll in flight during close should not update the snapshot."""
        subject = ApiSubject(self.apis, poll_rate=60)
        observer = Observer()
        subject.subscribe(observer)
        await subject.add_ids(["a"])
        observer.updates.clear()

        self.apis.poll_gate = asyncio.Event()
        self.apis.poll_results.append(
            WatchPollResult(grid=Grid(rows=[{"id": "a", "curVal": 99}]))
        )
        poll = asyncio.create_task(subject.poll())
        await settle()
        await subject.close()
        self.apis.poll_gate.set()

        self.assertTrue((await poll).is_empty())
        self.assertEqual(observer.updates, [])

    async def test_concurrent_close_calls_once(self):
        subject = ApiSubject(self.apis, poll_rate=60)
        await subject.add_ids(["a"])
        await asyncio.gather(subject.close(), subject.close())
        self.assertEqual(self.apis.count("close"), 1)
        self.assertEqual(subject.state, SubjectState.CLOSED)
        with self.assertRaises(ClosedError):
            await subject.add_ids(["a"])


if __name__ == "__main__":
    unittest.main()
