"""Tests for the fetch ledger."""

import pytest

from courrier.ledger import COMPLETED, FAILED, RUNNING, Ledger


class TestFetchedMessages:
    def test_mark_and_lookup(self, ledger):
        assert not ledger.is_fetched("a@x.com", "INBOX", 1)
        ledger.mark_fetched("a@x.com", "INBOX", 1, "/tmp/1.eml", 100)
        assert ledger.is_fetched("a@x.com", "INBOX", 1)
        msg = ledger.get_message("a@x.com", "INBOX", 1)
        assert msg.file_path == "/tmp/1.eml"
        assert msg.size_bytes == 100
        assert msg.fetched_at is not None

    def test_get_missing(self, ledger):
        assert ledger.get_message("a@x.com", "INBOX", 99) is None

    def test_upsert_keeps_one_record(self, ledger):
        ledger.mark_fetched("a@x.com", "INBOX", 7, "/old/7.eml", 10)
        ledger.mark_fetched("a@x.com", "INBOX", 7, "/new/7.eml", 20)
        assert ledger.fetched_uids("a@x.com", "INBOX") == {7}
        [row] = ledger.stats()
        assert row.count == 1
        assert row.total_bytes == 20
        assert ledger.get_message("a@x.com", "INBOX", 7).file_path == "/new/7.eml"

    def test_fetched_uids_scoped(self, ledger):
        ledger.mark_fetched("a@x.com", "INBOX", 1, "p", 1)
        ledger.mark_fetched("a@x.com", "Sent", 2, "p", 1)
        ledger.mark_fetched("b@x.com", "INBOX", 3, "p", 1)
        assert ledger.fetched_uids("a@x.com", "INBOX") == {1}
        assert ledger.fetched_uids("a@x.com", "Sent") == {2}
        assert ledger.fetched_uids("b@x.com", "INBOX") == {3}
        assert ledger.fetched_uids("c@x.com", "INBOX") == set()

    def test_stats_grouped_and_ordered(self, ledger):
        ledger.mark_fetched("b@x.com", "INBOX", 1, "p", 5)
        ledger.mark_fetched("a@x.com", "Sent", 1, "p", 7)
        ledger.mark_fetched("a@x.com", "INBOX", 1, "p", 3)
        ledger.mark_fetched("a@x.com", "INBOX", 2, "p", 4)
        rows = ledger.stats()
        assert [(r.account_email, r.mailbox, r.count, r.total_bytes) for r in rows] == [
            ("a@x.com", "INBOX", 2, 7),
            ("a@x.com", "Sent", 1, 7),
            ("b@x.com", "INBOX", 1, 5),
        ]

    def test_total_matches_sum_of_stats(self, ledger):
        for uid in range(1, 6):
            ledger.mark_fetched("a@x.com", "INBOX", uid, "p", uid * 10)
        ledger.mark_fetched("b@x.com", "Archive", 1, "p", 1)
        total = ledger.total_stats()
        rows = ledger.stats()
        assert total.count == sum(r.count for r in rows) == 6
        assert total.total_bytes == sum(r.total_bytes for r in rows) == 151

    def test_empty_totals(self, ledger):
        assert ledger.stats() == []
        total = ledger.total_stats()
        assert (total.count, total.total_bytes) == (0, 0)

    def test_survives_reopen(self, tmp_path):
        path = tmp_path / "sub" / "ledger.db"
        with Ledger(path) as ledger:
            ledger.mark_fetched("a@x.com", "INBOX", 1, "p", 1)
        with Ledger(path) as ledger:
            assert ledger.fetched_uids("a@x.com", "INBOX") == {1}

    def test_connect_twice_reuses_connection(self, tmp_path):
        ledger = Ledger(tmp_path / "ledger.db")
        ledger.connect()
        conn = ledger.conn
        with ledger:
            assert ledger.conn is conn
        with pytest.raises(RuntimeError, match="Not connected"):
            ledger.conn


class TestRuns:
    def test_start_run_is_running(self, ledger):
        run_id = ledger.start_run("a@x.com", "INBOX")
        run = ledger.get_run(run_id)
        assert run.status == RUNNING
        assert run.is_running
        assert run.completed_at is None
        assert run.messages_fetched == 0

    def test_complete_run(self, ledger):
        run_id = ledger.start_run("a@x.com", "INBOX")
        ledger.complete_run(run_id, 5, COMPLETED)
        run = ledger.get_run(run_id)
        assert run.status == COMPLETED
        assert not run.is_running
        assert run.messages_fetched == 5
        assert run.completed_at is not None

    def test_terminal_status_is_final(self, ledger):
        run_id = ledger.start_run("a@x.com", "INBOX")
        ledger.complete_run(run_id, 2, FAILED)
        ledger.complete_run(run_id, 9, COMPLETED)
        run = ledger.get_run(run_id)
        assert run.status == FAILED
        assert run.messages_fetched == 2

    def test_complete_run_rejects_running(self, ledger):
        run_id = ledger.start_run("a@x.com", "INBOX")
        with pytest.raises(ValueError):
            ledger.complete_run(run_id, 0, RUNNING)

    def test_latest_run(self, ledger):
        assert ledger.latest_run() is None
        ledger.start_run("a@x.com", "INBOX")
        second = ledger.start_run("a@x.com", "Sent")
        assert ledger.latest_run().id == second

    def test_recent_runs_most_recent_first(self, ledger):
        ids = [ledger.start_run("a@x.com", f"Box{i}") for i in range(5)]
        runs = ledger.recent_runs(limit=3)
        assert [r.id for r in runs] == list(reversed(ids))[:3]

    def test_abandon_running_runs(self, ledger):
        done = ledger.start_run("a@x.com", "INBOX")
        ledger.complete_run(done, 1, COMPLETED)
        stale = ledger.start_run("a@x.com", "Sent")
        assert ledger.abandon_running_runs() == 1
        assert ledger.get_run(stale).status == FAILED
        assert ledger.get_run(stale).completed_at is not None
        assert ledger.get_run(done).status == COMPLETED
