import pytest

from apps.pointcard.services.errors import UpstreamUnavailable

from conftest import CUSTOMERS, TRANSACTIONS, add_customer, add_transaction


@pytest.fixture
def checker(service):
    return service.checker


def _ledger_sum(repo, customer_id):
    return sum(t.amount for t in repo.transactions.list_where("customer_id", customer_id) if not t.archived)


def test_clean_store(repo, checker):
    customer_id = add_customer(repo, "U1")
    add_transaction(repo, customer_id, 1)

    report = checker.run()

    assert report.is_clean
    assert report.counts == {
        "total_customers": 1,
        "total_transactions": 1,
        "orphaned_records": 0,
        "invalid_relations": 0,
        "duplicate_customers": 0,
    }
    assert report.violations() == []


def test_scan_is_idempotent(repo, checker):
    a = add_customer(repo, "U1")
    add_customer(repo, "U1")
    add_transaction(repo, a, 1)
    add_transaction(repo, "deleted-customer", 1)
    add_transaction(repo, "", 1)

    first = checker.run()
    second = checker.run()

    assert first == second
    assert first.to_dict()["counts"] == second.to_dict()["counts"]


def test_duplicate_identity_reported_once_with_both_ids(repo, checker):
    a = add_customer(repo, "U1", "A")
    b = add_customer(repo, "U1", "B")
    add_customer(repo, "U2", "C")
    add_customer(repo, "", "no identity")
    add_customer(repo, "", "no identity either")

    report = checker.run()

    assert report.duplicate_identities == {"U1": sorted([a, b])}
    assert report.counts["duplicate_customers"] == 1
    assert "merge 1 duplicated identity" in report.recommended_action


def test_dangling_reference_is_orphan_not_invalid_relation(repo, checker):
    add_customer(repo, "U1")
    orphan = add_transaction(repo, "0f5c8a1e-0000-0000-0000-000000000000", 1)

    report = checker.run()

    assert report.orphaned_transaction_ids == [orphan]
    assert report.invalid_relation_ids == []


def test_empty_reference_is_invalid_relation_not_orphan(repo, checker):
    add_customer(repo, "U1")
    missing = add_transaction(repo, "", 1)

    report = checker.run()

    assert report.invalid_relation_ids == [missing]
    assert report.orphaned_transaction_ids == []


def test_reference_to_archived_customer_is_orphan(store, repo, checker):
    customer_id = add_customer(repo, "U1")
    tx = add_transaction(repo, customer_id, 1)
    store.archive_record(customer_id)

    assert checker.run().orphaned_transaction_ids == [tx]


def test_customers_without_history(repo, checker):
    active = add_customer(repo, "U1")
    idle = add_customer(repo, "U2")
    add_transaction(repo, active, 1)

    report = checker.run()

    assert report.customers_without_history == [idle]
    assert report.is_clean


def test_cleanup_archives_orphan(store, repo, checker):
    add_customer(repo, "U1")
    orphan = add_transaction(repo, "deleted-customer", 1)

    result = checker.cleanup_orphaned_records(checker.run().orphaned_transaction_ids)

    assert (result.succeeded, result.failed) == (1, 0)
    assert checker.run().orphaned_transaction_ids == []
    assert store.records[orphan]["archived"] is True
    assert store.count(TRANSACTIONS, include_archived=True) == 1


def test_cleanup_is_partial_failure_tolerant(store, repo, checker):
    first = add_transaction(repo, "gone-1", 1)
    second = add_transaction(repo, "gone-2", 1)
    store.fail("archive", UpstreamUnavailable("store down"), record_id=first)

    result = checker.cleanup_orphaned_records([first, "no-such-record", second])

    assert (result.succeeded, result.failed) == (1, 2)
    assert set(result.failures) == {first, "no-such-record"}
    assert store.records[second]["archived"] is True


def test_scan_pages_through_large_collections(repo, service):
    service.checker.page_size = 2
    for n in range(5):
        add_customer(repo, f"U{n}")

    assert service.checker.run().total_customers == 5


class TestMerge:
    def test_merge_keeps_oldest_and_recomputes_from_ledger(self, store, repo, service):
        oldest = add_customer(repo, "U1", "Old", balance=99, lifetime_earned=99)
        newer = add_customer(repo, "U1", "New", balance=2, lifetime_earned=2)
        add_transaction(repo, oldest, 3, date="2024-01-01T00:00:00Z")
        moved = add_transaction(repo, newer, 2, date="2024-01-02T00:00:00Z")
        add_transaction(repo, newer, -1, "REWARD", date="2024-01-03T00:00:00Z")

        result = service.merge_duplicates(["U1"])

        assert (result.merged, result.failed, result.skipped) == (1, 0, 0)
        assert result.survivors == {"U1": oldest}
        assert store.records[newer]["archived"] is True
        assert repo.transactions.get(moved).customer_id == oldest

        status = service.status("U1")
        assert status.customer_id == oldest
        assert (status.current_balance, status.lifetime_balance, status.lifetime_spent) == (4, 5, 1)
        assert status.visit_count == 2

        report = service.run_integrity_check()
        assert report.is_clean
        assert store.count(CUSTOMERS) == 1

    def test_identity_without_duplicates_is_skipped(self, repo, service):
        add_customer(repo, "U1")
        result = service.merge_duplicates(["U1", "U404"])
        assert (result.merged, result.failed, result.skipped) == (0, 0, 2)

    def test_failure_on_one_identity_does_not_abort_batch(self, store, repo, service):
        u1 = add_customer(repo, "U1", balance=3, lifetime_earned=3)
        u1_dup = add_customer(repo, "U1", balance=2, lifetime_earned=2)
        add_transaction(repo, u1, 3)
        add_transaction(repo, u1_dup, 2)
        add_customer(repo, "U2")
        add_customer(repo, "U2")
        store.fail("archive", UpstreamUnavailable("store down"), record_id=u1_dup)

        result = service.merge_duplicates(["U1", "U2"])

        assert (result.merged, result.failed) == (1, 1)
        assert "U1" in result.failures
        assert "U2" in result.survivors

        # the +2 entry already moved, so the survivor balance includes it
        assert _ledger_sum(repo, u1) == 5
        assert service.ledger.get_balance(u1).current == 5
        # the duplicate stays live with no ledger left
        assert store.records[u1_dup]["archived"] is False
        assert service.ledger.get_balance(u1_dup).current == _ledger_sum(repo, u1_dup) == 0

    def test_failed_repoint_still_reconciles_both_records(self, store, repo, service):
        survivor = add_customer(repo, "U1", balance=3, lifetime_earned=3)
        dup = add_customer(repo, "U1", balance=5, lifetime_earned=5)
        add_transaction(repo, survivor, 3)
        add_transaction(repo, dup, 2)
        stuck = add_transaction(repo, dup, 3)
        store.fail("update", UpstreamUnavailable("store down"), record_id=stuck)

        result = service.merge_duplicates(["U1"])

        assert (result.merged, result.failed) == (0, 1)
        assert dup in result.failures["U1"]
        assert store.records[dup]["archived"] is False
        for customer_id in (survivor, dup):
            assert service.ledger.get_balance(customer_id).current == _ledger_sum(repo, customer_id)

        retry = service.merge_duplicates(["U1"])
        assert retry.merged == 1
        assert service.ledger.get_balance(survivor).current == 8
        assert service.run_integrity_check().is_clean
