"""Tests for the in-memory dedup ledger."""

import threading

from callbridge.ledger import InMemoryLedger


def test_insert_then_contains():
    ledger = InMemoryLedger()
    assert ledger.contains("k1") is False
    assert ledger.insert("k1") is True
    assert ledger.contains("k1") is True
    assert len(ledger) == 1


def test_insert_is_insert_if_absent():
    ledger = InMemoryLedger()
    assert ledger.insert("k1") is True
    assert ledger.insert("k1") is False
    assert len(ledger) == 1


def test_clear():
    ledger = InMemoryLedger()
    ledger.insert("k1")
    ledger.insert("k2")
    ledger.clear()
    assert len(ledger) == 0
    assert ledger.contains("k1") is False


def test_concurrent_inserts_single_winner():
    ledger = InMemoryLedger()
    wins = []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        if ledger.insert("same-key"):
            wins.append(1)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(wins) == 1
