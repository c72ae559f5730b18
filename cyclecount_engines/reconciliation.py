"""
cyclecount_engines.reconciliation -- Adjustment deltas for an approved journal.

Responsibility:
    Turn the final counts of an approved journal into reconciliation
    entries (counted - expected per line) and a deterministic batch hash.

Architecture position:
    Engines -- pure, zero I/O.

Invariants enforced:
    - Expected is the quantity frozen at journal creation, never re-read.
    - Skipped lines reconcile with counted == expected (delta 0).
    - The batch hash is SHA-256 over the canonical JSON of the journal id
      and the ordered entries, so identical inputs give identical hashes.

Failure modes:
    - ValueError for a non-skipped line without a counted quantity.
"""

from __future__ import annotations

from collections.abc import Sequence
from uuid import UUID

from cyclecount_engines.tracer import traced_engine
from cyclecount_kernel.domain.journal import JournalLine, LineStatus
from cyclecount_kernel.domain.reconciliation import ReconciliationEntry
from cyclecount_kernel.utils.hashing import hash_payload


@traced_engine("reconciliation", "1.0", fingerprint_fields=("journal_id",))
def compute_entries(
    *, journal_id: UUID, lines: Sequence[JournalLine]
) -> tuple[ReconciliationEntry, ...]:
    entries = []
    for line in sorted(lines, key=lambda ln: ln.sequence_number):
        if line.status is LineStatus.SKIPPED:
            counted = line.expected_quantity
        elif line.counted_quantity is None:
            raise ValueError(
                f"Line {line.id} of journal {journal_id} has no final count"
            )
        else:
            counted = line.counted_quantity
        entries.append(
            ReconciliationEntry(
                line_id=line.id,
                sequence_number=line.sequence_number,
                location_code=line.location_code,
                item_code=line.item_code,
                expected=line.expected_quantity,
                counted=counted,
                delta=counted - line.expected_quantity,
            )
        )
    return tuple(entries)


def batch_hash(journal_id: UUID, entries: Sequence[ReconciliationEntry]) -> str:
    return hash_payload({
        "journal_id": journal_id,
        "entries": [
            {
                "line_id": e.line_id,
                "sequence_number": e.sequence_number,
                "location_code": e.location_code,
                "item_code": e.item_code,
                "expected": e.expected,
                "counted": e.counted,
                "delta": e.delta,
            }
            for e in entries
        ],
    })
