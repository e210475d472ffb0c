"""Hash-chain verification of a collection's write order."""

from __future__ import annotations

from dataclasses import dataclass, field

from cairn.index.models import CollectionIndex


@dataclass
class ChainReport:
    """Outcome of verify_chain.

    ``retracted`` lists (after, before) sequence pairs with entries missing
    between them. Gaps come from removals and are not violations.
    """

    ok: bool = True
    checked: int = 0
    legacy: int = 0
    issues: list[str] = field(default_factory=list)
    retracted: list[tuple[int, int]] = field(default_factory=list)

    def fail(self, message: str) -> None:
        self.ok = False
        self.issues.append(message)


def verify_chain(index: CollectionIndex) -> ChainReport:
    """Check that entries are ordered, linked, and bounded by lastSequence.

    Entries without a sequence predate sequence assignment and are only counted.
    """
    report = ChainReport()
    sequenced = [item for item in index.items if item.sequence is not None]
    report.legacy = len(index.items) - len(sequenced)
    report.checked = len(sequenced)
    if not sequenced:
        return report

    positions = {item.cid: pos for pos, item in enumerate(sequenced)}

    first = sequenced[0]
    if index.root_cid is None:
        report.fail("rootCid is missing although sequenced entries exist")
    elif report.legacy:
        # The chain starts in the unsequenced history, which carries no links.
        if first.previous_cid in positions:
            report.fail(f"first entry {first.id} links back to a later entry")
    elif first.sequence == 1:
        if first.cid != index.root_cid:
            report.fail(f"first entry {first.id} does not match rootCid {index.root_cid}")
        if first.previous_cid is not None:
            report.fail(f"first entry {first.id} links back to {first.previous_cid}")

    for pos in range(1, len(sequenced)):
        prev, item = sequenced[pos - 1], sequenced[pos]
        if item.sequence <= prev.sequence:
            report.fail(
                f"entry {item.id} (sequence {item.sequence}) is not after "
                f"{prev.id} (sequence {prev.sequence})"
            )
            continue
        if item.sequence - prev.sequence == 1:
            if item.previous_cid != prev.cid:
                report.fail(f"entry {item.id} does not link to its predecessor {prev.id}")
        else:
            report.retracted.append((prev.sequence, item.sequence))
            linked = positions.get(item.previous_cid) if item.previous_cid else None
            if linked is not None and linked != pos - 1:
                report.fail(f"entry {item.id} links to an entry that is not its predecessor")

    top = max(item.sequence for item in sequenced)
    if (index.last_sequence or 0) < top:
        report.fail(f"lastSequence {index.last_sequence} is below highest sequence {top}")
    return report
