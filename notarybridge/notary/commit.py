"""Reveal/redact range computation over sent and received transcripts."""

from collections.abc import Iterable, Sequence

from notarybridge.shared.errors import FragmentNotFound
from notarybridge.shared.logging import get_logger
from notarybridge.shared.models import ByteRange, Commit

logger = get_logger(__name__)


def find_occurrences(fragment: str, data: bytes) -> list[ByteRange]:
    """Every (possibly overlapping) occurrence of fragment in data, as byte ranges."""
    needle = fragment.encode("utf-8")
    if not needle:
        return []

    ranges = []
    pos = data.find(needle)
    while pos >= 0:
        ranges.append(ByteRange(start=pos, end=pos + len(needle)))
        pos = data.find(needle, pos + 1)
    return ranges


def map_strings_to_ranges(fragments: Iterable[str], data: bytes) -> tuple[list[ByteRange], list[str]]:
    """Locate all fragments; returns (merged ranges, fragments that never occur)."""
    found: list[ByteRange] = []
    missing: list[str] = []
    for fragment in fragments:
        occurrences = find_occurrences(fragment, data)
        if occurrences:
            found.extend(occurrences)
        else:
            missing.append(fragment)
    return merge_ranges(found), missing


def merge_ranges(ranges: Iterable[ByteRange]) -> list[ByteRange]:
    """Sort by start and coalesce overlapping or adjacent ranges; drops empty ones."""
    merged: list[ByteRange] = []
    for current in sorted(ranges, key=lambda r: (r.start, r.end)):
        if current.start == current.end:
            continue
        if merged and current.start <= merged[-1].end:
            last = merged[-1]
            if current.end > last.end:
                merged[-1] = ByteRange(start=last.start, end=current.end)
        else:
            merged.append(current)
    return merged


def subtract_ranges(full: ByteRange, remove: Iterable[ByteRange]) -> list[ByteRange]:
    """Parts of full not covered by any range in remove."""
    result: list[ByteRange] = []
    cursor = full.start
    for cut in merge_ranges(remove):
        if cut.end <= cursor:
            continue
        if cut.start >= full.end:
            break
        if cut.start > cursor:
            result.append(ByteRange(start=cursor, end=cut.start))
        cursor = max(cursor, cut.end)
    if cursor < full.end:
        result.append(ByteRange(start=cursor, end=full.end))
    return result


def build_commit(
    sent: bytes,
    recv: bytes,
    secret_fragments: Sequence[str],
    reveal_fragments: Sequence[str],
    *,
    strict_reveal: bool = False,
) -> Commit:
    """
    Compute which byte ranges of each direction get disclosed.

    Sent: everything except the secret fragments. Recv: only the reveal
    fragments. Each direction is processed independently.

    Args:
        sent: Raw bytes the prover sent
        recv: Raw bytes the prover received
        secret_fragments: Literal strings that must be redacted from sent
        reveal_fragments: Literal strings that may be revealed from recv
        strict_reveal: Fail instead of dropping unmatched reveal fragments

    Raises:
        FragmentNotFound: If a secret fragment is empty or missing from sent,
            or (when strict) a reveal fragment is missing from recv
    """
    secret_ranges: list[ByteRange] = []
    for index, fragment in enumerate(secret_fragments):
        if not fragment:
            raise FragmentNotFound(f"Secret fragment #{index} is empty")
        occurrences = find_occurrences(fragment, sent)
        if not occurrences:
            # Never echo the secret itself.
            raise FragmentNotFound(f"Secret fragment #{index} ({len(fragment)} chars) not found in sent transcript")
        secret_ranges.extend(occurrences)

    sent_ranges = subtract_ranges(ByteRange(start=0, end=len(sent)), secret_ranges)

    recv_ranges, missing = map_strings_to_ranges(reveal_fragments, recv)
    if missing:
        if strict_reveal:
            raise FragmentNotFound(f"{len(missing)} reveal fragment(s) not found in received transcript: {missing!r}")
        for fragment in missing:
            logger.warning(f"Reveal fragment not found in received transcript, dropping: {fragment!r}")

    logger.debug(
        f"Commit: {len(sent_ranges)} sent range(s), {len(recv_ranges)} recv range(s), "
        f"{len(secret_ranges)} redacted span(s)"
    )
    return Commit(sent=sent_ranges, recv=recv_ranges)
