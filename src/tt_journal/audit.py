"""Hash-chain audit: verification and repair of journal files.

Each day file is an independent chain. The first row links to the empty
string; every later row links to the hash of the row before it. The sibling
``.hash`` anchor holds the end of the chain.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from .errors import JournalParseError, RepairError
from .files import anchor_path_for, iter_journal_files, read_anchor, read_lines
from .hashing import CANONICAL, match_scheme, write_scheme
from .locking import atomic_write_text
from .models import Event

logger = logging.getLogger(__name__)

PREVIEW_LIMIT = 10
PREVIEW_CONTEXT = 2
PREVIEW_WIDTH = 240


@dataclass
class VerifyReport:
    """Outcome of verifying one journal file."""
    path: Path
    ok: bool = True
    rows: int = 0
    legacy_rows: int = 0
    problems: list[str] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)

    def fail(self, problem: str) -> None:
        self.ok = False
        self.problems.append(problem)


@dataclass
class RepairResult:
    """Outcome of repairing one journal file.

    ``changed`` is true iff any row's bytes differ from the original.
    ``wrote`` is true iff ``.repair`` proposal files were written.
    """
    path: Path
    changed: bool = False
    wrote: bool = False
    applied: bool = False
    anchor_stale: bool = False
    final_hash: str = ""
    warnings: list[str] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)
    preview: list[str] = field(default_factory=list)


@dataclass
class AuditSummary:
    """Aggregated verification results across a journal tree."""
    reports: list[VerifyReport] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.reports)

    @property
    def failed(self) -> list[VerifyReport]:
        return [r for r in self.reports if not r.ok]


@dataclass
class RepairSummary:
    """Aggregated repair results across a journal tree."""
    results: list[RepairResult] = field(default_factory=list)
    errors: dict[Path, str] = field(default_factory=dict)

    @property
    def changed_files(self) -> int:
        return sum(1 for r in self.results if r.changed)

    @property
    def written_repairs(self) -> int:
        return sum(1 for r in self.results if r.wrote)


# ========== Verification ==========


def verify_file(path: Path) -> VerifyReport:
    """Verify the hash chain of one journal file.

    Every stored hash must match a supported scheme for its payload linked
    to the running chain value, and the anchor (if present) must equal the
    final chain value. Files without rows are trivially OK.
    """
    report = VerifyReport(path=path)

    try:
        lines = read_lines(path)
        anchor = read_anchor(path)
    except OSError as e:
        report.fail(f"cannot read: {e}")
        return report

    prev = ""
    for line_no, raw in enumerate(lines, start=1):
        text = raw.strip()
        if not text:
            continue
        try:
            event = Event.from_json(text, source=str(path), line=line_no)
        except (json.JSONDecodeError, ValueError) as e:
            report.fail(f"line {line_no}: malformed record: {e}")
            return report

        report.rows += 1
        if event.prev_hash != prev:
            report.fail(f"line {line_no}: prev_hash does not link to the previous row")

        scheme = match_scheme(event, prev, event.hash)
        if scheme is None:
            report.fail(f"line {line_no}: stored hash {event.hash!r} matches no supported scheme")
        elif scheme is not CANONICAL:
            report.legacy_rows += 1

        # Continue from the stored value so later breaks are located precisely.
        prev = event.hash

    if report.rows == 0:
        report.messages.append("empty file")
        return report

    if anchor is None:
        report.messages.append("no anchor present")
    elif anchor != prev:
        report.fail(f"anchor mismatch: anchor {anchor!r}, end of chain {prev!r}")
    else:
        report.messages.append("anchor present and matches end of chain")

    if report.legacy_rows:
        report.messages.append(f"{report.legacy_rows} row(s) use the legacy hash")

    return report


def verify_tree(root: Path) -> AuditSummary:
    """Verify every journal file under ``root``; never stops early."""
    summary = AuditSummary()
    for path in iter_journal_files(root):
        report = verify_file(path)
        if not report.ok:
            logger.warning("Verification failed for %s: %s", path, "; ".join(report.problems))
        summary.reports.append(report)
    return summary


# ========== Repair ==========


def _trim_for_preview(line: str) -> str:
    line = line.strip()
    if len(line) > PREVIEW_WIDTH:
        return line[:PREVIEW_WIDTH] + "..."
    return line


def render_diff_preview(
    old_lines: list[str],
    new_lines: list[str],
    limit: int = PREVIEW_LIMIT,
    context: int = PREVIEW_CONTEXT,
) -> list[str]:
    """Render a bounded line-level diff.

    At most ``limit`` numbered lines are shown, each change preceded by up to
    ``context`` unchanged lines.
    """
    out: list[str] = []
    shown = 0
    last_change = -1

    def emit(text: str) -> None:
        nonlocal shown
        if shown < limit:
            out.append(text)
            shown += 1

    for i in range(max(len(old_lines), len(new_lines))):
        if shown >= limit:
            break
        old = old_lines[i] if i < len(old_lines) else ""
        new = new_lines[i] if i < len(new_lines) else ""
        if old == new:
            continue

        first_context = max(i - context, last_change + 1)
        if last_change >= 0 and first_context > last_change + 1:
            out.append("  ...")
        for j in range(first_context, i):
            emit(f"  {j + 1:4d}  {_trim_for_preview(old_lines[j])}")
        if old:
            emit(f"- {i + 1:4d}  {_trim_for_preview(old)}")
        if new:
            emit(f"+ {i + 1:4d}  {_trim_for_preview(new)}")
        last_change = i

    if not out:
        out.append("  (no line-level differences detected in preview)")
    return out


def _write_text(path: Path, content: str) -> None:
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(content)


def repair_file(path: Path, dry_run: bool = True, apply: bool = False) -> RepairResult:
    """Rewrite a journal file's chain in canonical form.

    Every row gets ``prev_hash``/``hash`` recomputed with the canonical
    scheme. Legacy rows are migrated; rows matching no scheme are rewritten
    with a warning.

    In dry-run mode the proposal goes to ``<file>.repair`` and
    ``<anchor>.repair`` and originals are untouched. With ``apply`` (and
    ``dry_run=False``) the original and its anchor are renamed to ``.bak``
    before the new content is written.

    Raises:
        JournalParseError: If a row is not valid JSON.
        RepairError: On I/O failure.
    """
    result = RepairResult(path=path)
    anchor_path = anchor_path_for(path)

    try:
        orig_lines = read_lines(path)
        anchor = read_anchor(path)
    except OSError as e:
        raise RepairError(f"open {path}: {e}") from e

    if not any(line.strip() for line in orig_lines):
        result.messages.append("empty, skipping")
        return result

    scheme = write_scheme()
    new_lines: list[str] = []
    prev = ""

    for line_no, raw in enumerate(orig_lines, start=1):
        text = raw.strip()
        if not text:
            new_lines.append(raw)
            continue
        try:
            event = Event.from_json(text, source=str(path), line=line_no)
        except (json.JSONDecodeError, ValueError) as e:
            raise JournalParseError(str(e), str(path), line_no) from e

        matched = match_scheme(event, prev, event.hash)
        if matched is None:
            warning = (
                f"line {line_no} had stored hash {event.hash!r} that matches no supported "
                "scheme; proposing canonical rewrite"
            )
            result.warnings.append(warning)
            logger.warning("%s: %s", path, warning)
        elif matched is not scheme:
            result.messages.append(f"line {line_no}: migrating {matched.name} hash to {scheme.name}")

        new_hash = scheme.compute(event, prev)
        new_line = event.with_chain(prev, new_hash).to_json()
        if new_line != raw:
            result.changed = True
        new_lines.append(new_line)
        prev = new_hash

    result.final_hash = prev
    result.anchor_stale = anchor is not None and anchor != prev

    if not result.changed and not result.anchor_stale:
        result.messages.append("would not change (already canonical)")
        return result

    new_content = "".join(line + "\n" for line in new_lines)
    anchor_content = prev + "\n"

    if dry_run:
        repair_path = path.with_name(path.name + ".repair")
        repair_anchor_path = anchor_path.with_name(anchor_path.name + ".repair")
        try:
            if result.changed:
                _write_text(repair_path, new_content)
                result.messages.append(f"wrote {repair_path} (proposed rewrite)")
            _write_text(repair_anchor_path, anchor_content)
            result.messages.append(f"wrote {repair_anchor_path} (proposed anchor)")
        except OSError as e:
            raise RepairError(f"write repair proposal for {path}: {e}") from e
        result.wrote = True
        if result.changed:
            result.preview = render_diff_preview(orig_lines, new_lines)
        return result

    if apply:
        if result.changed:
            backup_path = path.with_name(path.name + ".bak")
            try:
                path.rename(backup_path)
            except OSError as e:
                raise RepairError(f"backup original {path}: {e}") from e
            try:
                _write_text(path, new_content)
            except OSError as e:
                try:
                    os.replace(backup_path, path)
                except OSError as restore_error:
                    logger.error("Could not restore %s from %s: %s", path, backup_path, restore_error)
                raise RepairError(f"write applied file {path}: {e}") from e
            result.messages.append(f"applied {path} (backup at {backup_path})")

        try:
            if anchor_path.exists():
                anchor_path.rename(anchor_path.with_name(anchor_path.name + ".bak"))
            atomic_write_text(anchor_path, anchor_content)
        except OSError as e:
            raise RepairError(f"write anchor {anchor_path}: {e}") from e
        result.messages.append(f"updated anchor {anchor_path}")
        result.applied = True

    return result


def repair_tree(root: Path, dry_run: bool = True, apply: bool = False) -> RepairSummary:
    """Repair every journal file under ``root``; errors are collected per file."""
    summary = RepairSummary()
    for path in iter_journal_files(root):
        try:
            summary.results.append(repair_file(path, dry_run=dry_run, apply=apply))
        except (JournalParseError, RepairError) as e:
            logger.error("Repair failed for %s: %s", path, e)
            summary.errors[path] = str(e)
    return summary
