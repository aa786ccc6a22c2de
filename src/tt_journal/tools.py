"""MCP tool definitions wrapping the journal engine."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from .engine import JournalEngine
from .errors import (
    InvalidReferenceError,
    JournalError,
    JournalLockError,
    JournalParseError,
    RepairError,
)
from .models import (
    Event,
    EventType,
    format_interval,
    parse_bool_flag,
    parse_timestamp,
    split_timestamp,
)


def make_tools(engine: JournalEngine) -> dict[str, dict]:
    """Create MCP tool definitions for the journal engine.

    Returns:
        Dict mapping tool names to their definitions.
    """

    tools = {}

    # ========== event_write ==========
    tools["event_write"] = {
        "name": "event_write",
        "description": "Append one immutable event to the day journal and advance its hash chain. Corrections (amend/split/merge) are new events, never edits.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "type": {
                    "type": "string",
                    "enum": [t.value for t in EventType],
                    "description": "Event kind",
                },
                "ts": {
                    "type": "string",
                    "description": "RFC 3339 occurrence time (default: now)",
                },
                "customer": {"type": "string"},
                "project": {"type": "string"},
                "activity": {"type": "string"},
                "billable": {
                    "type": ["boolean", "string"],
                    "description": "true/false (or yes/no); omit to inherit the default",
                },
                "note": {"type": "string"},
                "tags": {
                    "type": "array",
                    "items": {"type": "string"},
                },
                "ref": {
                    "type": "string",
                    "description": "Target entry ID for amend/split",
                },
                "start": {
                    "type": "string",
                    "description": "Interval start for add events",
                },
                "end": {
                    "type": "string",
                    "description": "Interval end for add events",
                },
                "meta": {
                    "type": "object",
                    "additionalProperties": {"type": "string"},
                    "description": "Structured payload (start, end, split_at, left_note, right_note, targets, target)",
                },
            },
            "required": ["type"],
        },
    }

    # ========== entries_load ==========
    tools["entries_load"] = {
        "name": "entries_load",
        "description": "Materialize time entries (with corrections applied) for a range of calendar days.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "from": {
                    "type": "string",
                    "description": "First day (YYYY-MM-DD or RFC 3339)",
                },
                "to": {
                    "type": "string",
                    "description": "Last day, inclusive (default: same as from)",
                },
                "strict": {
                    "type": "boolean",
                    "description": "Fail on the first bad record instead of skipping it",
                },
            },
            "required": ["from"],
        },
    }

    # ========== audit_verify ==========
    tools["audit_verify"] = {
        "name": "audit_verify",
        "description": "Verify the hash chain and anchor of every journal file.",
        "inputSchema": {
            "type": "object",
            "properties": {},
        },
    }

    # ========== audit_repair ==========
    tools["audit_repair"] = {
        "name": "audit_repair",
        "description": "Recompute canonical hashes. Dry-run (default) writes .repair proposals; apply rewrites files after making .bak backups.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "dry_run": {
                    "type": "boolean",
                    "description": "Write .repair proposals only (default true)",
                },
                "apply": {
                    "type": "boolean",
                    "description": "Overwrite originals; requires dry_run=false",
                },
            },
        },
    }

    return tools


def _parse_day(value: str) -> date | datetime:
    if len(value) == 10:
        return date.fromisoformat(value)
    return parse_timestamp(value)


def _event_from_arguments(engine: JournalEngine, arguments: dict[str, Any]) -> Event:
    ts, ts_nanos = split_timestamp(arguments["ts"]) if arguments.get("ts") else (engine.now(), 0)
    billable = arguments.get("billable")
    if isinstance(billable, str):
        billable = parse_bool_flag(billable)
    ref = arguments.get("ref") or ""
    if arguments["type"] == EventType.ADD and arguments.get("start") and arguments.get("end"):
        ref = format_interval(parse_timestamp(arguments["start"]), parse_timestamp(arguments["end"]))
    return Event(
        id=arguments.get("id") or engine.new_id(),
        type=arguments["type"],
        ts=ts,
        user=arguments.get("user") or "",
        customer=arguments.get("customer") or "",
        project=arguments.get("project") or "",
        activity=arguments.get("activity") or "",
        billable=billable,
        note=arguments.get("note") or "",
        tags=list(arguments.get("tags") or []),
        ref=ref,
        meta={str(k): str(v) for k, v in (arguments.get("meta") or {}).items()},
        ts_nanos=ts_nanos,
    )


async def execute_tool(engine: JournalEngine, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
    """Execute a journal tool and return the result.

    Args:
        engine: JournalEngine instance
        name: Tool name
        arguments: Tool arguments

    Returns:
        Result dict with success status and data or error
    """
    try:
        if name == "event_write":
            stored = engine.write_event(_event_from_arguments(engine, arguments))
            return {
                "success": True,
                "id": stored.id,
                "ts": stored.ts_text(),
                "prev_hash": stored.prev_hash,
                "hash": stored.hash,
                "message": f"{stored.type} event {stored.id} written",
            }

        elif name == "entries_load":
            from_ = _parse_day(arguments["from"])
            to = _parse_day(arguments["to"]) if arguments.get("to") else from_
            entries = engine.load_entries(from_, to, strict=arguments.get("strict"))
            return {
                "success": True,
                "count": len(entries),
                "entries": [e.to_dict() for e in entries],
            }

        elif name == "audit_verify":
            summary = engine.audit_verify()
            return {
                "success": True,
                "ok": summary.ok,
                "files": [
                    {
                        "path": str(r.path),
                        "ok": r.ok,
                        "problems": r.problems,
                        "messages": r.messages,
                    }
                    for r in summary.reports
                ],
            }

        elif name == "audit_repair":
            dry_run = arguments.get("dry_run", True)
            summary = engine.audit_repair(dry_run=dry_run, apply=arguments.get("apply", False))
            return {
                "success": not summary.errors,
                "changed_files": summary.changed_files,
                "written_repairs": summary.written_repairs,
                "files": [
                    {
                        "path": str(r.path),
                        "changed": r.changed,
                        "wrote": r.wrote,
                        "applied": r.applied,
                        "warnings": r.warnings,
                        "preview": r.preview,
                    }
                    for r in summary.results
                ],
                "errors": {str(p): msg for p, msg in summary.errors.items()},
            }

        else:
            return {
                "success": False,
                "error": f"Unknown tool: {name}",
                "error_type": "unknown_tool",
            }

    except JournalParseError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "malformed_record",
        }

    except InvalidReferenceError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "invalid_reference",
            "suggestion": "Check that the referenced entry exists and the payload is well-formed",
        }

    except JournalLockError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "lock_timeout",
            "suggestion": "Another writer holds the journal lock; retry shortly",
        }

    except RepairError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "repair_failed",
        }

    except JournalError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "journal_error",
        }

    except KeyError as e:
        return {
            "success": False,
            "error": f"Missing required argument: {e}",
            "error_type": "invalid_arguments",
        }

    except ValueError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "invalid_arguments",
        }

    except OSError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "io_error",
        }
