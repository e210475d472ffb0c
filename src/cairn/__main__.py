"""Entry point: python -m cairn <command>

- root                        Print the current root index CID
- get <id>                    Print a memory by id
- list <table> <room> [agent] Print a room's memories in write order
- put <table> <file.json>     Store a memory read from a JSON file
- rm <table> <id>             Retract a memory and evict it from hot storage
- verify <table>              Check a table's hash chain

Writes print the new root CID; share it (CAIRN_ROOT_CID) to let another
party read this history.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import sys
from pathlib import Path

from cairn.config import CairnConfig, load_config
from cairn.core import Cairn
from cairn.errors import CairnError


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def _emit(value) -> None:
    print(json.dumps(value, ensure_ascii=False, indent=2, default=str))


def _read_memory(path: Path) -> dict:
    try:
        memory = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise CairnError(f"Cannot read {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise CairnError(f"{path} is not valid JSON: {e}") from e
    if not isinstance(memory, dict):
        raise CairnError(f"{path} must hold a JSON object, got {type(memory).__name__}")
    return memory


async def _run(config: CairnConfig, cmd: str, args: list[str]) -> int:
    memory = _read_memory(Path(args[1])) if cmd == "put" and len(args) == 2 else None

    cairn = Cairn(config)
    await cairn.init()
    try:
        if cmd == "root":
            _emit({"root": cairn.get_root_cid()})
        elif cmd == "get" and len(args) == 1:
            found = await cairn.get_memory_by_id(args[0])
            _emit(found)
            return 0 if found is not None else 1
        elif cmd == "list" and len(args) in (2, 3):
            agent = args[2] if len(args) == 3 else None
            _emit(await cairn.get_memories(room_id=args[1], table_name=args[0], agent_id=agent))
        elif cmd == "put" and len(args) == 2:
            entry = await cairn.create_memory(memory, args[0])
            _emit({"id": entry.id, "cid": entry.cid, "sequence": entry.sequence, "root": cairn.get_root_cid()})
        elif cmd == "rm" and len(args) == 2:
            result = await cairn.remove_memory(args[1], args[0])
            _emit({**dataclasses.asdict(result), "root": cairn.get_root_cid()})
        elif cmd == "verify" and len(args) == 1:
            report = await cairn.verify_collection(args[0])
            _emit(dataclasses.asdict(report))
            return 0 if report.ok else 1
        else:
            _usage()
            return 2
        return 0
    finally:
        await cairn.close()


def _usage() -> None:
    print("Usage: python -m cairn <command> [args]", file=sys.stderr)
    print("  root                         Current root index CID", file=sys.stderr)
    print("  get <id>                     Fetch a memory", file=sys.stderr)
    print("  list <table> <room> [agent]  List a room's memories", file=sys.stderr)
    print("  put <table> <file.json>      Store a memory", file=sys.stderr)
    print("  rm <table> <id>              Remove a memory", file=sys.stderr)
    print("  verify <table>               Verify a table's hash chain", file=sys.stderr)


def main() -> None:
    if len(sys.argv) < 2:
        _usage()
        sys.exit(2)

    config = load_config()
    _setup_logging(config.log_level)

    try:
        code = asyncio.run(_run(config, sys.argv[1], sys.argv[2:]))
    except CairnError as e:
        logging.getLogger("cairn").error("%s", e)
        code = 1
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
