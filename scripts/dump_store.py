import argparse
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import lmdb
import orjson

DATABASES = ("users", "sessions", "messages")


def _decode_value(value: bytes) -> Any:
    """Decode a value from LMDB to Python data."""
    try:
        return orjson.loads(value)
    except orjson.JSONDecodeError:
        return value.decode("utf-8", errors="replace")


def _dump_all(txn: lmdb.Transaction, db: Any, prefix: str | None = None) -> list[dict[str, Any]]:
    """Return all records of one named database, optionally limited to a key prefix."""
    result: list[dict[str, Any]] = []
    cursor = txn.cursor(db=db)
    if prefix:
        encoded = prefix.encode("utf-8")
        if not cursor.set_range(encoded):
            return result
        for key, value in cursor:
            if not key.startswith(encoded):
                break
            result.append({"key": key.decode("utf-8"), "value": _decode_value(value)})
        return result

    for key, value in cursor:
        result.append({"key": key.decode("utf-8"), "value": _decode_value(value)})
    return result


def dump_store(path: Path, databases: Iterable[str], session: str | None = None) -> dict[str, Any]:
    """Collect records from the selected databases of the chat record store."""
    env = lmdb.open(str(path), readonly=True, lock=False, max_dbs=len(DATABASES))
    records: dict[str, Any] = {}
    try:
        with env.begin() as txn:
            for name in databases:
                db = env.open_db(name.encode("utf-8"), txn=txn, create=False)
                prefix = f"{session}:" if session and name == "messages" else None
                records[name] = _dump_all(txn, db, prefix)
    finally:
        env.close()
    return records


def main() -> None:
    parser = argparse.ArgumentParser(description="Dump the chat record store as JSON")
    parser.add_argument("path", type=Path, help="Path to LMDB directory")
    parser.add_argument(
        "--db",
        action="append",
        choices=DATABASES,
        help="Database to dump (repeatable, default: all)",
    )
    parser.add_argument("--session", help="Only dump messages of this session id")
    args = parser.parse_args()

    records = dump_store(args.path, args.db or DATABASES, args.session)
    print(orjson.dumps(records, option=orjson.OPT_INDENT_2).decode("utf-8"))


if __name__ == "__main__":
    main()
