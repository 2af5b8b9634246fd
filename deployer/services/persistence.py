"""Recording deployment results back into the network store.

The store is a human-edited JSON document, so updates are applied as a
minimal-diff patch: the document is parsed to find the exact byte span of the
target network's ``deployedAddress`` value (or the end of that network's
object) and only that span is rewritten. Everything else, including key order,
indentation and line endings, is left untouched.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from json.decoder import scanstring
from pathlib import Path

from deployer.exceptions import PersistenceConflict
from deployer.validation import validate_address

logger = logging.getLogger(__name__)

DEPLOYED_ADDRESS_FIELD = "deployedAddress"

_WHITESPACE = " \t\n\r"
_decoder = json.JSONDecoder()


@dataclass(frozen=True)
class _Member:
    key: str
    key_start: int
    value_start: int
    value_end: int


def _skip_ws(text: str, pos: int) -> int:
    while pos < len(text) and text[pos] in _WHITESPACE:
        pos += 1
    return pos


def _expect(text: str, pos: int, char: str) -> None:
    if pos >= len(text) or text[pos] != char:
        raise ValueError(f"expected {char!r} at offset {pos}")


def _scan_object(text: str, start: int) -> tuple[list[_Member], int]:
    """Members of the JSON object opening at *start*, and the offset of its '}'."""
    _expect(text, start, "{")
    members: list[_Member] = []
    pos = _skip_ws(text, start + 1)
    if pos < len(text) and text[pos] == "}":
        return members, pos

    while True:
        _expect(text, pos, '"')
        key_start = pos
        key, pos = scanstring(text, pos + 1)
        pos = _skip_ws(text, pos)
        _expect(text, pos, ":")
        value_start = _skip_ws(text, pos + 1)
        _, value_end = _decoder.raw_decode(text, value_start)
        members.append(_Member(key, key_start, value_start, value_end))

        pos = _skip_ws(text, value_end)
        if pos < len(text) and text[pos] == ",":
            pos = _skip_ws(text, pos + 1)
            continue
        _expect(text, pos, "}")
        return members, pos


def _line_indent(text: str, pos: int) -> str | None:
    """Leading whitespace of the line containing *pos*, or None if *pos* is not first on it."""
    line_start = text.rfind("\n", 0, pos) + 1
    prefix = text[line_start:pos]
    return prefix if prefix.strip() == "" and line_start > 0 else None


def _reject_duplicates(pairs):
    keys = [k for k, _ in pairs]
    if len(keys) != len(set(keys)):
        raise ValueError(f"duplicate keys: {sorted({k for k in keys if keys.count(k) > 1})}")
    return dict(pairs)


def patch_deployed_address(text: str, network_id: str, address: str) -> str:
    """Return *text* with *network_id*'s deployed address set to *address*."""
    try:
        json.loads(text, object_pairs_hook=_reject_duplicates)
        top_members, _ = _scan_object(text, _skip_ws(text, 0))
    except (ValueError, IndexError) as e:
        raise PersistenceConflict(f"Network store cannot be parsed: {e}") from e

    matches = [m for m in top_members if m.key == network_id]
    if len(matches) != 1:
        raise PersistenceConflict(
            f"Expected exactly one entry for {network_id} in the network store, found {len(matches)}"
        )
    entry = matches[0]
    if text[entry.value_start] != "{":
        raise PersistenceConflict(f"Entry for {network_id} is not an object")

    members, close = _scan_object(text, entry.value_start)
    new_value = json.dumps(address)
    existing = [m for m in members if m.key == DEPLOYED_ADDRESS_FIELD]

    if existing:
        field = existing[0]
        return text[:field.value_start] + new_value + text[field.value_end:]

    member_text = f"{json.dumps(DEPLOYED_ADDRESS_FIELD)}: {new_value}"
    if not members:
        return text[:close] + member_text + text[close:]

    last = members[-1]
    indent = _line_indent(text, last.key_start)
    if indent is None:
        insertion = f", {member_text}"
    else:
        newline = "\r\n" if text[:last.key_start].endswith("\r\n" + indent) else "\n"
        insertion = f",{newline}{indent}{member_text}"
    return text[:last.value_end] + insertion + text[last.value_end:]


class ConfigPersistence:
    """Sole writer of the network store."""

    def __init__(self, store_path: str | Path):
        self.store_path = Path(store_path)

    def _read(self) -> str:
        try:
            with open(self.store_path, encoding="utf-8", newline="") as f:
                return f.read()
        except OSError as e:
            raise PersistenceConflict(f"Cannot read network store {self.store_path}: {e}") from e

    def _write(self, text: str) -> None:
        try:
            fd, tmp_name = tempfile.mkstemp(
                dir=self.store_path.parent, prefix=f".{self.store_path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                    f.write(text)
                os.chmod(tmp_name, self.store_path.stat().st_mode & 0o777)
                os.replace(tmp_name, self.store_path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise PersistenceConflict(f"Cannot write network store {self.store_path}: {e}") from e

    def record_deployment(self, network_id: str, address: str) -> bool:
        """Set *network_id*'s deployed address. Returns False when it was already recorded."""
        validate_address(address)
        original = self._read()
        patched = patch_deployed_address(original, network_id, address)

        if patched == original:
            logger.info("Deployed address for %s already recorded in %s", network_id, self.store_path,
                        extra={"network": network_id})
            return False

        try:
            written = json.loads(patched)[network_id][DEPLOYED_ADDRESS_FIELD]
        except (ValueError, KeyError, TypeError) as e:
            raise PersistenceConflict(f"Patched network store failed to re-parse: {e}") from e
        if written != address:
            raise PersistenceConflict(f"Patched network store holds {written!r}, expected {address!r}")

        self._write(patched)
        logger.info("Updated %s with gateway address: %s", self.store_path, address,
                    extra={"network": network_id})
        return True
