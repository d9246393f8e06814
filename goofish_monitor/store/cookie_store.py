"""File-backed durable store for the last good credential set per domain."""
import asyncio
import logging
import os
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

import aiofiles
import orjson

from goofish_monitor.auth.credentials import CredentialSet, CredentialSource, parse_cookie_header
from goofish_monitor.config import COOKIE_DUMP_FILE, COOKIE_FILE
from goofish_monitor.errors import StorageInitError

logger = logging.getLogger(__name__)

KEY_SUFFIX = ".cookies"


def _domain_key(domain: str) -> str:
    return f"{domain.strip().lower()}{KEY_SUFFIX}"


class CookieStore:
    """Keeps `<domain>.cookies=name=value; ...` lines plus a richer JSON dump.

    The properties file is the fallback source of the credential cache. The
    JSON dump records when and from where each domain was last written.
    """

    def __init__(self, path: Path = COOKIE_FILE, dump_path: Optional[Path] = COOKIE_DUMP_FILE):
        self.path = path
        self.dump_path = dump_path
        self._entries: dict[str, str] = {}
        self._dump: dict[str, dict] = {}
        # Every domain shares the same two files
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Create the storage directory and load existing entries.

        Raises StorageInitError; the caller treats it as fatal at start-up.
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if self.path.exists():
                async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                    self._entries = self._parse(await f.read())
            if self.dump_path and self.dump_path.exists():
                async with aiofiles.open(self.dump_path, "rb") as f:
                    raw = await f.read()
                self._dump = orjson.loads(raw) if raw.strip() else {}
        except (OSError, orjson.JSONDecodeError) as e:
            raise StorageInitError(f"Cannot initialize cookie store at {self.path}: {e}") from e

        logger.info(f"Cookie store initialized at {self.path} ({len(self._entries)} domains)")

    @staticmethod
    def _parse(text: str) -> dict[str, str]:
        entries = {}
        for line in text.splitlines():
            line = line.strip()
            if not line or line.startswith(("#", "!")) or "=" not in line:
                continue
            key, value = line.split("=", 1)
            entries[key.strip()] = value.strip()
        return entries

    def get_header(self, domain: str) -> str:
        return self._entries.get(_domain_key(domain), "")

    def load(self, domain: str) -> Optional[CredentialSet]:
        """Last persisted set for `domain`, tagged as a durable fallback."""
        header = self.get_header(domain)
        if not header:
            return None
        meta = self._dump.get(domain.strip().lower(), {})
        obtained_at = meta.get("timestamp")
        return CredentialSet.from_mapping(
            domain,
            parse_cookie_header(header),
            CredentialSource.FALLBACK,
            obtained_at=obtained_at / 1000 if obtained_at else None,
        )

    async def save(self, credentials: CredentialSet) -> None:
        """Persist `credentials` for its domain, replacing the previous line."""
        domain = credentials.domain.strip().lower()
        async with self._write_lock:
            self._entries[_domain_key(domain)] = credentials.to_header()
            self._dump[domain] = {
                "last_updated": datetime.now().isoformat(timespec="seconds"),
                "source": credentials.source.value,
                "cookies": credentials.as_dict(),
                "timestamp": int(credentials.obtained_at * 1000),
            }
            await self._write_properties()
            if self.dump_path:
                await self._write_atomic(
                    self.dump_path, orjson.dumps(self._dump, option=orjson.OPT_INDENT_2)
                )
        logger.debug(f"Persisted {len(credentials)} cookies for {domain}")

    async def _write_properties(self) -> None:
        lines = [
            "# Cookies for the Goofish H5 API",
            f"# {time.strftime('%a %b %d %H:%M:%S %Y')}",
        ]
        lines.extend(f"{key}={value}" for key, value in sorted(self._entries.items()))
        await self._write_atomic(self.path, ("\n".join(lines) + "\n").encode("utf-8"))

    async def _write_atomic(self, path: Path, data: bytes) -> None:
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        async with aiofiles.open(tmp_path, "wb") as f:
            await f.write(data)
        os.replace(tmp_path, path)
