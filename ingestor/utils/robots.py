import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from loguru import logger

from ingestor.monitoring.metrics import ROBOTS_FAIL_OPEN


@dataclass
class RobotsGroup:
    agents: List[str] = field(default_factory=list)
    # (allow, path prefix)
    rules: List[Tuple[bool, str]] = field(default_factory=list)


class RobotsRules:
    """User-agent / Allow / Disallow rules of one robots.txt."""

    def __init__(self, groups: Optional[List[RobotsGroup]] = None):
        self.groups = groups or []

    def rules_for(self, user_agent: str) -> List[Tuple[bool, str]]:
        """Rules of the most specific group naming our agent, else of the '*' group."""
        ua = user_agent.lower()
        best_token = ""
        for group in self.groups:
            for agent in group.agents:
                if agent != "*" and agent in ua and len(agent) > len(best_token):
                    best_token = agent

        token = best_token or "*"
        rules: List[Tuple[bool, str]] = []
        for group in self.groups:
            if token in group.agents:
                rules.extend(group.rules)
        return rules

    def is_allowed(self, user_agent: str, path: str) -> bool:
        longest_allow = -1
        longest_disallow = -1
        for allow, prefix in self.rules_for(user_agent):
            if not prefix or not path.startswith(prefix):
                continue
            if allow:
                longest_allow = max(longest_allow, len(prefix))
            else:
                longest_disallow = max(longest_disallow, len(prefix))
        return longest_disallow < 0 or longest_allow > longest_disallow


ALLOW_ALL = RobotsRules()


def parse_robots(text: str) -> RobotsRules:
    groups: List[RobotsGroup] = []
    current: Optional[RobotsGroup] = None
    in_agent_run = False

    for raw_line in text.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line or ":" not in line:
            continue
        directive, _, value = line.partition(":")
        directive = directive.strip().lower()
        value = value.strip()

        if directive == "user-agent":
            if current is None or not in_agent_run:
                current = RobotsGroup()
                groups.append(current)
            current.agents.append(value.lower())
            in_agent_run = True
        elif directive in ("allow", "disallow"):
            in_agent_run = False
            if current is None:
                continue
            current.rules.append((directive == "allow", value))
        else:
            in_agent_run = False

    return RobotsRules(groups)


@dataclass
class RobotsEntry:
    host: str
    fetched_at: float
    rules: RobotsRules


class RobotsCache:
    """Per-host robots.txt cache with TTL; failures to fetch are treated as allow."""

    def __init__(
        self,
        user_agent: str,
        ttl_seconds: float = 1800,
        timeout: float = 5.0,
        clock: Callable[[], float] = time.time,
        max_hosts: int = 10_000,
    ):
        self.user_agent = user_agent
        self.ttl_seconds = ttl_seconds
        self.max_hosts = max(1, max_hosts)
        self.timeout = timeout
        self.clock = clock
        self._entries: Dict[str, RobotsEntry] = {}
        self._host_locks: Dict[str, asyncio.Lock] = {}

    # -------------------------------------------------------
    async def allowed(self, client, url: str) -> bool:
        parsed = urlparse(url)
        host = parsed.netloc.lower()
        if not host:
            return True

        rules = await self._get_rules(client, host, f"{parsed.scheme or 'http'}://{host}/robots.txt")
        if rules is None:
            return True

        target = parsed.path or "/"
        if parsed.query:
            target = f"{target}?{parsed.query}"
        return rules.is_allowed(self.user_agent, target)

    def invalidate(self, host: Optional[str] = None) -> None:
        if host is None:
            self._entries.clear()
        else:
            self._entries.pop(host.lower(), None)

    # -------------------------------------------------------
    async def _get_rules(self, client, host: str, robots_url: str) -> Optional[RobotsRules]:
        lock = self._host_locks.setdefault(host, asyncio.Lock())
        async with lock:
            entry = self._entries.get(host)
            if entry is not None and self.clock() - entry.fetched_at <= self.ttl_seconds:
                return entry.rules

            rules = await self._fetch_rules(client, robots_url)
            if rules is not None:
                self._entries[host] = RobotsEntry(host=host, fetched_at=self.clock(), rules=rules)
            self._evict()
            return rules

    def _evict(self) -> None:
        """Drop expired entries, then the oldest ones beyond ``max_hosts``, then idle locks."""
        now = self.clock()
        for host in [h for h, e in self._entries.items() if now - e.fetched_at > self.ttl_seconds]:
            del self._entries[host]

        overflow = len(self._entries) - self.max_hosts
        if overflow > 0:
            for entry in sorted(self._entries.values(), key=lambda e: e.fetched_at)[:overflow]:
                del self._entries[entry.host]

        for host in [h for h, lock in self._host_locks.items() if h not in self._entries and not lock.locked()]:
            del self._host_locks[host]

    # -------------------------------------------------------
    async def _fetch_rules(self, client, robots_url: str) -> Optional[RobotsRules]:
        """Parsed rules to cache, or None to fail open without caching."""
        try:
            response = await client.get(
                robots_url,
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout,
            )
        except Exception as exc:
            ROBOTS_FAIL_OPEN.inc()
            logger.warning(f"robots.txt fetch failed for {robots_url}, allowing: {exc!r}")
            return None

        status = response.status_code
        if 200 <= status < 300:
            return parse_robots(getattr(response, "text", "") or "")

        # 4xx: no robots.txt published, cache as allow-all.
        if 400 <= status < 500:
            logger.debug(f"robots.txt at {robots_url} returned {status}; treating as allow-all")
            return ALLOW_ALL

        ROBOTS_FAIL_OPEN.inc()
        logger.warning(f"robots.txt at {robots_url} returned {status}; allowing")
        return None
