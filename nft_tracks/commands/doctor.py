from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..config import Settings
from ..models import NetworkError
from ..providers.http import JsonHttpClient
from .output import disabled, enabled, error, ok as ok_line, skipped, warning


@dataclass(slots=True)
class DoctorReport:
    ok: bool
    checks: list[str]


def _settings_lines(settings: Settings) -> tuple[bool, list[str]]:
    checks: list[str] = []
    ok = True

    indexer = settings.indexer
    if indexer.base_url.startswith(("http://", "https://")):
        checks.append(ok_line("Indexer", indexer.base_url))
    else:
        ok = False
        checks.append(error("Indexer", f"not an http(s) url: {indexer.base_url}"))
    capacity = indexer.page_size * indexer.max_pages
    checks.append(ok_line("Scan limit", f"{indexer.max_pages} page(s) x {indexer.page_size} = {capacity} tokens"))

    checks.append(ok_line("IPFS gateway", settings.ipfs.gateway))

    secondary = settings.secondary_index
    if not secondary.enabled:
        checks.append(disabled("Secondary index", "set secondary_index.enabled"))
    elif not secondary.url or not secondary.api_key:
        ok = False
        missing = [name for name, value in (("url", secondary.url), ("api_key", secondary.api_key)) if not value]
        checks.append(error("Secondary index", f"enabled but missing {', '.join(missing)}"))
    else:
        checks.append(enabled("Secondary index", f"{secondary.url} table={secondary.table}"))

    threshold = settings.classifier.weak_signal_threshold
    if threshold < 2:
        checks.append(warning("Classifier", f"weak_signal_threshold={threshold} accepts single-hint tokens"))
    else:
        checks.append(ok_line("Classifier", f"weak_signal_threshold={threshold}"))

    checks.append(
        ok_line(
            "Cache",
            f"ttl={settings.cache.ttl_seconds:g}s sweep={settings.cache.sweep_interval_seconds:g}s",
        )
    )
    retry = settings.retry
    checks.append(
        ok_line(
            "Retry",
            f"{retry.max_retries} retries, {retry.base_delay_seconds:g}s x{retry.backoff_factor:g}",
        )
    )
    return ok, checks


async def _probe(http: JsonHttpClient, label: str, url: str, **kwargs) -> tuple[bool, str]:
    try:
        await http.get_json(url, **kwargs)
    except NetworkError as exc:
        return False, error(label, str(exc))
    return True, ok_line(label, "reachable")


async def run(
    settings: Settings,
    *,
    validate_online: bool = False,
    http: Optional[JsonHttpClient] = None,
) -> DoctorReport:
    ok, checks = _settings_lines(settings)
    if not validate_online:
        checks.append(skipped("Upstreams (network)", "pass --online"))
        return DoctorReport(ok=ok, checks=checks)

    client = http or JsonHttpClient(timeout_seconds=settings.indexer.timeout_seconds)
    try:
        reachable, line = await _probe(client, "Indexer (network)", f"{settings.indexer.base_url}/head")
        ok = ok and reachable
        checks.append(line)
        secondary = settings.secondary_index
        if secondary.configured:
            reachable, line = await _probe(
                client,
                "Secondary index (network)",
                f"{secondary.url}/rest/v1/{secondary.table}",
                params={"select": "id", "limit": 1},
                headers={"apikey": secondary.api_key, "Authorization": f"Bearer {secondary.api_key}"},
            )
            ok = ok and reachable
            checks.append(line)
        else:
            checks.append(skipped("Secondary index (network)", "not configured"))
    finally:
        if http is None:
            await client.close()
    return DoctorReport(ok=ok, checks=checks)
