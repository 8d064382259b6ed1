from __future__ import annotations

import json
from typing import Sequence

from ..engine import TrackEngine
from ..models import LoadingState, TokenPair
from .output import print_tracks


async def scan(engine: TrackEngine, wallet: str, *, json_output: bool = False) -> bool:
    snapshot = await engine.set_wallet(wallet)
    if snapshot.loading_state is LoadingState.ERROR:
        if json_output:
            print(
                json.dumps(
                    {"error": snapshot.error, "retry_count": snapshot.retry_count},
                    indent=2,
                    sort_keys=True,
                )
            )
        else:
            print(f"{snapshot.error} (retries: {snapshot.retry_count})")
        return False
    print_tracks(snapshot.tracks, json_output=json_output, empty=f"No music NFTs found for {wallet}.")
    return True


async def tokens(engine: TrackEngine, pairs: Sequence[TokenPair], *, json_output: bool = False) -> bool:
    if engine.index_client is None:
        print("Secondary index is not configured (set secondary_index.enabled, url and api_key).")
        return False
    found = await engine.fetch_by_tokens(pairs)
    print_tracks(found, json_output=json_output, empty="No indexed tracks for the given tokens.")
    return True


async def search(engine: TrackEngine, wallet: str, term: str, *, json_output: bool = False) -> bool:
    if engine.index_client is None:
        print("Secondary index is not configured (set secondary_index.enabled, url and api_key).")
        return False
    found = await engine.search(term, wallet=wallet)
    print_tracks(found, json_output=json_output, empty=f"No tracks matching {term!r} for {wallet}.")
    return True
