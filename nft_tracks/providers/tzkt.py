from __future__ import annotations

import logging
from typing import Any, List, Optional

from ..cancellation import CancelToken, check
from ..config import IndexerSettings
from ..models import NetworkError, RawToken, TokenMetadata
from .http import JsonHttpClient

logger = logging.getLogger(__name__)

TOKEN_STANDARD = "fa2"


class TzktTokenFetcher:
    """Reads FA2 balances and token metadata from a TzKT-compatible indexer."""

    def __init__(self, settings: IndexerSettings, http: Optional[JsonHttpClient] = None) -> None:
        self.settings = settings
        self.http = http or JsonHttpClient(timeout_seconds=settings.timeout_seconds)

    async def fetch_wallet_tokens(self, wallet: str, cancel: Optional[CancelToken] = None) -> List[RawToken]:
        """Page through the wallet's positive FA2 balances.

        Pages are requested one after another; a short page ends the scan and
        ``max_pages`` bounds the total. Network errors propagate.
        """
        tokens: List[RawToken] = []
        limit = self.settings.page_size
        url = f"{self.settings.base_url}/tokens/balances"
        for page in range(self.settings.max_pages):
            check(cancel)
            params = {
                "account": wallet,
                "token.standard": TOKEN_STANDARD,
                "balance.gt": 0,
                "offset": page * limit,
                "limit": limit,
            }
            logger.debug("Fetching balances for %s (offset %s, limit %s)", wallet, page * limit, limit)
            records = await self.http.get_json(url, params=params)
            if records is None:
                records = []
            if not isinstance(records, list):
                raise NetworkError(f"Unexpected balances payload for {wallet}: {type(records).__name__}")
            for record in records:
                token = self.parse_balance(record, wallet)
                if token is not None:
                    tokens.append(token)
            if len(records) < limit:
                break
        else:
            logger.warning(
                "Stopped after %s balance pages for %s (%s tokens); remaining holdings skipped",
                self.settings.max_pages,
                wallet,
                len(tokens),
            )
        logger.info("Found %s FA2 tokens for %s", len(tokens), wallet)
        return tokens

    async def fetch_token_metadata(self, contract_address: str, token_id: str) -> Optional[TokenMetadata]:
        """Single metadata-only lookup used when a balance row carries no metadata."""
        url = f"{self.settings.base_url}/tokens"
        params = {"contract": contract_address, "tokenId": token_id, "select": "metadata"}
        try:
            payload = await self.http.get_json(url, params=params)
        except NetworkError as exc:
            logger.warning("Metadata lookup failed for %s/%s: %s", contract_address, token_id, exc)
            return None
        if not isinstance(payload, list) or not payload:
            return None
        first = payload[0]
        if isinstance(first, dict) and isinstance(first.get("metadata"), dict):
            return first["metadata"]
        if isinstance(first, dict) and first:
            return first
        return None

    async def resolve_metadata(self, token: RawToken) -> Optional[TokenMetadata]:
        if token.raw_metadata:
            return token.raw_metadata
        if not token.contract_address or not token.token_id:
            return None
        return await self.fetch_token_metadata(token.contract_address, token.token_id)

    @staticmethod
    def parse_balance(record: Any, wallet: str) -> Optional[RawToken]:
        if not isinstance(record, dict):
            return None
        token = record.get("token")
        if not isinstance(token, dict):
            return None
        contract = token.get("contract") or {}
        contract_address = contract.get("address") if isinstance(contract, dict) else None
        token_id = token.get("tokenId")
        if not contract_address or token_id is None:
            logger.debug("Skipping balance row without contract/tokenId: %s", record.get("id"))
            return None
        account = record.get("account") or {}
        metadata = token.get("metadata")
        return RawToken(
            owner_address=(account.get("address") if isinstance(account, dict) else None) or wallet,
            contract_address=contract_address,
            token_id=str(token_id),
            standard=token.get("standard") or TOKEN_STANDARD,
            raw_metadata=metadata if isinstance(metadata, dict) and metadata else None,
            contract_alias=contract.get("alias") if isinstance(contract, dict) else None,
        )

    async def close(self) -> None:
        await self.http.close()
