import asyncio
from typing import Optional

import aiohttp
from sanic.log import logger as logr

from .abcs import IndexerClient
from .errors import UpstreamUnavailable
from .normalize import to_int
from .utils import secret_text

INDEXER_BASE_URLS = {
    1: "https://api.etherscan.io/api",
    11155111: "https://api-sepolia.etherscan.io/api",
    5: "https://api-goerli.etherscan.io/api",
    42161: "https://api.arbiscan.io/api",
    137: "https://api.polygonscan.com/api",
    10: "https://api-optimistic.etherscan.io/api",
}

def resolve_indexer_base_url(chain_id):
    return INDEXER_BASE_URLS.get(chain_id, INDEXER_BASE_URLS[1])


class EtherscanClient(IndexerClient):
    """
    Etherscan-style token endpoints.  Lowest trust of all the holder sources,
    so the caller always checks what comes back for plausibility.
    """

    def __init__(self, api_key, chain_id, max_retries=3, timeout_sec=12):
        self.api_key = api_key
        self.base_url = resolve_indexer_base_url(chain_id)
        self.max_retries = max_retries
        self.timeout = aiohttp.ClientTimeout(total=timeout_sec)
        self._session: Optional[aiohttp.ClientSession] = None

        logr.info(f"Using indexer {self.base_url} with key {secret_text(api_key or '', 4)}")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def session(self):
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def get(self, **params):

        if not self.api_key:
            raise UpstreamUnavailable("No indexer API key configured.")

        params['apikey'] = self.api_key

        backoff = 0.5
        for attempt in range(1, self.max_retries + 1):
            try:
                async with self.session().get(self.base_url, params=params) as resp:
                    data = await resp.json(content_type=None)
                break
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                if attempt >= self.max_retries:
                    raise UpstreamUnavailable(f"E140191026 - Indexer {params.get('action')} failed: {e}") from e
                await asyncio.sleep(backoff)
                backoff *= 2

        if not isinstance(data, dict) or data.get('status') != "1" or not data.get('result'):
            message = data.get('message') if isinstance(data, dict) else data
            raise UpstreamUnavailable(f"E141191026 - Indexer {params.get('action')} returned no result: {message}")

        return data['result']

    async def token_holder_list(self, token_address):

        result = await self.get(module='token', action='tokenholderlist', contractaddress=token_address)

        if not isinstance(result, list):
            raise UpstreamUnavailable("E142191026 - tokenholderlist result is not a list")

        return [row.get('TokenHolderAddress', '').lower() for row in result]

    async def token_info(self, token_address):

        result = await self.get(module='token', action='tokeninfo', contractaddress=token_address)

        for item in result:
            count = item.get('holderCount') or item.get('holders')
            if count:
                return {'holder_count': to_int(count)}

        raise UpstreamUnavailable("E143191026 - tokeninfo carries no holder count")
