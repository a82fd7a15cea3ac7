"""
Njalla domain registration API integration
JSON-RPC client shared with the payment service, plus domain registration,
task polling and TLD pricing
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from performance_cache import cache_get, cache_set
from performance_monitor import OperationTimer
from utils.environment import get_njalla_api_token, get_njalla_api_url

logger = logging.getLogger(__name__)

TLD_PRICING_CACHE_KEY = 'njalla_tld_pricing'
TLD_PRICING_CACHE_TTL = 3600

class NjallaAPIError(Exception):
    """Njalla could not be reached or answered with a transport-level failure"""
    pass

class NjallaRPCError(NjallaAPIError):
    """Njalla answered with a JSON-RPC error object"""

    def __init__(self, method: str, message: str, code: Optional[int] = None):
        self.method = method
        self.code = code
        super().__init__(f"Njalla {method} error: {message}")
        self.rpc_message = message

@dataclass(frozen=True)
class RegistrationResult:
    success: bool
    task_id: Optional[str] = None
    error: Optional[str] = None

@dataclass(frozen=True)
class TaskResult:
    completed: bool
    success: bool = False
    status: Optional[str] = None

class NjallaClient:
    """Minimal Njalla JSON-RPC 2.0 client"""

    def __init__(self, api_token: Optional[str] = None, base_url: Optional[str] = None,
                 timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_token = api_token if api_token is not None else get_njalla_api_token()
        self.base_url = base_url or get_njalla_api_url()
        self.timeout = timeout
        self._transport = transport

    async def call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Perform one JSON-RPC call and return its `result`

        Raises:
            NjallaRPCError: The API returned an error object
            NjallaAPIError: Token missing, network failure, non-2xx or malformed body
        """
        if not self.api_token:
            raise NjallaAPIError("NJALLA_API_TOKEN not configured")

        payload = {
            'jsonrpc': '2.0',
            'method': method,
            'params': params or {},
            'id': '1'
        }
        headers = {
            'Authorization': f'Njalla {self.api_token}',
            'Content-Type': 'application/json',
            'Accept': 'application/json'
        }

        try:
            with OperationTimer(f"njalla_{method}"):
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    response = await client.post(self.base_url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise NjallaAPIError(f"Njalla {method} request failed: {e}") from e

        if response.status_code != 200:
            raise NjallaAPIError(f"Njalla API error: HTTP {response.status_code} on {method}")

        try:
            data = response.json()
        except ValueError as e:
            raise NjallaAPIError(f"Njalla {method} returned invalid JSON") from e

        if not isinstance(data, dict):
            raise NjallaAPIError(f"Njalla {method} returned unexpected payload")

        error = data.get('error')
        if error:
            if isinstance(error, dict):
                raise NjallaRPCError(method, str(error.get('message', 'Unknown error')), error.get('code'))
            raise NjallaRPCError(method, str(error))

        return data.get('result')

class NjallaService(NjallaClient):
    """Domain side of the registrar API"""

    async def register_domain(self, domain: str, years: int = 1) -> RegistrationResult:
        """
        Start a domain registration, billed against the prepaid balance

        Registrar-side rejections come back as success=False; transport
        failures raise NjallaAPIError so the caller can retry.
        """
        logger.info(f"📝 Registering domain {domain} for {years} year(s)")
        try:
            result = await self.call('register-domain', {'domain': domain, 'years': years})
        except NjallaRPCError as e:
            logger.error(f"❌ Njalla registration error for {domain}: {e.rpc_message}")
            return RegistrationResult(success=False, error=e.rpc_message)

        task_id = result.get('task') if isinstance(result, dict) else None
        if not task_id:
            logger.error(f"❌ Njalla registration for {domain} returned no task ID")
            return RegistrationResult(success=False, error='No task ID returned')

        logger.info(f"✅ Domain registration task created: {task_id}")
        return RegistrationResult(success=True, task_id=str(task_id))

    async def check_task(self, task_id: str) -> TaskResult:
        """Poll a registration task; unreachable API reads as not completed"""
        try:
            result = await self.call('check-task', {'id': task_id})
        except NjallaRPCError as e:
            logger.error(f"❌ Njalla task {task_id} reported error: {e.rpc_message}")
            return TaskResult(completed=True, success=False)
        except NjallaAPIError as e:
            logger.warning(f"⚠️ Njalla task check failed for {task_id}: {e}")
            return TaskResult(completed=False)

        if not isinstance(result, dict):
            return TaskResult(completed=False)

        status = result.get('status')
        completed = status == 'completed'
        return TaskResult(
            completed=completed,
            success=completed and not result.get('error'),
            status=status
        )

    async def get_tld_pricing(self) -> Dict[str, Dict[str, Any]]:
        """
        Registrar TLD price list in EUR, cached for an hour

        Returns:
            Dict mapping '.tld' to {'price': Decimal, 'max_year': int, 'dnssec': bool}
        """
        cached = cache_get(TLD_PRICING_CACHE_KEY)
        if cached is not None:
            return cached

        result = await self.call('get-tlds')
        pricing = {}
        for tld, info in (result or {}).items():
            if not isinstance(info, dict) or info.get('price') is None:
                continue
            pricing[tld] = {
                'price': Decimal(str(info['price'])),
                'max_year': int(info.get('max_year') or 10),
                'dnssec': bool(info.get('dnssec', False)),
            }

        cache_set(TLD_PRICING_CACHE_KEY, pricing, TLD_PRICING_CACHE_TTL)
        logger.info(f"✅ Fetched pricing for {len(pricing)} TLDs (in EUR)")
        return pricing

    async def is_tld_supported(self, tld: str) -> bool:
        pricing = await self.get_tld_pricing()
        return tld in pricing

# Global instance
njalla_service = NjallaService()
