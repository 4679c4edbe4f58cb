"""
Advisory supplier-recommendation client

Fetches free-text reasoning and a confidence score for already ranked
suppliers. The output is a UI hint only and never changes the ranking.
"""
import logging
from typing import Dict, List, Optional

import httpx

import config
from models.capacity import SupplierMatch
from services.errors import ExternalServiceError

logger = logging.getLogger(__name__)


class AdvisoryClient:
    def __init__(
        self,
        base_url: str = config.ADVISORY_SERVICE_URL,
        api_key: str = config.ADVISORY_API_KEY,
        timeout: float = config.ADVISORY_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self.headers = {"Content-Type": "application/json"}
        if api_key:
            self.headers["Authorization"] = f"Bearer {api_key}"

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def recommend(self, matches: List[SupplierMatch], quantity: int,
                        target_date, specialization: Optional[str] = None) -> Dict[str, dict]:
        """Advisory output keyed by supplier_id: {"reasoning": str, "confidence": float}"""
        if not self.enabled or not matches:
            return {}

        payload = {
            "quantity": quantity,
            "target_date": target_date.isoformat(),
            "specialization": specialization,
            "candidates": [m.model_dump(exclude={"reasoning", "advisory_confidence"}) for m in matches],
        }
        async with httpx.AsyncClient(transport=self.transport) as client:
            try:
                response = await client.post(
                    f"{self.base_url}/recommendations",
                    json=payload,
                    headers=self.headers,
                    timeout=self.timeout,
                )
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPStatusError as e:
                raise ExternalServiceError(f"Advisory service returned HTTP {e.response.status_code}")
            except (httpx.HTTPError, ValueError) as e:
                raise ExternalServiceError(f"Advisory service unavailable: {e}")

        recommendations = data.get("recommendations", []) if isinstance(data, dict) else None
        if not isinstance(recommendations, list):
            raise ExternalServiceError("Advisory service returned an unexpected payload")

        advice = {}
        for rec in recommendations:
            if not isinstance(rec, dict):
                raise ExternalServiceError("Advisory service returned a malformed recommendation")
            supplier_id = rec.get("supplier_id")
            if not supplier_id:
                continue
            advice[supplier_id] = {
                "reasoning": rec.get("reasoning"),
                "confidence": rec.get("confidence_score"),
            }
        return advice

    async def annotate(self, matches: List[SupplierMatch], quantity: int,
                       target_date, specialization: Optional[str] = None) -> List[SupplierMatch]:
        """Attach advisory reasoning where available; failures leave the ranking untouched"""
        try:
            advice = await self.recommend(matches, quantity, target_date, specialization)
        except ExternalServiceError as e:
            logger.warning(f"Advisory reasoning skipped: {e.message}")
            return matches

        return [
            m.model_copy(update={
                "reasoning": advice[m.supplier_id]["reasoning"],
                "advisory_confidence": advice[m.supplier_id]["confidence"],
            }) if m.supplier_id in advice else m
            for m in matches
        ]
