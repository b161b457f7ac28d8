"""
Key-gated country data routes under /api/countries.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Path

from ..auth import Principal
from .dependencies import Services, get_services, rate_limit, require_api_key
from .models import Country

logger = logging.getLogger(__name__)


def create_country_router() -> APIRouter:
    """
    Build the data-plane router.

    Both limiters run before key validation. The per-IP window caps
    guessing with a fresh key on every request; the per-key window caps
    each key wherever it is used from.
    """
    router = APIRouter(
        prefix="/api/countries",
        tags=["countries"],
        dependencies=[
            Depends(rate_limit("api_ip")),
            Depends(rate_limit("api_key", by_api_key=True)),
        ],
    )

    @router.get("/all", response_model=List[Country])
    async def all_countries(
        principal: Principal = Depends(require_api_key), services: Services = Depends(get_services)
    ):
        countries = await services.countries.all_countries()
        logger.info(f"Served {len(countries)} countries to account {principal.account_id}")
        return countries

    @router.get("/search/{name}", response_model=List[Country])
    async def search_countries(
        name: str = Path(..., min_length=1, max_length=100),
        principal: Principal = Depends(require_api_key),
        services: Services = Depends(get_services),
    ):
        return await services.countries.search(name)

    return router
