"""
Discovery endpoints (mounted under /discovery):

  GET /recommendations            personalized list for the caller
  GET /trending                   global trending (public)
  GET /network/trending           trending among the caller's connections
  GET /people-suggestions         people you may know
  GET /enhance-search             social re-ranking of search results
  GET /experiments/{name}/metrics A/B exposure and conversion report

`limit` defaults to 20 and is clamped to [1, 50] rather than rejected.
"""
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from discovery_service.auth import get_current_user_id
from discovery_service.config import settings
from discovery_service.errors import InvalidInput
from discovery_service.schemas import ContentItem, ExperimentMetrics, UserSuggestion
from discovery_service.services.discovery import ContentDiscoveryService
from discovery_service.services.experiments import ExperimentService

logger = logging.getLogger(__name__)
router = APIRouter()


def get_discovery_service(request: Request) -> ContentDiscoveryService:
    return request.app.state.discovery


def get_experiment_service(request: Request) -> ExperimentService:
    return request.app.state.experiments


def _cap(limit: int) -> int:
    return max(1, min(limit, settings.max_page_size))


@router.get("/recommendations", response_model=list[ContentItem])
async def get_recommendations(
    limit: int = Query(settings.default_page_size),
    user_id: str = Depends(get_current_user_id),
    discovery: ContentDiscoveryService = Depends(get_discovery_service),
):
    return await discovery.get_personalized_recommendations(user_id, _cap(limit))


@router.get("/trending", response_model=list[ContentItem])
async def get_trending(
    limit: int = Query(settings.default_page_size),
    discovery: ContentDiscoveryService = Depends(get_discovery_service),
):
    return await discovery.get_trending_content(_cap(limit))


@router.get("/network/trending", response_model=list[ContentItem])
async def get_network_trending(
    limit: int = Query(settings.default_page_size),
    user_id: str = Depends(get_current_user_id),
    discovery: ContentDiscoveryService = Depends(get_discovery_service),
):
    return await discovery.get_network_trending(user_id, _cap(limit))


@router.get("/people-suggestions", response_model=list[UserSuggestion])
async def get_people_suggestions(
    limit: int = Query(settings.default_page_size),
    user_id: str = Depends(get_current_user_id),
    discovery: ContentDiscoveryService = Depends(get_discovery_service),
):
    return await discovery.get_people_you_may_know(user_id, _cap(limit))


@router.get("/enhance-search")
async def enhance_search(
    results: str = Query(..., description="JSON array of search results"),
    query: str = Query(""),
    user_id: str = Depends(get_current_user_id),
    discovery: ContentDiscoveryService = Depends(get_discovery_service),
):
    try:
        parsed = json.loads(results)
        return await discovery.enhance_search_results(user_id, parsed, query)
    except (ValueError, InvalidInput) as exc:
        logger.info("Rejected search results from %s: %s", user_id, exc)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid search results format",
        )


@router.get("/experiments/{experiment_name}/metrics", response_model=ExperimentMetrics)
async def get_experiment_metrics(
    experiment_name: str,
    user_id: str = Depends(get_current_user_id),
    experiments: ExperimentService = Depends(get_experiment_service),
):
    metrics = await experiments.get_experiment_metrics(experiment_name)
    if metrics is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Experiment '{experiment_name}' not found",
        )
    return metrics
