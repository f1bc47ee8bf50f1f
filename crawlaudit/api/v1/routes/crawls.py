"""
Crawl API Routes

No business logic lives here.
Routes validate input, call the auditor or robots engine, return responses.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field, field_validator

from crawlaudit.core.config import get_settings
from crawlaudit.engines.audit import AuditRequest, CrawlReport, SiteAuditor
from crawlaudit.engines.base import AIAgentVerdict, RobotsEvaluation
from crawlaudit.engines.robots.engine import ai_visibility, evaluate, parse_robots

logger = structlog.get_logger(__name__)
router = APIRouter()


# ─────────────────────────────────────────────
# Request / Response Schemas
# ─────────────────────────────────────────────

class CreateCrawlRequest(BaseModel):
    url: str = Field(min_length=1)
    max_pages: int = 20
    seed_links: list[str] = Field(default_factory=list)
    concurrency: int = Field(default=1, ge=1)

    @field_validator("max_pages")
    @classmethod
    def clamp_max_pages(cls, v: int) -> int:
        return get_settings().clamp_pages(v)


class RobotsEvaluateRequest(BaseModel):
    robots_txt: str = ""
    user_agent: str = "*"
    path: str = "/"


class AIVisibilityRequest(BaseModel):
    robots_txt: str = ""
    path: str = "/"
    meta_robots: str = ""
    googlebot_meta: str = ""
    bingbot_meta: str = ""


# ─────────────────────────────────────────────
# Dependencies
# ─────────────────────────────────────────────

def get_auditor(request: Request) -> SiteAuditor:
    """The auditor created at startup; holds the robots cache and snapshot store."""
    auditor = getattr(request.app.state, "auditor", None)
    if auditor is None:
        auditor = SiteAuditor()
        request.app.state.auditor = auditor
    return auditor


# ─────────────────────────────────────────────
# Routes
# ─────────────────────────────────────────────

@router.post("", response_model=CrawlReport)
async def create_crawl(
    payload: CreateCrawlRequest,
    auditor: SiteAuditor = Depends(get_auditor),
) -> CrawlReport:
    """Run a budgeted crawl audit synchronously and return the full report."""
    logger.info("Crawl requested", url=payload.url, max_pages=payload.max_pages)
    return await auditor.execute(AuditRequest(
        url=payload.url,
        max_pages=payload.max_pages,
        seed_links=payload.seed_links,
        concurrency=payload.concurrency,
    ))


@router.post("/robots/evaluate", response_model=RobotsEvaluation)
async def evaluate_robots(payload: RobotsEvaluateRequest) -> RobotsEvaluation:
    return evaluate(parse_robots(payload.robots_txt), payload.user_agent, payload.path)


@router.post("/robots/ai-visibility", response_model=list[AIAgentVerdict])
async def evaluate_ai_visibility(payload: AIVisibilityRequest) -> list[AIAgentVerdict]:
    meta = {
        "robots": payload.meta_robots,
        "googlebot": payload.googlebot_meta,
        "bingbot": payload.bingbot_meta,
    }
    return ai_visibility(parse_robots(payload.robots_txt), meta, path=payload.path)
