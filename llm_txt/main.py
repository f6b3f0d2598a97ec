"""
llm-txt - Main FastAPI Application
Turns social feeds, RSS feeds and Git repositories into LLM-ready text.
"""
import logging
from functools import lru_cache

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse

from config.settings import settings

from .context import AppContext, build_context
from .errors import LlmTxtError, PaymentRequired
from .formatter import render
from .models import Provider
from .params import parse_query
from .payments import PAYMENT_HEADER, PAYMENT_RESPONSE_HEADER

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
logger = logging.getLogger("main")

APP_NAME = "llm-txt"
APP_VERSION = "v0.3.0"
HOME_URL = "https://llm-fid.fun"

app = FastAPI(
    title=APP_NAME,
    description="Farcaster, Bluesky, RSS and Git content as llm.txt",
    version=APP_VERSION,
)


@lru_cache(maxsize=1)
def get_context() -> AppContext:
    """Process-wide context. Tests override this dependency."""
    return build_context(settings)


@app.exception_handler(LlmTxtError)
async def handle_llm_txt_error(request: Request, exc: LlmTxtError):
    if isinstance(exc, PaymentRequired):
        body = exc.challenge or {"error": exc.message}
        return JSONResponse(status_code=exc.status_code, content=body)

    if exc.status_code >= 500:
        logger.error(f"{request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.url.path} rejected: {exc.message}")

    if request.url.path.endswith("/estimate"):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})
    return PlainTextResponse(f"Error: {exc.message}", status_code=exc.status_code)


def serve_text(provider: Provider, request: Request, ctx: AppContext) -> PlainTextResponse:
    """
    Validate, price, take payment, fetch and render one request.

    Payment is verified before the fetch and only settled after it
    succeeded, so failed fetches are never charged.
    """
    params = parse_query(provider, request.query_params)
    estimate = ctx.service.estimate(params)
    payment = ctx.gate.authorize(
        params, estimate, str(request.url), request.headers.get(PAYMENT_HEADER)
    )

    result = ctx.service.fetch(params)
    text = render(result)

    headers = {}
    if payment is not None:
        headers[PAYMENT_RESPONSE_HEADER] = ctx.gate.settle(payment)
    return PlainTextResponse(text, headers=headers)


def serve_estimate(provider: Provider, request: Request, ctx: AppContext) -> dict:
    params = parse_query(provider, request.query_params)
    return ctx.service.estimate(params).to_dict()


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "version": APP_VERSION}


@app.get("/cache/stats")
def cache_stats(ctx: AppContext = Depends(get_context)):
    """Get cache and rate limiter statistics."""
    return {
        "cache": ctx.cache.get_stats(),
        "rate_limiter": ctx.rate_limiter.get_stats(),
    }


@app.get("/")
def farcaster(request: Request, ctx: AppContext = Depends(get_context)):
    """
    Farcaster user posts.

    Example: /?username=vitalik&limit=20&includeReplies=true
    """
    if not request.query_params:
        return RedirectResponse(HOME_URL)
    return serve_text(Provider.FARCASTER, request, ctx)


@app.get("/estimate")
def farcaster_estimate(request: Request, ctx: AppContext = Depends(get_context)):
    return serve_estimate(Provider.FARCASTER, request, ctx)


@app.get("/bsky")
def bluesky(request: Request, ctx: AppContext = Depends(get_context)):
    """
    Bluesky account posts.

    Example: /bsky?handle=alice.bsky.social&limit=20
    """
    return serve_text(Provider.BLUESKY, request, ctx)


@app.get("/bsky/estimate")
def bluesky_estimate(request: Request, ctx: AppContext = Depends(get_context)):
    return serve_estimate(Provider.BLUESKY, request, ctx)


@app.get("/rss")
def rss(request: Request, ctx: AppContext = Depends(get_context)):
    """
    RSS or Atom feed items.

    Example: /rss?url=https://example.com/feed.xml&includeContent=true
    """
    return serve_text(Provider.RSS, request, ctx)


@app.get("/rss/estimate")
def rss_estimate(request: Request, ctx: AppContext = Depends(get_context)):
    return serve_estimate(Provider.RSS, request, ctx)


@app.get("/git")
def git(request: Request, ctx: AppContext = Depends(get_context)):
    """
    GitHub repository overview, tree and file contents.

    Example: /git?url=https://github.com/owner/repo&includeTree=true
    """
    return serve_text(Provider.GIT, request, ctx)


@app.get("/git/estimate")
def git_estimate(request: Request, ctx: AppContext = Depends(get_context)):
    return serve_estimate(Provider.GIT, request, ctx)
