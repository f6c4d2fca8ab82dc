"""Enrichment provider capabilities: PDL, Hunter, Apollo, Apify, Perplexity.

Every provider is an async function ``(credentials, **params) -> dict`` that
returns ``{"success": bool, "data": ..., "error": ...}`` and never raises for
provider-side failures. Transport errors and 429/5xx responses are marked
``retryable`` so RetryPolicy can re-run them when retries are enabled.

Credentials are looked up per call from the ``integrations`` store, falling
back to config. A provider with no credential is *unavailable*; the
registry reports that through :meth:`EnrichmentRegistry.is_available` before
anything is invoked.
"""

import functools
import logging
from typing import Any, Callable, Optional

import httpx

from crmflow.config import config
from crmflow.exceptions import CapabilityUnavailable
from crmflow.tools.retry import RetryPolicy, is_retryable_status
from crmflow.tools.sandbox import Sandbox

logger = logging.getLogger(__name__)

_PDL_URL = "https://api.peopledatalabs.com/v5/person/enrich"
_HUNTER_BASE = "https://api.hunter.io/v2"
_APOLLO_BASE = "https://api.apollo.io/api/v1"
_APIFY_ACTOR_URL = "https://api.apify.com/v2/acts/apimaestro~linkedin-profile-posts/run-sync-get-dataset-items"
_PERPLEXITY_URL = "https://api.perplexity.ai/search"


def _http_failure(provider: str, response: httpx.Response) -> dict:
    return {
        "success": False,
        "error": f"{provider} API error: {response.status_code}",
        "retryable": is_retryable_status(response.status_code),
    }


def _transport_failure(exc: Exception) -> dict:
    return {"success": False, "error": str(exc) or type(exc).__name__, "retryable": True}


# ── People Data Labs ──────────────────────────────────────────────────────────

async def enrich_person_pdl(credentials: dict, email: str = None, first_name: str = None,
                            last_name: str = None, company: str = None,
                            linkedin_url: str = None, **kwargs) -> dict:
    """Enrich a person via People Data Labs. Primary use: find a work email."""
    body = {k: v for k, v in {
        "email": email, "first_name": first_name, "last_name": last_name,
        "company": company, "profile": linkedin_url,
    }.items() if v}
    try:
        async with httpx.AsyncClient(timeout=30) as c:
            r = await c.post(_PDL_URL, json=body, headers={"X-Api-Key": credentials["api_key"]})
    except httpx.HTTPError as exc:
        return _transport_failure(exc)
    if r.status_code != 200:
        return _http_failure("PDL", r)
    person = r.json().get("data") or {}
    return {
        "success": True,
        "data": {
            "first_name": person.get("first_name"),
            "last_name": person.get("last_name"),
            "work_email": person.get("work_email"),
            "linkedin_url": person.get("linkedin_url"),
            "title": person.get("job_title"),
            "company": person.get("job_company_name"),
            "company_domain": person.get("job_company_website"),
            "location": person.get("location_name"),
            "industry": person.get("industry"),
            "phone": (person.get("mobile_phone") or None),
        },
    }


# ── Hunter ────────────────────────────────────────────────────────────────────

async def find_email_hunter(credentials: dict, domain: str = None, first_name: str = None,
                            last_name: str = None, **kwargs) -> dict:
    """Find a person's email at a domain via Hunter."""
    if not domain:
        return {"success": False, "error": "domain is required"}
    params = {"domain": domain, "api_key": credentials["api_key"]}
    if first_name:
        params["first_name"] = first_name
    if last_name:
        params["last_name"] = last_name
    try:
        async with httpx.AsyncClient(timeout=30) as c:
            r = await c.get(f"{_HUNTER_BASE}/email-finder", params=params)
    except httpx.HTTPError as exc:
        return _transport_failure(exc)
    if r.status_code != 200:
        return _http_failure("Hunter", r)
    data = r.json().get("data") or {}
    return {
        "success": True,
        "data": {
            "email": data.get("email"),
            "score": data.get("score"),
            "verification_status": (data.get("verification") or {}).get("status"),
        },
    }


async def verify_email_hunter(credentials: dict, email: str = None, **kwargs) -> dict:
    """Verify email deliverability via Hunter."""
    if not email:
        return {"success": False, "error": "email is required"}
    try:
        async with httpx.AsyncClient(timeout=30) as c:
            r = await c.get(
                f"{_HUNTER_BASE}/email-verifier",
                params={"email": email, "api_key": credentials["api_key"]},
            )
    except httpx.HTTPError as exc:
        return _transport_failure(exc)
    if r.status_code != 200:
        return _http_failure("Hunter", r)
    data = r.json().get("data") or {}
    return {
        "success": True,
        "data": {
            "status": data.get("status"),
            "score": data.get("score"),
            "is_disposable": data.get("disposable"),
            "is_webmail": data.get("webmail"),
        },
    }


# ── Apollo ────────────────────────────────────────────────────────────────────

async def enrich_person_apollo(credentials: dict, email: str = None, first_name: str = None,
                               last_name: str = None, domain: str = None, **kwargs) -> dict:
    """Match a person via Apollo."""
    body = {k: v for k, v in {
        "email": email, "first_name": first_name, "last_name": last_name, "domain": domain,
    }.items() if v}
    try:
        async with httpx.AsyncClient(timeout=30) as c:
            r = await c.post(
                f"{_APOLLO_BASE}/people/match",
                json=body,
                headers={"X-Api-Key": credentials["api_key"], "Content-Type": "application/json"},
            )
    except httpx.HTTPError as exc:
        return _transport_failure(exc)
    if r.status_code != 200:
        return _http_failure("Apollo", r)
    person = r.json().get("person") or {}
    org = person.get("organization") or {}
    return {
        "success": True,
        "data": {
            "title": person.get("title"),
            "seniority": person.get("seniority"),
            "linkedin_url": person.get("linkedin_url"),
            "email": person.get("email"),
            "company": org.get("name"),
            "company_domain": org.get("primary_domain"),
        },
    }


async def enrich_company_apollo(credentials: dict, domain: str = None, name: str = None, **kwargs) -> dict:
    """Enrich an organization via Apollo."""
    if not domain:
        return {"success": False, "error": "domain is required"}
    try:
        async with httpx.AsyncClient(timeout=30) as c:
            r = await c.get(
                f"{_APOLLO_BASE}/organizations/enrich",
                params={"domain": domain},
                headers={"X-Api-Key": credentials["api_key"]},
            )
    except httpx.HTTPError as exc:
        return _transport_failure(exc)
    if r.status_code != 200:
        return _http_failure("Apollo", r)
    org = r.json().get("organization") or {}
    return {
        "success": True,
        "data": {
            "name": org.get("name") or name,
            "domain": org.get("primary_domain") or domain,
            "industry": org.get("industry"),
            "employee_count": org.get("estimated_num_employees"),
            "founded_year": org.get("founded_year"),
            "linkedin_url": org.get("linkedin_url"),
        },
    }


# ── Apify (LinkedIn) ──────────────────────────────────────────────────────────

async def scrape_linkedin_profile(credentials: dict, linkedin_url: str = None, limit: int = 10, **kwargs) -> dict:
    """Scrape recent LinkedIn posts and profile data via an Apify actor."""
    if not linkedin_url:
        return {"success": True, "data": None, "message": "No LinkedIn URL provided"}
    username = linkedin_url
    if "linkedin.com/in/" in linkedin_url:
        username = linkedin_url.split("linkedin.com/in/", 1)[1].rstrip("/")
    try:
        limit = min(max(int(limit), 1), 100)
    except (TypeError, ValueError):
        limit = 10
    token = credentials.get("token") or credentials.get("api_key")
    try:
        async with httpx.AsyncClient(timeout=30) as c:
            r = await c.post(_APIFY_ACTOR_URL, params={"token": token},
                             json={"username": username, "limit": limit})
    except httpx.HTTPError as exc:
        return _transport_failure(exc)
    if r.status_code not in (200, 201):
        return _http_failure("Apify", r)
    items = r.json() or []
    if not items:
        return {"success": True, "data": None, "message": "No profile data"}
    profile = items[0]
    return {
        "success": True,
        "data": {
            "name": profile.get("name") or profile.get("fullName"),
            "headline": profile.get("headline"),
            "summary": profile.get("summary") or profile.get("about"),
            "location": profile.get("location"),
            "experience": profile.get("experience"),
            "education": profile.get("education"),
            "skills": profile.get("skills"),
            "recent_posts": [
                {"text": (p.get("text") or "")[:200], "reactions": p.get("totalReactionCount")}
                for p in items[:5]
            ],
        },
    }


# ── Perplexity ────────────────────────────────────────────────────────────────

async def research_company_perplexity(credentials: dict, company_name: str = None, domain: str = None,
                                      depth: str = "light", **kwargs) -> dict:
    """Company research via Perplexity search. ``depth`` is light or deep."""
    query = company_name or domain
    if not query:
        return {"success": False, "error": "company_name or domain is required"}
    deep = depth == "deep"
    if domain and company_name:
        query += f" ({domain})"
    query += " - company overview, recent news, funding, competitors" if deep else " - company overview"
    try:
        async with httpx.AsyncClient(timeout=30) as c:
            r = await c.post(
                _PERPLEXITY_URL,
                json={"query": query, "max_results": 10 if deep else 3, "search_recency_filter": "month"},
                headers={"Authorization": f"Bearer {credentials['api_key']}"},
            )
    except httpx.HTTPError as exc:
        return _transport_failure(exc)
    if r.status_code != 200:
        return _http_failure("Perplexity", r)
    results = r.json().get("results") or []
    return {
        "success": True,
        "data": {
            "company_name": company_name,
            "domain": domain,
            "depth": depth,
            "results": [
                {"title": item.get("title"), "url": item.get("url"), "snippet": item.get("snippet")}
                for item in results
            ],
        },
    }


# ── Registry ──────────────────────────────────────────────────────────────────

# capability name → (implementation, integration name, config attribute, credential key)
PROVIDERS: dict[str, tuple[Callable[..., Any], str, str, str]] = {
    "enrich_person_pdl": (enrich_person_pdl, "peopledatalabs", "pdl_api_key", "api_key"),
    "find_email_hunter": (find_email_hunter, "hunter", "hunter_api_key", "api_key"),
    "verify_email_hunter": (verify_email_hunter, "hunter", "hunter_api_key", "api_key"),
    "enrich_person_apollo": (enrich_person_apollo, "apollo", "apollo_api_key", "api_key"),
    "enrich_company_apollo": (enrich_company_apollo, "apollo", "apollo_api_key", "api_key"),
    "scrape_linkedin_profile": (scrape_linkedin_profile, "apify", "apify_api_key", "token"),
    "research_company_perplexity": (research_company_perplexity, "perplexity", "perplexity_api_key", "api_key"),
}


class EnrichmentRegistry:
    """Named enrichment capabilities with credential lookup and availability checks."""

    def __init__(self, repository=None, team_id: Optional[str] = None, settings=None,
                 retry: Optional[RetryPolicy] = None, sandbox: Optional[Sandbox] = None):
        self._repository = repository
        self._team_id = team_id
        self._settings = settings or config
        self._retry = retry or RetryPolicy(max_retries=self._settings.enrichment_max_retries)
        self._sandbox = sandbox or Sandbox()
        self._timeout = self._settings.tool_timeout_seconds

    def has(self, name: str) -> bool:
        return name in PROVIDERS

    async def credentials_for(self, name: str) -> Optional[dict]:
        """Stored integration credentials first, then the config key."""
        _, integration, config_attr, key = PROVIDERS[name]
        if self._repository is not None:
            stored = await self._repository.get_integration_credentials(integration, team_id=self._team_id)
            if stored:
                return stored
        value = getattr(self._settings, config_attr, None)
        return {key: value} if value else None

    async def is_available(self, name: str) -> bool:
        return self.has(name) and await self.credentials_for(name) is not None

    async def call(self, name: str, params: dict) -> dict:
        """Invoke a provider through the sandbox (and retry policy).

        Raises:
            CapabilityUnavailable: no credential configured
            ToolError: timeout or unexpected failure inside the provider
        """
        fn, integration, _, _ = PROVIDERS[name]
        credentials = await self.credentials_for(name)
        if credentials is None:
            raise CapabilityUnavailable(f"No active {integration} integration found", capability=name)
        bound = functools.partial(fn, credentials)
        logger.info(f"[Enrichment] {name} via {integration}")
        return await self._retry.run(
            lambda: self._sandbox.execute(bound, params, timeout=self._timeout),
            name=name,
        )
