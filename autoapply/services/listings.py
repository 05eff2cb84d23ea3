import json
import re
from pathlib import Path
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from pydantic import BaseModel, Field

TRACKING_PARAM_PREFIXES = ("utm_",)
TRACKING_PARAMS = {"gh_src", "source", "ref"}


class AtsProfile(BaseModel):
    name: str
    hosts: tuple[str, ...]
    fallback_template: str | None = None
    url_pattern: str | None = None


ATS_PROFILES: dict[str, AtsProfile] = {
    "greenhouse": AtsProfile(
        name="greenhouse",
        hosts=("greenhouse.io", "job-boards.greenhouse.io", "boards.greenhouse.io"),
        fallback_template="https://job-boards.greenhouse.io/{slug}/jobs/{job_id}",
        url_pattern=r"greenhouse\.io/(?P<slug>[^/?#]+)/jobs/(?P<job_id>\d+)",
    ),
    "lever": AtsProfile(
        name="lever",
        hosts=("jobs.lever.co", "lever.co"),
        fallback_template="https://jobs.lever.co/{slug}/{job_id}/apply",
        url_pattern=r"lever\.co/(?P<slug>[^/?#]+)/(?P<job_id>[0-9a-f-]{8,})",
    ),
    "ashby": AtsProfile(
        name="ashby",
        hosts=("jobs.ashbyhq.com", "ashbyhq.com"),
        fallback_template="https://jobs.ashbyhq.com/{slug}/{job_id}/application",
        url_pattern=r"ashbyhq\.com/(?P<slug>[^/?#]+)/(?P<job_id>[0-9a-f-]{8,})",
    ),
    "workday": AtsProfile(name="workday", hosts=("myworkdayjobs.com",)),
}


def detect_ats(url: str) -> str:
    lowered = (url or "").lower()
    if "myworkdayjobs.com" in lowered:
        return "workday"
    if "greenhouse.io" in lowered:
        return "greenhouse"
    if "lever.co" in lowered:
        return "lever"
    if "ashbyhq.com" in lowered:
        return "ashby"
    return "unknown"


def normalize_url(url: str) -> str:
    raw = (url or "").strip()
    if not raw:
        return ""
    parts = urlsplit(raw)
    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key.lower() not in TRACKING_PARAMS and not key.lower().startswith(TRACKING_PARAM_PREFIXES)
    ]
    path = parts.path.rstrip("/")
    return urlunsplit(
        (parts.scheme.lower(), parts.netloc.lower(), path, urlencode(query), "")
    )


class JobListing(BaseModel):
    model_config = {"frozen": True}

    id: str
    source: str
    apply_url: str
    title: str = ""
    company: str = ""
    location: str = ""
    company_slug: str | None = None
    department: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def url_key(self) -> str:
        return normalize_url(self.apply_url)

    @property
    def identity(self) -> str:
        if self.id:
            return f"{self.source}:{self.id}"
        return self.url_key

    @property
    def ats(self) -> str:
        if self.source in ATS_PROFILES:
            return self.source
        return detect_ats(self.apply_url)


def fallback_apply_url(listing: JobListing) -> str | None:
    profile = ATS_PROFILES.get(listing.ats)
    if profile is None or not profile.fallback_template:
        return None
    slug = listing.company_slug
    if not slug or not listing.id:
        return None
    return profile.fallback_template.format(slug=slug, job_id=listing.id)


def listing_from_url(url: str, *, title: str = "", company: str = "") -> JobListing:
    ats = detect_ats(url)
    slug = None
    job_id = ""
    profile = ATS_PROFILES.get(ats)
    if profile is not None and profile.url_pattern:
        match = re.search(profile.url_pattern, url, flags=re.IGNORECASE)
        if match:
            slug = match.group("slug")
            job_id = match.group("job_id")
    if not job_id:
        match = re.search(r"/jobs?/(\d+)", url)
        job_id = match.group(1) if match else ""
    return JobListing(
        id=job_id,
        source=ats if ats != "unknown" else "manual",
        apply_url=url,
        title=title,
        company=company or slug or "",
        company_slug=slug,
    )


def load_listings(path: Path) -> list[JobListing]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("jobs", [])
    listings: list[JobListing] = []
    for item in data or []:
        if not isinstance(item, dict):
            continue
        apply_url = str(item.get("apply_url") or item.get("applyUrl") or "").strip()
        if not apply_url:
            continue
        listings.append(
            JobListing(
                id=str(item.get("id") or ""),
                source=str(item.get("source") or item.get("ats") or detect_ats(apply_url)),
                apply_url=apply_url,
                title=str(item.get("title") or ""),
                company=str(item.get("company") or ""),
                location=str(item.get("location") or ""),
                company_slug=item.get("company_slug") or item.get("companySlug"),
                department=item.get("department"),
                metadata=item.get("metadata") or {},
            )
        )
    return listings


class ListingFilter(BaseModel):
    titles: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    exclude_keywords: list[str] = Field(default_factory=list)
    locations: list[str] = Field(default_factory=list)


def _norm_list(values: list[str]) -> list[str]:
    return [value.strip().lower() for value in values if value and value.strip()]


def filter_listings(
    listings: list[JobListing], prefs: ListingFilter
) -> tuple[list[JobListing], dict[str, int]]:
    counts = {"total": len(listings), "matched": 0, "skipped_title": 0, "skipped_location": 0, "skipped_exclude": 0}
    include = _norm_list(prefs.titles) + _norm_list(prefs.keywords)
    exclude = _norm_list(prefs.exclude_keywords)
    locations = _norm_list(prefs.locations)

    matched: list[JobListing] = []
    for listing in listings:
        haystack = f"{listing.title} {listing.location} {listing.department or ''}".lower()
        if exclude and any(keyword in haystack for keyword in exclude):
            counts["skipped_exclude"] += 1
            continue
        if include and not any(keyword in haystack for keyword in include):
            counts["skipped_title"] += 1
            continue
        if locations and not any(location in listing.location.lower() for location in locations):
            counts["skipped_location"] += 1
            continue
        matched.append(listing)

    counts["matched"] = len(matched)
    return matched, counts
