from datetime import datetime, timezone

from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session

from autoapply.db import models
from autoapply.services.listings import JobListing, normalize_url
from autoapply.services.results import ApplyResult


def get_listing(db: Session, *, identity: str) -> models.ListingRecord | None:
    return db.scalar(select(models.ListingRecord).where(models.ListingRecord.identity == identity))


def upsert_listing(db: Session, *, listing: JobListing) -> models.ListingRecord:
    record = get_listing(db, identity=listing.identity)
    payload = listing.model_dump(mode="json")
    if record:
        record.apply_url = listing.apply_url
        record.url_key = listing.url_key
        record.title = listing.title or record.title
        record.company = listing.company or record.company
        record.location = listing.location or record.location
        record.company_slug = listing.company_slug or record.company_slug
        record.raw_payload = payload
        return record

    record = models.ListingRecord(
        identity=listing.identity,
        source=listing.source,
        external_id=listing.id,
        apply_url=listing.apply_url,
        url_key=listing.url_key,
        title=listing.title or None,
        company=listing.company or None,
        location=listing.location or None,
        company_slug=listing.company_slug,
        raw_payload=payload,
    )
    db.add(record)
    db.flush()
    return record


def find_applied(db: Session, *, key: str) -> models.AppliedListing | None:
    stmt = select(models.AppliedListing).where(
        or_(
            models.AppliedListing.identity == key,
            models.AppliedListing.url_key == normalize_url(key),
        )
    )
    return db.scalar(stmt.limit(1))


def record_applied(db: Session, *, listing: JobListing, result: ApplyResult) -> models.AppliedListing:
    entry = find_applied(db, key=listing.identity)
    now = datetime.now(timezone.utc)
    if entry:
        entry.status = result.status.value
        entry.message = result.message
        entry.applied_at = now
        return entry

    entry = models.AppliedListing(
        identity=listing.identity,
        url_key=listing.url_key,
        listing_id=listing.id,
        status=result.status.value,
        message=result.message,
        applied_at=now,
    )
    db.add(entry)
    db.flush()
    return entry


def clear_applied(db: Session, *, key: str) -> int:
    stmt = delete(models.AppliedListing).where(
        or_(
            models.AppliedListing.identity == key,
            models.AppliedListing.url_key == normalize_url(key),
        )
    )
    result = db.execute(stmt)
    return int(result.rowcount or 0)


def list_applied(db: Session, *, limit: int = 500) -> list[models.AppliedListing]:
    stmt = select(models.AppliedListing).order_by(models.AppliedListing.applied_at.desc()).limit(limit)
    return list(db.scalars(stmt).all())
