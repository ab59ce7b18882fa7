from sqlalchemy import (
    Column, Integer, Float, String, Boolean, Text, DateTime, ForeignKey, UniqueConstraint, Index, text
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()

RUN_TYPES = ("discovery", "sweep", "verification")
RUN_STATUSES = ("pending", "running", "success", "error")
VERIFICATION_STATUSES = ("active", "pending_verification", "not_found", "inactive")

class Region(Base):
    __tablename__ = "regions"
    id = Column(Integer, primary_key=True)
    name = Column(Text, nullable=False)
    slug = Column(Text, nullable=False, unique=True)
    type = Column(String(16), nullable=False)  # country|state|district|city
    parent_id = Column(Integer, ForeignKey("regions.id"))
    center_lat = Column(Float)
    center_lng = Column(Float)

class Seller(Base):
    __tablename__ = "sellers"
    id = Column(Integer, primary_key=True)
    platform = Column(Text, nullable=False)
    platform_seller_id = Column(Text, nullable=False)
    name = Column(Text)
    is_private = Column(Boolean)
    is_verified = Column(Boolean, default=False)
    register_date = Column(Text)
    location = Column(Text)
    active_ad_count = Column(Integer)
    total_ad_count = Column(Integer)
    organisation_name = Column(Text)
    organisation_phone = Column(Text)
    organisation_email = Column(Text)
    organisation_website = Column(Text)
    has_profile_image = Column(Boolean)
    first_seen_at = Column(DateTime(timezone=True), nullable=False)
    last_seen_at = Column(DateTime(timezone=True), nullable=False)
    last_updated_at = Column(DateTime(timezone=True))
    __table_args__ = (UniqueConstraint("platform", "platform_seller_id"),)

class SellerHistory(Base):
    __tablename__ = "seller_history"
    id = Column(Integer, primary_key=True)
    seller_id = Column(Integer, ForeignKey("sellers.id", ondelete="CASCADE"), nullable=False, index=True)
    active_ad_count = Column(Integer)
    total_ad_count = Column(Integer)
    observed_at = Column(DateTime(timezone=True), nullable=False)

class Listing(Base):
    __tablename__ = "listings"
    id = Column(Integer, primary_key=True)
    platform_listing_id = Column(Text, nullable=False, index=True)
    title = Column(Text, nullable=False)
    price = Column(Float, nullable=False)
    area = Column(Float)
    rooms = Column(Integer)
    zip_code = Column(Text)
    city = Column(Text)
    district = Column(Text)
    state = Column(Text)
    latitude = Column(Float)
    longitude = Column(Float)
    is_limited = Column(Boolean, nullable=False, default=False)
    duration_months = Column(Integer)
    platform = Column(Text, nullable=False)
    url = Column(Text, nullable=False, unique=True)
    external_id = Column(Text)
    is_commercial_seller = Column(Boolean)
    region_id = Column(Integer, ForeignKey("regions.id"), index=True)
    seller_id = Column(Integer, ForeignKey("sellers.id", ondelete="SET NULL"))
    first_seen_at = Column(DateTime(timezone=True), nullable=False)
    last_seen_at = Column(DateTime(timezone=True), nullable=False)
    last_scraped_at = Column(DateTime(timezone=True))
    last_verified_at = Column(DateTime(timezone=True))
    deactivated_at = Column(DateTime(timezone=True))
    is_active = Column(Boolean, nullable=False, default=True)
    verification_status = Column(String(32), default="active")  # active|pending_verification|not_found|inactive
    not_found_count = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"))
    __table_args__ = (Index("idx_listings_active_last_seen", "is_active", "last_seen_at"),)

class PriceHistory(Base):
    __tablename__ = "price_history"
    id = Column(Integer, primary_key=True)
    listing_id = Column(Integer, ForeignKey("listings.id", ondelete="CASCADE"), nullable=False, index=True)
    price = Column(Float, nullable=False)
    observed_at = Column(DateTime(timezone=True), nullable=False)

class ScrapeRun(Base):
    __tablename__ = "scrape_runs"
    id = Column(Integer, primary_key=True)
    type = Column(String(16), nullable=False)  # discovery|sweep|verification
    status = Column(String(16), nullable=False, default="pending")  # pending|running|success|error
    started_at = Column(DateTime(timezone=True))
    finished_at = Column(DateTime(timezone=True))
    duration_ms = Column(Integer)
    error_message = Column(Text)
    overview_pages_visited = Column(Integer)
    detail_pages_fetched = Column(Integer)
    listings_discovered = Column(Integer)
    listings_updated = Column(Integer)
    listings_verified = Column(Integer)
    listings_not_found = Column(Integer)
    price_history_inserted = Column(Integer)
    price_changes_detected = Column(Integer)
    last_overview_page = Column(Integer)
    __table_args__ = (Index("idx_scrape_runs_type_started_at", "type", "started_at"),)

RUN_METRIC_FIELDS = (
    "overview_pages_visited",
    "detail_pages_fetched",
    "listings_discovered",
    "listings_updated",
    "listings_verified",
    "listings_not_found",
    "price_history_inserted",
    "price_changes_detected",
    "last_overview_page",
)
