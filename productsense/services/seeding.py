"""Catalog seeding for prompts and achievements. Safe to run repeatedly."""
import logging

from sqlalchemy.orm import Session

from productsense.models import Achievement, Prompt
from productsense.services.achievements_service import DEFAULT_ACHIEVEMENTS

logger = logging.getLogger(__name__)

DEFAULT_PROMPTS = [
    {
        "name": "TikTok Sound Discovery",
        "company": "TikTok",
        "surface": "Discovery",
        "objective": "Growth",
        "difficulty": 1,
        "constraints": ["No additional server costs"],
        "prompt_text": "Users struggle to discover trending sounds early. Design a feature to help users find "
                       "and use trending sounds 48 hours before they peak.",
    },
    {
        "name": "TikTok Creator Onboarding",
        "company": "TikTok",
        "surface": "Creator Tools",
        "objective": "Retention",
        "difficulty": 2,
        "constraints": ["Data retention: 30 days", "International launch required"],
        "prompt_text": "New TikTok creators have a 40% drop-off rate within the first 7 days of joining the "
                       "platform. Design an onboarding improvement to increase 30-day creator retention by 15%.",
    },
    {
        "name": "TikTok Live Streaming Growth",
        "company": "TikTok",
        "surface": "Live",
        "objective": "Engagement",
        "difficulty": 3,
        "constraints": ["Must work on mobile", "Max 2 new features"],
        "prompt_text": "TikTok Live has lower engagement than competitors. Only 5% of daily active users engage "
                       "with live streams. Design a feature to double live stream engagement within 6 months.",
    },
    {
        "name": "Spotify Podcast Discovery",
        "company": "Spotify",
        "surface": "Podcasts",
        "objective": "Engagement",
        "difficulty": 1,
        "constraints": ["Must integrate with existing recommendation engine"],
        "prompt_text": "Only 30% of Spotify users who listen to music have tried podcasts. Design a feature to "
                       "increase podcast adoption among music listeners by 25%.",
    },
    {
        "name": "Spotify Family Plan Sharing",
        "company": "Spotify",
        "surface": "Subscription",
        "objective": "Monetization",
        "difficulty": 2,
        "constraints": ["Must prevent abuse", "Keep support costs low"],
        "prompt_text": "15% of Family Plan subscribers share accounts with non-household members, costing $200M "
                       "annually. Design a solution to reduce abuse while maintaining user satisfaction.",
    },
    {
        "name": "Spotify Artist-Fan Connection",
        "company": "Spotify",
        "surface": "Artist Tools",
        "objective": "Retention",
        "difficulty": 3,
        "constraints": ["Revenue share model required", "Artists must opt-in"],
        "prompt_text": "Artists want deeper connections with their superfans. Design a feature that enables "
                       "artists to engage with their top 1% of listeners while maintaining platform scalability.",
    },
    {
        "name": "Notion Template Marketplace",
        "company": "Notion",
        "surface": "Templates",
        "objective": "Growth",
        "difficulty": 1,
        "constraints": ["Creator payments required", "3-month timeline"],
        "prompt_text": "Users spend 2+ hours building their first workspace. Design a template marketplace that "
                       "reduces time-to-value for new users by 70%.",
    },
    {
        "name": "Airbnb Host Earnings Transparency",
        "company": "Airbnb",
        "surface": "Host Dashboard",
        "objective": "Retention",
        "difficulty": 2,
        "constraints": ["Must be privacy-compliant", "No new data collection"],
        "prompt_text": "New hosts struggle to set competitive prices. 40% of listings are priced incorrectly, "
                       "leading to low booking rates. Design a feature to help hosts optimize pricing.",
    },
    {
        "name": "Airbnb Guest Safety",
        "company": "Airbnb",
        "surface": "Booking Flow",
        "objective": "Quality / Trust",
        "difficulty": 3,
        "constraints": ["Legal compliance required", "Global rollout"],
        "prompt_text": "Safety concerns prevent 20% of potential guests from booking. Design features to increase "
                       "guest confidence in safety without adding friction to the booking process.",
    },
]


def seed_prompts(db: Session, prompts=None) -> int:
    """Insert catalog prompts that are missing by name. Returns how many were added."""
    existing = {name for (name,) in db.query(Prompt.name)}
    added = 0
    for data in prompts if prompts is not None else DEFAULT_PROMPTS:
        if data["name"] in existing:
            continue
        db.add(Prompt(**data))
        added += 1
    db.commit()
    return added


def seed_achievements(db: Session) -> int:
    existing = {code for (code,) in db.query(Achievement.code)}
    added = 0
    for data in DEFAULT_ACHIEVEMENTS:
        if data["code"] in existing:
            continue
        db.add(Achievement(**data))
        added += 1
    db.commit()
    return added


def seed_catalog(db: Session) -> None:
    prompts = seed_prompts(db)
    achievements = seed_achievements(db)
    logger.info("Catalog seeded: %s new prompts, %s new achievements", prompts, achievements)
