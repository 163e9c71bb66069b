"""
Google Business Profile client.

Locations, local posts, reviews, AI review replies, insight counters and
category suggestions for one connected account.

Usage:
    async with GBPClient(account_id, token_manager, completion) as gbp:
        locations = await gbp.get_locations()
        await gbp.create_post(locations[0]["location_id"], "Now booking...", "STANDARD")
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from autopilot.errors import ExternalServiceError
from autopilot.google_api import GoogleAPIClient
from autopilot.google_tokens import GoogleTokenManager
from autopilot.http_client import DEFAULT_TIMEOUT
from autopilot.llm import CompletionService

logger = logging.getLogger("autopilot.gbp")

GBP_API_BASE = "https://mybusinessbusinessinformation.googleapis.com/v1"
GBP_ACCOUNTS_API = "https://mybusinessaccountmanagement.googleapis.com/v1/accounts"

TOPIC_TYPES = ("STANDARD", "OFFER", "EVENT")

DENTAL_CATEGORIES = [
    "Dentist",
    "Cosmetic Dentist",
    "Pediatric Dentist",
    "Orthodontist",
    "Oral Surgeon",
    "Endodontist",
    "Periodontist",
    "Emergency Dental Service",
    "Dental Implants Provider",
    "Teeth Whitening Service",
]

STAR_RATING_MAP = {"ONE": 1, "TWO": 2, "THREE": 3, "FOUR": 4, "FIVE": 5}

REVIEW_REPLY_MAX_WORDS = 150


class BusinessProfileError(ExternalServiceError):
    """Business Profile API failure."""


@dataclass
class Review:
    review_id: str
    reviewer: str
    rating: int
    comment: str = ""
    create_time: str = ""
    reply: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Insights:
    views: int = 0
    searches: int = 0
    actions: int = 0
    calls: int = 0
    website_clicks: int = 0
    direction_requests: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def _categories(raw: Dict[str, Any]) -> List[str]:
    cats = raw.get("categories") or {}
    names = [(cats.get("primaryCategory") or {}).get("displayName")]
    names.extend(c.get("displayName") for c in cats.get("additionalCategories") or [])
    return [n for n in names if n]


def _metric(data: Dict[str, Any], name: str) -> int:
    values = (data.get(name) or {}).get("metricValues") or []
    if not values:
        return 0
    try:
        return int(values[0].get("value") or 0)
    except (TypeError, ValueError):
        return 0


def _limit_words(text: str, limit: int) -> str:
    words = text.split()
    if len(words) <= limit:
        return text.strip()
    return " ".join(words[:limit])


class GBPClient(GoogleAPIClient):
    service_name = "Google Business Profile"
    error_class = BusinessProfileError
    access_denied_message = (
        "Access denied to Google Business Profile. Verify permissions are granted."
    )

    def __init__(
        self,
        account_id: str,
        tokens: GoogleTokenManager,
        completion: Optional[CompletionService] = None,
        timeout: int = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__(account_id, tokens, timeout=timeout)
        self.completion = completion

    async def get_locations(self) -> List[Dict[str, Any]]:
        accounts = await self._request("GET", GBP_ACCOUNTS_API)
        account_list = accounts.get("accounts") or [] if isinstance(accounts, dict) else []
        account_name = account_list[0].get("name") if account_list else None
        if not account_name:
            return []

        data = await self._request("GET", f"{GBP_API_BASE}/{account_name}/locations")
        locations = []
        data = data if isinstance(data, dict) else {}
        for loc in data.get("locations") or []:
            addr = loc.get("storefrontAddress") or {}
            parts = list(addr.get("addressLines") or []) + [
                addr.get("locality"),
                addr.get("administrativeArea"),
                addr.get("postalCode"),
            ]
            locations.append(
                {
                    "location_id": loc.get("name", ""),
                    "name": loc.get("title", ""),
                    "address": ", ".join(p for p in parts if p),
                    "phone": (loc.get("phoneNumbers") or {}).get("primaryPhone", ""),
                    "categories": _categories(loc),
                    "website_url": loc.get("websiteUri", ""),
                }
            )
        return locations

    async def create_post(
        self,
        location_id: str,
        body: str,
        topic_type: str = "STANDARD",
        call_to_action: Optional[Dict[str, str]] = None,
        media_url: Optional[str] = None,
    ) -> Dict[str, str]:
        if topic_type not in TOPIC_TYPES:
            raise ValueError(f"Invalid topic type {topic_type!r}")
        payload: Dict[str, Any] = {
            "languageCode": "en",
            "summary": body,
            "topicType": topic_type,
        }
        if call_to_action:
            payload["callToAction"] = {
                "actionType": call_to_action.get("action_type", ""),
                "url": call_to_action.get("url", ""),
            }
        if media_url:
            payload["media"] = [{"mediaFormat": "PHOTO", "sourceUrl": media_url}]

        data = await self._request("POST", f"{GBP_API_BASE}/{location_id}/localPosts", json_data=payload)
        data = data if isinstance(data, dict) else {}
        logger.info("Created GBP post on %s", location_id)
        return {
            "name": data.get("name", ""),
            "state": data.get("state", ""),
            "topic_type": data.get("topicType", ""),
            "create_time": data.get("createTime", ""),
        }

    async def get_reviews(self, location_id: str) -> List[Review]:
        data = await self._request("GET", f"{GBP_API_BASE}/{location_id}/reviews")
        reviews = []
        data = data if isinstance(data, dict) else {}
        for r in data.get("reviews") or []:
            reviews.append(
                Review(
                    review_id=r.get("name", ""),
                    reviewer=(r.get("reviewer") or {}).get("displayName", "Anonymous"),
                    rating=STAR_RATING_MAP.get(r.get("starRating", ""), 0),
                    comment=r.get("comment", ""),
                    create_time=r.get("createTime", ""),
                    reply=(r.get("reviewReply") or {}).get("comment"),
                )
            )
        return reviews

    async def generate_review_response(
        self, review: Review, practice_profile: Dict[str, Any]
    ) -> str:
        """Draft a reply under 150 words; tone follows the star rating."""
        if self.completion is None:
            raise BusinessProfileError("A completion service is required to draft replies")
        positive = review.rating >= 4
        tone = "warm and grateful" if positive else "empathetic and professional"
        guidance = (
            "- Thank by name, mention the team, warm closing"
            if positive
            else "- Show empathy, invite them to contact the office directly, never argue, "
            "never disclose or confirm any health information"
        )
        prompt = (
            "You are responding to a Google review for a dental practice.\n"
            f"Practice: {practice_profile.get('name', 'our practice')}\n"
            f"Reviewer: {review.reviewer}\n"
            f"Rating: {review.rating}/5\n"
            f'Review: "{review.comment}"\n\n'
            "Guidelines:\n"
            f"- Keep under {REVIEW_REPLY_MAX_WORDS} words\n"
            f"- Tone: {tone}\n"
            f"{guidance}\n"
            "- Do NOT use clinical terms or make health claims\n"
            "- Sign off with the practice name\n\n"
            "Write ONLY the response text, no quotes or metadata."
        )
        reply = await self.completion.complete(prompt, max_tokens=256)
        return _limit_words(reply, REVIEW_REPLY_MAX_WORDS)

    async def get_insights(self, location_id: str, period: str = "MONTH") -> Insights:
        """Aggregated counters; all zeros when the API call fails."""
        try:
            data = await self._request(
                "GET", f"{GBP_API_BASE}/{location_id}/insights", params={"period": period}
            )
        except ExternalServiceError as exc:
            logger.warning("Insights unavailable for %s: %s", location_id, exc)
            return Insights()
        data = data if isinstance(data, dict) else {}
        website = _metric(data, "ACTIONS_WEBSITE")
        phone = _metric(data, "ACTIONS_PHONE")
        directions = _metric(data, "ACTIONS_DRIVING_DIRECTIONS")
        return Insights(
            views=_metric(data, "VIEWS_MAPS") + _metric(data, "VIEWS_SEARCH"),
            searches=_metric(data, "QUERIES_DIRECT") + _metric(data, "QUERIES_INDIRECT"),
            actions=website + phone + directions,
            calls=phone,
            website_clicks=website,
            direction_requests=directions,
        )

    async def suggest_category_optimizations(self, location_id: str) -> List[Dict[str, str]]:
        """Standard dental categories the listing does not use yet."""
        try:
            data = await self._request("GET", f"{GBP_API_BASE}/{location_id}")
        except ExternalServiceError as exc:
            logger.warning("Category lookup failed for %s: %s", location_id, exc)
            return []
        current = set(_categories(data if isinstance(data, dict) else {}))
        return [
            {
                "category": cat,
                "reason": f'Adding "{cat}" can improve visibility for related searches',
            }
            for cat in DENTAL_CATEGORIES
            if cat not in current
        ]
