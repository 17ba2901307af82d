"""Field mapper for converting Humanitix events into canonical events."""
import hashlib
import json
import logging
import math
import re
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from bs4 import BeautifulSoup
from dateutil import parser as date_parser
from dateutil import tz

from processor.models import (
    CanonicalEvent,
    OrganizerRecord,
    RawEvent,
    VenueRecord,
)

logger = logging.getLogger(__name__)

# Ordered source -> target renames. First present source wins per target.
DIRECT_FIELDS: Tuple[Tuple[str, str], ...] = (
    ('_id', 'external_id'),
    ('id', 'external_id'),
    ('name', 'title'),
    ('title', 'title'),
    ('description', 'content'),
    ('summary', 'excerpt'),
    ('short_description', 'excerpt'),
    ('startDate', 'start_at'),
    ('start_date', 'start_at'),
    ('endDate', 'end_at'),
    ('end_date', 'end_at'),
    ('timezone', 'timezone'),
    ('currency', 'currency'),
    ('url', 'url'),
)

DEFAULT_COST = 'Free'
DEFAULT_TIMEZONE = 'UTC'
CURRENCY_SYMBOL = '$'
EXCERPT_WORDS = 55

POSTAL_CODE_PATTERN = re.compile(r'\b(\d{5}(?:-\d{4})?)\b')

# source key -> metadata key, values stored as text or JSON
METADATA_FIELDS = (
    ('slug', 'humanitix_slug'),
    ('category', 'humanitix_category'),
    ('keywords', 'humanitix_keywords'),
    ('totalCapacity', 'humanitix_capacity'),
    ('ticketTypes', 'humanitix_ticket_types'),
    ('accessibility', 'humanitix_accessibility'),
    ('classification', 'humanitix_classification'),
    ('organiserId', 'humanitix_organiser_id'),
    ('public', 'humanitix_public'),
    ('published', 'humanitix_published'),
    ('markedAsSoldOut', 'humanitix_sold_out'),
)


def _has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ''
    return True


def _text(value: Any) -> str:
    """Render a scalar as stripped text; containers give an empty string."""
    if value is None or isinstance(value, (Mapping, list, tuple)):
        return ''
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value).strip()


def _plain_text(html: str) -> str:
    if not html:
        return ''
    text = BeautifulSoup(html, 'html.parser').get_text(' ', strip=True)
    return ' '.join(text.split())


def _encode(value: Any) -> str:
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, sort_keys=True, default=str)
    return _text(value)


def format_price(value: Any) -> str:
    """
    Format a price for display.

    Args:
        value: Price as number or numeric string

    Returns:
        Price without trailing zeros for whole amounts (25, 25.50)
    """
    try:
        number = float(value)
    except (TypeError, ValueError):
        return _text(value)
    if number != number or number in (float('inf'), float('-inf')):
        return _text(value)
    if number.is_integer():
        return str(int(number))
    return f"{number:.2f}"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _finite_number(value: Any) -> Optional[float]:
    """Return value as a finite float, or None for non-numeric values, NaN and infinities."""
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class FieldMapper:
    """Maps Humanitix event documents to CanonicalEvent objects."""

    def __init__(self, extra_metadata_fields: Optional[Dict[str, str]] = None):
        """
        Initialize the field mapper.

        Args:
            extra_metadata_fields: Additional source key -> metadata key
                mappings copied verbatim into the event metadata
        """
        self.metadata_fields = list(METADATA_FIELDS)
        if extra_metadata_fields:
            self.metadata_fields.extend(extra_metadata_fields.items())

    def map(self, raw_event: RawEvent) -> CanonicalEvent:
        """
        Map a raw Humanitix event to a CanonicalEvent.

        Never raises for a mapping input; fields that cannot be resolved are
        left at their defaults and reported in CanonicalEvent.warnings.

        Args:
            raw_event: Event document from the API

        Returns:
            CanonicalEvent
        """
        warnings: List[str] = []
        if not isinstance(raw_event, Mapping):
            warnings.append('event document is not a mapping')
            raw_event = {}

        direct = self._apply_direct_fields(raw_event)

        timezone_name = _text(direct.get('timezone')) or DEFAULT_TIMEZONE
        tzinfo = self._resolve_timezone(timezone_name)
        if tzinfo is None:
            warnings.append(f"unknown timezone '{timezone_name}', using UTC")
            timezone_name = DEFAULT_TIMEZONE
            tzinfo = tz.UTC

        start_at = self._parse_datetime(direct.get('start_at'), tzinfo)
        if start_at is None:
            if _has_value(direct.get('start_at')):
                warnings.append(f"invalid start date '{_text(direct.get('start_at'))}'")
            else:
                warnings.append('missing start date')

        end_at = self._parse_datetime(direct.get('end_at'), tzinfo)
        if end_at is None:
            if _has_value(direct.get('end_at')):
                warnings.append(f"invalid end date '{_text(direct.get('end_at'))}'")
            end_at = start_at

        if start_at and end_at and end_at < start_at:
            warnings.append('end date is before start date')

        title = _plain_text(_text(direct.get('title')))
        content = _text(direct.get('content'))
        excerpt = _plain_text(_text(direct.get('excerpt'))) or self._derive_excerpt(content)

        external_id = _text(direct.get('external_id'))
        if not external_id:
            external_id = self.fallback_external_id(title, _text(direct.get('start_at')))
            warnings.append('missing external id, using content hash')

        return CanonicalEvent(
            external_id=external_id,
            title=title,
            content=content,
            excerpt=excerpt,
            start_at=start_at,
            end_at=end_at,
            timezone=timezone_name,
            cost_summary=self.format_cost(raw_event),
            currency=_text(direct.get('currency')),
            url=_text(direct.get('url')),
            venue=self.map_venue(raw_event),
            organizer=self.map_organizer(raw_event),
            image_url=self.extract_image_url(raw_event),
            metadata=self._collect_metadata(raw_event),
            warnings=tuple(warnings)
        )

    def _apply_direct_fields(self, raw_event: RawEvent) -> Dict[str, Any]:
        direct: Dict[str, Any] = {}
        for source_key, target in DIRECT_FIELDS:
            if target not in direct and _has_value(raw_event.get(source_key)):
                direct[target] = raw_event[source_key]
        return direct

    def _resolve_timezone(self, name: str):
        try:
            return tz.gettz(name)
        except (ValueError, TypeError, OSError):
            return None

    def _parse_datetime(self, value: Any, tzinfo) -> Optional[datetime]:
        """
        Parse a date value, ISO 8601 first, then tolerant parsing.

        Args:
            value: ISO string, free-form date string or epoch seconds
            tzinfo: Timezone applied to naive values

        Returns:
            Timezone-aware datetime or None if parsing fails
        """
        if _is_number(value):
            try:
                return datetime.fromtimestamp(value, tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                return None

        if not isinstance(value, str) or not value.strip():
            return None

        text = value.strip()
        try:
            parsed = date_parser.isoparse(text)
        except (ValueError, OverflowError):
            try:
                parsed = date_parser.parse(text)
            except (ValueError, OverflowError):
                return None

        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=tzinfo)
        return parsed

    def _derive_excerpt(self, content: str) -> str:
        words = _plain_text(content).split()
        if len(words) <= EXCERPT_WORDS:
            return ' '.join(words)
        return ' '.join(words[:EXCERPT_WORDS]) + '...'

    def fallback_external_id(self, title: str, start: str) -> str:
        """
        Generate a stable identifier for events the API sent without one.

        Args:
            title: Event title
            start: Raw start date text

        Returns:
            SHA256 hex digest of title and start date
        """
        composite = f"{title}|{start}"
        return hashlib.sha256(composite.encode('utf-8')).hexdigest()

    def format_cost(self, raw_event: RawEvent) -> str:
        """
        Summarise pricing as display text.

        Args:
            raw_event: Event document from the API

        Returns:
            Cost summary, "Free" when no pricing is available
        """
        pricing = raw_event.get('pricing')

        if isinstance(pricing, list):
            parts = []
            for ticket in pricing:
                if not isinstance(ticket, Mapping) or ticket.get('price') is None:
                    continue
                price = f"{CURRENCY_SYMBOL}{format_price(ticket['price'])}"
                name = _text(ticket.get('name'))
                parts.append(f"{name}: {price}" if name else price)
            if parts:
                return ', '.join(parts)
        elif _finite_number(pricing) is not None:
            return f"{CURRENCY_SYMBOL}{format_price(pricing)}"
        elif isinstance(pricing, Mapping):
            cost = self._price_range(
                pricing.get('minimumPrice'), pricing.get('maximumPrice')
            )
            if cost:
                return cost

        if pricing in (None, '', []) and isinstance(raw_event.get('ticketTypes'), list):
            prices = []
            for ticket in raw_event['ticketTypes']:
                if not isinstance(ticket, Mapping) or ticket.get('disabled'):
                    continue
                price = _finite_number(ticket.get('price'))
                if price is not None:
                    prices.append(price)
            if prices:
                return self._price_range(min(prices), max(prices))

        return DEFAULT_COST

    def _price_range(self, low: Any, high: Any) -> str:
        if low is None and high is None:
            return ''
        if low is None or high is None or format_price(low) == format_price(high):
            single = low if low is not None else high
            return f"{CURRENCY_SYMBOL}{format_price(single)}"
        return (
            f"{CURRENCY_SYMBOL}{format_price(low)} - "
            f"{CURRENCY_SYMBOL}{format_price(high)}"
        )

    def map_venue(self, raw_event: RawEvent) -> Optional[VenueRecord]:
        """
        Extract the embedded venue, normalising Humanitix eventLocation data.

        Args:
            raw_event: Event document from the API

        Returns:
            VenueRecord or None if the event has no physical venue
        """
        location = None
        for key in ('venue', 'eventLocation', 'location'):
            candidate = raw_event.get(key)
            if isinstance(candidate, Mapping) and candidate:
                location = candidate
                break
        if location is None:
            return None

        name = _text(location.get('venueName')) or _text(location.get('name'))
        address = _text(location.get('address'))
        if not name and not address:
            return None

        postal_code = (
            _text(location.get('postal_code'))
            or _text(location.get('postalCode'))
            or _text(location.get('zip'))
        )
        if not postal_code and address:
            match = POSTAL_CODE_PATTERN.search(address)
            if match:
                postal_code = match.group(1)

        return VenueRecord(
            name=name or 'Unknown Venue',
            external_id=_text(location.get('id')) or _text(location.get('_id')),
            address=address,
            city=_text(location.get('city')),
            region=_text(location.get('region')) or _text(location.get('state')),
            postal_code=postal_code,
            country=_text(location.get('country')),
            phone=_text(location.get('phone')),
            website=_text(location.get('website')),
            lat_lng=self._parse_lat_lng(location.get('latLng'))
        )

    def _parse_lat_lng(self, value: Any) -> Optional[Tuple[float, float]]:
        if isinstance(value, Mapping):
            value = (value.get('lat'), value.get('lng'))
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            return None
        lat, lng = _finite_number(value[0]), _finite_number(value[1])
        if lat is None or lng is None:
            return None
        return lat, lng

    def map_organizer(self, raw_event: RawEvent) -> Optional[OrganizerRecord]:
        """
        Extract the embedded organizer.

        Args:
            raw_event: Event document from the API

        Returns:
            OrganizerRecord or None if absent
        """
        organizer = raw_event.get('organizer') or raw_event.get('organiser')
        if not isinstance(organizer, Mapping) or not organizer:
            return None

        return OrganizerRecord(
            name=_text(organizer.get('name')) or 'Unknown Organizer',
            external_id=_text(organizer.get('id')) or _text(organizer.get('_id')),
            email=_text(organizer.get('email')),
            phone=_text(organizer.get('phone')),
            website=_text(organizer.get('website'))
        )

    def extract_image_url(self, raw_event: RawEvent) -> Optional[str]:
        """Return the feature image URL, falling back to the banner image."""
        for key in ('featureImage', 'bannerImage', 'image'):
            image = raw_event.get(key)
            if isinstance(image, Mapping):
                image = image.get('url')
            url = _text(image)
            if url:
                return url
        return None

    def _collect_metadata(self, raw_event: RawEvent) -> Dict[str, str]:
        metadata: Dict[str, str] = {}
        for source_key, meta_key in self.metadata_fields:
            value = raw_event.get(source_key)
            if not _has_value(value):
                continue
            if source_key == 'keywords' and isinstance(value, list):
                metadata[meta_key] = ', '.join(_text(item) for item in value)
            else:
                metadata[meta_key] = _encode(value)

        if 'humanitix_capacity' not in metadata and isinstance(raw_event.get('ticketTypes'), list):
            capacity = 0
            for ticket in raw_event['ticketTypes']:
                if isinstance(ticket, Mapping) and not ticket.get('disabled'):
                    quantity = _finite_number(ticket.get('quantity') or 0)
                    if quantity is not None:
                        capacity += int(quantity)
            if capacity:
                metadata['humanitix_capacity'] = str(capacity)

        location = raw_event.get('eventLocation')
        if isinstance(location, Mapping):
            if _has_value(location.get('instructions')):
                metadata['humanitix_location_instructions'] = _text(location['instructions'])
            if _has_value(location.get('onlineUrl')):
                metadata['humanitix_online_url'] = _text(location['onlineUrl'])

        return metadata
