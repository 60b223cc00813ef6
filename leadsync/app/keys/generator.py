"""Event key generation for synchronized outreach events.

Key format: ``{platform}_{campaign_id}_{event_type}_{unique_id}_{hash8}``

- ``{key}_collision_{ms}_{base36x4}`` when the key was already generated
  within the registry's retention window;
- ``{platform}_fallback_{ms}_{hex16}`` when the input is invalid.

Keys are opaque idempotency tokens: components are canonicalized and
truncated, so callers must not parse them for business data.
"""

import hashlib
import json
import random
import re
import secrets
import string
import time
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from typing import Any, Collection, Dict, List, Mapping, Optional

from leadsync.app.core.config import settings
from leadsync.app.core.logging import get_log_context, get_logger
from leadsync.app.keys.registry import BoundedKeyRegistry

logger = get_logger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_BASE36 = string.digits + string.ascii_lowercase

MAX_COMPONENT_LENGTH = 50

# Metadata fields checked, in order, when no activity_id is given
IDENTIFIER_FIELDS = ("activity_id", "event_id", "id", "seq_id", "email_campaign_seq_id")

SMARTLEAD_TIME_FIELDS = ("sent_time", "open_time", "click_time", "reply_time", "created_at")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _random_base36(length: int) -> str:
    return "".join(random.choices(_BASE36, k=length))


def clean_component(value: Any) -> str:
    """Lower-case, strip non-alphanumerics and truncate; empty becomes 'unknown'."""
    if value is None or value == "":
        return "unknown"
    cleaned = _NON_ALNUM.sub("", str(value).lower())[:MAX_COMPONENT_LENGTH]
    return cleaned or "unknown"


def to_epoch_ms(value: Any) -> Optional[int]:
    """Convert an event timestamp to epoch milliseconds.

    Numbers are taken as milliseconds, datetimes without a timezone as UTC,
    strings as ISO-8601. Unparseable values give None.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        moment = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return int(moment.timestamp() * 1000)
    if isinstance(value, date):
        return int(datetime(value.year, value.month, value.day, tzinfo=timezone.utc).timestamp() * 1000)
    if isinstance(value, (int, float)):
        return int(value)

    text = str(value).strip()
    try:
        return int(float(text))
    except ValueError:
        pass
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return to_epoch_ms(parsed)


@dataclass
class KeyGeneratorStats:
    """Generation counters."""
    total_generated: int = 0
    collisions_detected: int = 0
    fallbacks_used: int = 0
    invalid_inputs: int = 0
    collision_rate: float = 0.0
    registry_size: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class EventKeyGenerator:
    """Collision-resistant event key generator.

    Each instance owns its registry; construct one per sync pipeline (or
    share one explicitly) rather than relying on a process-wide default.

    Example:
        >>> keys = EventKeyGenerator(max_cache_size=1000)
        >>> keys.generate(
        ...     platform="lemlist", campaign_id="camp-678",
        ...     event_type="emailsSent", email="a@b.com", activity_id="act1",
        ... )
        'lemlist_camp678_emailssent_act1_...'
    """

    def __init__(
        self,
        max_cache_size: Optional[int] = None,
        allowed_platforms: Optional[Collection[str]] = None,
    ):
        """Initialize the generator.

        Args:
            max_cache_size: Registry capacity (defaults to settings)
            allowed_platforms: Restrict valid platforms; None accepts any
        """
        size = max_cache_size if max_cache_size is not None else settings.event_key_cache_size
        self.registry = BoundedKeyRegistry(max_size=size)
        self.allowed_platforms = (
            frozenset(p.lower() for p in allowed_platforms) if allowed_platforms else None
        )
        self._total_generated = 0
        self._collisions_detected = 0
        self._fallbacks_used = 0
        self._invalid_inputs = 0

    @property
    def max_cache_size(self) -> int:
        return self.registry.max_size

    def generate(
        self,
        *,
        platform: Optional[str] = None,
        campaign_id: Any = None,
        event_type: Optional[str] = None,
        email: Optional[str] = None,
        activity_id: Any = None,
        timestamp: Any = None,
        namespace: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """Generate a unique, collision-resistant event key.

        Never raises: invalid input or an unexpected failure yields a
        fallback key instead.

        Args:
            platform: Source platform (smartlead, lemlist, ...)
            campaign_id: Campaign identifier
            event_type: Event type (emailsSent, opened, clicked, ...)
            email: Lead email address
            activity_id: Platform-specific activity identifier
            timestamp: Event time (datetime, ISO string or epoch ms)
            namespace: Namespace context, "default" when omitted
            metadata: Additional identifying data

        Returns:
            The event key
        """
        self._total_generated += 1

        try:
            errors = self._validate(platform, campaign_id, event_type, email)
            if errors:
                self._invalid_inputs += 1
                logger.warning(
                    f"[EventKey] Invalid input: {', '.join(errors)}",
                    extra=get_log_context(platform=platform),
                )
                return self._fallback_key(platform)

            clean_platform = clean_component(platform)
            clean_campaign = clean_component(campaign_id)
            clean_event_type = clean_component(event_type)
            clean_email = clean_component(email)
            timestamp_ms = to_epoch_ms(timestamp)

            unique_id = self._unique_identifier(clean_email, activity_id, timestamp_ms, metadata)

            hash_suffix = self._hash_suffix({
                "platform": clean_platform,
                "campaignId": clean_campaign,
                "eventType": clean_event_type,
                "email": clean_email,
                "uniqueId": unique_id,
                "timestamp": timestamp_ms,
                "namespace": namespace or "default",
            })

            event_key = f"{clean_platform}_{clean_campaign}_{clean_event_type}_{unique_id}_{hash_suffix}"
            return self._resolve_collision(event_key)
        except Exception as e:
            self._invalid_inputs += 1
            logger.error(
                f"[EventKey] Generation failed: {type(e).__name__}: {e}",
                extra=get_log_context(platform=platform),
            )
            return self._fallback_key(platform)

    def for_lemlist_activity(
        self,
        activity: Mapping[str, Any],
        campaign_id: Any = None,
        namespace: str = "default",
    ) -> str:
        """Generate the key for a lemlist activity payload."""
        lead = activity.get("lead")
        lead_email = lead.get("email") if isinstance(lead, Mapping) else None
        return self.generate(
            platform="lemlist",
            campaign_id=campaign_id or activity.get("campaignId"),
            event_type=activity.get("type"),
            email=lead_email or activity.get("email"),
            activity_id=activity.get("id") or activity.get("_id"),
            timestamp=activity.get("date") or activity.get("createdAt"),
            namespace=namespace,
            metadata={
                "activity_id": activity.get("id"),
                "_id": activity.get("_id"),
                "leadId": activity.get("leadId"),
                "campaignName": activity.get("campaignName"),
            },
        )

    def for_smartlead_event(
        self,
        event: Mapping[str, Any],
        event_type: str,
        campaign_id: Any,
        email: str,
        namespace: str = "default",
    ) -> str:
        """Generate the key for a Smartlead campaign statistics row."""
        timestamp = next((event.get(f) for f in SMARTLEAD_TIME_FIELDS if event.get(f)), None)
        return self.generate(
            platform="smartlead",
            campaign_id=campaign_id,
            event_type=event_type,
            email=email,
            activity_id=event.get("id") or event.get("email_campaign_seq_id"),
            timestamp=timestamp,
            namespace=namespace,
            metadata={
                "event_id": event.get("id"),
                "email_campaign_seq_id": event.get("email_campaign_seq_id"),
                "lead_id": event.get("lead_id"),
                "seq_id": event.get("seq_id"),
            },
        )

    def detect_collision(self, event_key: str) -> bool:
        return event_key in self.registry

    def register(self, event_key: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.registry.register(event_key, metadata)

    def clear_registry(self) -> None:
        self.registry.clear()

    def stats(self) -> KeyGeneratorStats:
        total = self._total_generated
        return KeyGeneratorStats(
            total_generated=total,
            collisions_detected=self._collisions_detected,
            fallbacks_used=self._fallbacks_used,
            invalid_inputs=self._invalid_inputs,
            collision_rate=self._collisions_detected / total if total else 0.0,
            registry_size=len(self.registry),
        )

    def _validate(self, platform: Any, campaign_id: Any, event_type: Any, email: Any) -> List[str]:
        errors = []
        for name, value in (
            ("platform", platform),
            ("campaign_id", campaign_id),
            ("event_type", event_type),
            ("email", email),
        ):
            if value is None or str(value).strip() == "":
                errors.append(f"{name} is required")

        if platform and self.allowed_platforms is not None:
            if str(platform).lower() not in self.allowed_platforms:
                errors.append(f"platform must be one of {sorted(self.allowed_platforms)}")

        if email and not _EMAIL.match(str(email)):
            errors.append("email format is invalid")
        return errors

    def _unique_identifier(
        self,
        clean_email: str,
        activity_id: Any,
        timestamp_ms: Optional[int],
        metadata: Optional[Mapping[str, Any]],
    ) -> str:
        metadata = metadata or {}
        candidates = [activity_id] + [metadata.get(name) for name in IDENTIFIER_FIELDS]
        for candidate in candidates:
            if candidate:
                return clean_component(candidate)

        self._fallbacks_used += 1
        logger.warning("[EventKey] Using fallback identifier for event")
        moment = timestamp_ms if timestamp_ms is not None else _now_ms()
        return f"{clean_email}{moment}{_random_base36(6)}"[:MAX_COMPONENT_LENGTH]

    @staticmethod
    def _hash_suffix(hash_data: Dict[str, Any]) -> str:
        payload = json.dumps(hash_data, sort_keys=True, separators=(",", ":"))
        # Fingerprint only, not a security boundary
        return hashlib.md5(payload.encode("utf-8"), usedforsecurity=False).hexdigest()[:8]

    def _resolve_collision(self, event_key: str) -> str:
        if not self.detect_collision(event_key):
            self.register(event_key)
            return event_key

        self._collisions_detected += 1
        collision_key = f"{event_key}_collision_{_now_ms()}_{_random_base36(4)}"
        logger.warning(
            f"[EventKey] Collision detected, using {collision_key}",
            extra=get_log_context(event_key=event_key),
        )
        self.register(collision_key, {"collision": True, "original_key": event_key})
        return collision_key

    def _fallback_key(self, platform: Any) -> str:
        fallback_key = f"{clean_component(platform)}_fallback_{_now_ms()}_{secrets.token_hex(8)}"
        logger.error(
            f"[EventKey] Generated fallback key: {fallback_key}",
            extra=get_log_context(event_key=fallback_key),
        )
        self.registry.register(fallback_key, {"fallback": True})
        return fallback_key
