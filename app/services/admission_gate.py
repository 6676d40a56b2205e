"""
Admission Gate - quota checks for uploads and renders.

The gate reads a fresh usage snapshot and compares ``used + delta`` against
the account's tier ceiling. It holds no lock: two concurrent admissions for
the same account can both pass and together overshoot the ceiling.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional, Union

from app.config import AccountTier, Settings, get_settings, is_allowed_mime_type
from app.errors import InvalidRequestError, QuotaExceededError
from app.services.storage_accountant import StorageAccountant, StorageUsageSnapshot
from app.services.subscriptions import SubscriptionDirectory

logger = logging.getLogger(__name__)

Number = Union[int, float]


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of a quota check."""

    allowed: bool
    tier: str
    delta_bytes: int
    limit_bytes: int
    usage: StorageUsageSnapshot

    @property
    def is_premium(self) -> bool:
        return self.tier == AccountTier.PREMIUM

    @property
    def remaining_bytes(self) -> int:
        return max(0, self.limit_bytes - self.usage.total_used_bytes)

    @property
    def new_total_bytes(self) -> int:
        return self.usage.total_used_bytes + self.delta_bytes

    def to_dict(self) -> dict:
        return {
            "isPremium": self.is_premium,
            "usedBytes": self.usage.total_used_bytes,
            "limitBytes": self.limit_bytes,
            "remainingBytes": self.remaining_bytes,
            "requestedBytes": self.delta_bytes,
            "newTotalAfterUpload": self.new_total_bytes,
            "mediaLibraryBytes": self.usage.media_library_bytes,
            "rendersBytes": self.usage.renders_bytes,
            "mediaFileCount": self.usage.media_file_count,
            "renderFileCount": self.usage.render_file_count,
            "degraded": self.usage.degraded,
        }


@dataclass(frozen=True)
class AccountStorageReport:
    """Usage summary shown to the account owner."""

    tier: str
    limit_bytes: int
    max_file_size_bytes: int
    usage: StorageUsageSnapshot

    @property
    def is_premium(self) -> bool:
        return self.tier == AccountTier.PREMIUM

    @property
    def remaining_bytes(self) -> int:
        return max(0, self.limit_bytes - self.usage.total_used_bytes)

    @property
    def usage_percentage(self) -> float:
        if self.limit_bytes <= 0:
            return 100.0
        return round(self.usage.total_used_bytes / self.limit_bytes * 100, 2)


def _validate_size(size: Optional[Number]) -> int:
    """Require a positive finite byte count and round it up to whole bytes."""
    if (
        size is None
        or isinstance(size, bool)
        or not isinstance(size, (int, float))
        or not math.isfinite(size)
        or size <= 0
    ):
        raise InvalidRequestError("Invalid file size", reason="invalid_size")
    return math.ceil(size)


def estimate_render_bytes(
    duration_seconds: Optional[float] = None,
    width: Optional[int] = None,
    height: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> int:
    """
    Estimate the size of a rendered video.

    HD output (1080 or more on either side) is assumed to need about 5 MB per
    second, anything smaller about 2.5 MB per second.

    Args:
        duration_seconds: Timeline duration (defaults to 30 seconds)
        width: Output width (defaults to 1080)
        height: Output height (defaults to 1920)
        settings: Settings to use (defaults to the cached settings)

    Returns:
        Estimated size in bytes, rounded up
    """
    settings = settings or get_settings()
    duration = duration_seconds or settings.default_render_duration_seconds
    width = width or settings.default_render_width
    height = height or settings.default_render_height

    is_hd = width >= 1080 or height >= 1080
    rate = settings.hd_render_bytes_per_second if is_hd else settings.sd_render_bytes_per_second
    return math.ceil(duration * rate)


class AdmissionGate:
    """
    Decides whether an account may store more bytes.

    Checks are advisory and not transactional; storage usage is recomputed for
    every call.
    """

    def __init__(
        self,
        accountant: StorageAccountant,
        subscriptions: SubscriptionDirectory,
        settings: Optional[Settings] = None,
    ):
        self.accountant = accountant
        self.subscriptions = subscriptions
        self.settings = settings or get_settings()

    def quota_for(self, tier: str) -> int:
        return self.settings.storage_limit_for(tier)

    async def describe(self, account_id: str) -> AccountStorageReport:
        """Get tier, ceiling and current usage for an account."""
        tier = await self.subscriptions.tier_for(account_id)
        usage = await self.accountant.usage(account_id)
        return AccountStorageReport(
            tier=tier,
            limit_bytes=self.quota_for(tier),
            max_file_size_bytes=self.settings.max_file_size_bytes,
            usage=usage,
        )

    async def can_admit(self, account_id: str, delta_bytes: Number) -> AdmissionDecision:
        """
        Check whether ``delta_bytes`` more fit within the account's ceiling.

        Reaching the ceiling exactly is allowed.

        Args:
            account_id: Account to check
            delta_bytes: Bytes the operation would add

        Returns:
            AdmissionDecision with the usage snapshot that was used

        Raises:
            InvalidRequestError: If delta_bytes is not a positive finite number
        """
        delta = _validate_size(delta_bytes)
        tier = await self.subscriptions.tier_for(account_id)
        limit_bytes = self.quota_for(tier)
        usage = await self.accountant.usage(account_id)

        decision = AdmissionDecision(
            allowed=usage.total_used_bytes + delta <= limit_bytes,
            tier=tier,
            delta_bytes=delta,
            limit_bytes=limit_bytes,
            usage=usage,
        )
        logger.info(
            f"Admission for {account_id} ({tier}): "
            f"{usage.total_used_bytes} + {delta} / {limit_bytes} -> "
            f"{'allowed' if decision.allowed else 'denied'}"
        )
        return decision

    async def check_upload(
        self,
        account_id: str,
        file_size: Optional[Number],
        mime_type: Optional[str] = None,
    ) -> AdmissionDecision:
        """
        Validate an upload and require that it fits in the quota.

        Order of checks: size is a positive number, MIME type (when given) is
        audio or video, size is within the per-file ceiling, and finally the
        cumulative quota.

        Raises:
            InvalidRequestError: reason invalid_size, disallowed_type or exceeds_file_ceiling
            QuotaExceededError: If the upload would exceed the account ceiling
        """
        size = _validate_size(file_size)

        if mime_type is not None and not is_allowed_mime_type(mime_type):
            raise InvalidRequestError(
                f"File type {mime_type} is not allowed. Only video and audio files are supported.",
                reason="disallowed_type",
            )

        max_size = self.settings.max_file_size_bytes
        if size > max_size:
            raise InvalidRequestError(
                f"File size exceeds maximum of {max_size // (1024 ** 3)}GB per file",
                reason="exceeds_file_ceiling",
                maxFileSize=max_size,
            )

        return self._require_allowed(await self.can_admit(account_id, size), "upload")

    async def check_render(
        self,
        account_id: str,
        duration_seconds: Optional[float] = None,
        width: Optional[int] = None,
        height: Optional[int] = None,
    ) -> AdmissionDecision:
        """
        Require that the estimated render output fits in the quota.

        Raises:
            QuotaExceededError: If the estimated output would exceed the ceiling
        """
        estimate = estimate_render_bytes(duration_seconds, width, height, self.settings)
        return self._require_allowed(await self.can_admit(account_id, estimate), "render")

    def _require_allowed(self, decision: AdmissionDecision, operation: str) -> AdmissionDecision:
        if decision.allowed:
            return decision
        raise QuotaExceededError(
            f"Storage limit exceeded. This {operation} needs {decision.delta_bytes} bytes "
            f"but only {decision.remaining_bytes} bytes remain.",
            **decision.to_dict(),
        )
