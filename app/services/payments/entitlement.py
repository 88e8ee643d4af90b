from collections.abc import Iterable
from typing import Any

from app.core.utils import now_ms, to_epoch_ms
from app.schemas import (
    CandidateRecord,
    EntitlementDecision,
    EntitlementReason,
    TransactionPair,
)


def candidates_from_pairs(pairs: Iterable[TransactionPair]) -> list[CandidateRecord]:
    """
    Normalize decoded App Store Server API records.

    Args:
        pairs: Decoded transaction and renewal records

    Returns:
        list[CandidateRecord]: One candidate per pair, in the same order
    """
    candidates = []
    for pair in pairs:
        transaction = pair.transaction
        renewal = pair.renewal
        candidates.append(
            CandidateRecord(
                product_id=transaction.product_id,
                expires_at=transaction.expires_date or 0,
                cancelled=bool(transaction.revocation_date or transaction.cancellation_date),
                grace_until=(renewal.grace_period_expires_date or 0) if renewal else 0,
            )
        )

    return candidates


def candidates_from_legacy_payload(payload: dict[str, Any]) -> list[CandidateRecord]:
    """
    Normalize the purchases of a successful verifyReceipt body.

    Uses latest_receipt_info, or receipt.in_app when that is absent or
    empty. Grace periods come from pending_renewal_info, matched by product id.

    Args:
        payload: verifyReceipt response body with status 0

    Returns:
        list[CandidateRecord]: One candidate per purchase entry, in payload order
    """
    entries = payload.get("latest_receipt_info")
    if not isinstance(entries, list) or not entries:
        receipt = payload.get("receipt")
        entries = receipt.get("in_app") if isinstance(receipt, dict) else None
    if not isinstance(entries, list):
        return []

    grace_by_product: dict[str, int] = {}
    for renewal in payload.get("pending_renewal_info") or []:
        if not isinstance(renewal, dict) or not renewal.get("product_id"):
            continue
        grace = to_epoch_ms(renewal.get("grace_period_expires_date_ms"))
        if grace:
            grace_by_product.setdefault(renewal["product_id"], grace)

    candidates = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        product_id = entry.get("product_id")
        candidates.append(
            CandidateRecord(
                product_id=product_id,
                expires_at=to_epoch_ms(entry.get("expires_date_ms")) or 0,
                cancelled=bool(
                    entry.get("cancellation_date_ms")
                    or entry.get("cancellation_date")
                    or entry.get("revocation_date_ms")
                ),
                grace_until=grace_by_product.get(product_id, 0) if product_id else 0,
            )
        )

    return candidates


def is_active(candidate: CandidateRecord, now: int) -> bool:
    """A cancelled or revoked record is never active, whatever its expiry."""
    if candidate.cancelled:
        return False

    return candidate.expires_at > now or candidate.grace_until > now


def decide(
    candidates: Iterable[CandidateRecord],
    target_product_id: str | None = None,
    now: int | None = None,
    seen_products: Iterable[str] = (),
) -> EntitlementDecision:
    """
    Decide the entitlement from normalized records.

    The candidate with the greatest expiry is selected, the first one seen
    on equal expiry. Candidates for another product than target_product_id
    are not selectable but still count as seen.

    Example:
        >>> decision = decide(candidates, target_product_id="com.example.monthly")
        >>> decision.active, decision.expires_at

    Args:
        candidates: Normalized records, in iteration order
        target_product_id: Only consider records of this product when set
        now: Decision time in epoch milliseconds, the current time when None
        seen_products: Product ids already seen by the caller, e.g. while decoding

    Returns:
        EntitlementDecision: The decision for the newest qualifying record, or
            an inactive decision with NO_TRANSACTIONS / TARGET_PRODUCT_NOT_FOUND
    """
    if now is None:
        now = now_ms()

    seen: list[str] = []
    newest: CandidateRecord | None = None

    for product_id in seen_products:
        if product_id and product_id not in seen:
            seen.append(product_id)

    for candidate in candidates:
        if candidate.product_id and candidate.product_id not in seen:
            seen.append(candidate.product_id)

        if target_product_id and candidate.product_id != target_product_id:
            continue

        if newest is None or candidate.expires_at > newest.expires_at:
            newest = candidate

    if newest is None:
        reason = EntitlementReason.NO_TRANSACTIONS
        if target_product_id and seen:
            reason = EntitlementReason.TARGET_PRODUCT_NOT_FOUND

        return EntitlementDecision(active=False, reason=reason, seen_products=seen)

    active = is_active(newest, now)
    reason = None
    if not active:
        reason = EntitlementReason.REVOKED if newest.cancelled else EntitlementReason.EXPIRED

    return EntitlementDecision(
        active=active,
        product_id=newest.product_id,
        expires_at=newest.expires_at,
        reason=reason,
        seen_products=seen,
    )
