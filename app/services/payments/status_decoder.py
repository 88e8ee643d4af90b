from typing import Protocol

from appstoreserverlibrary.models.StatusResponse import StatusResponse
from loguru import logger

from app.core.exceptions.app_store import AppStoreException, AppStoreVerifierException
from app.schemas import DecodedStatus, RenewalRecord, TransactionPair, TransactionRecord


class SignedPayloadDecoder(Protocol):
    """Verifies and decodes the signed records of a status response."""

    def decode_transaction(self, signed_transaction_info: str) -> TransactionRecord: ...

    def decode_renewal_info(self, signed_renewal_info: str) -> RenewalRecord: ...


def decode_status_response(
    status_response: StatusResponse,
    decoder: SignedPayloadDecoder,
) -> DecodedStatus:
    """
    Decode every last transaction of every subscription group.

    The transaction and renewal payloads of an item are decoded on their
    own and kept together by position only, their product ids are not
    cross-checked. An item whose transaction does not decode is skipped,
    but a product id from its renewal info still counts as seen. A verifier
    that cannot be created fails the whole response instead.

    Args:
        status_response: Response of get_all_subscription_statuses
        decoder: Collaborator verifying and decoding the signed payloads

    Returns:
        DecodedStatus: Decoded pairs, seen product ids and skipped count

    Raises:
        AppStoreVerifierException: If the decoder cannot verify anything
    """
    pairs: list[TransactionPair] = []
    seen_products: list[str] = []
    skipped = 0

    def see(product_id: str | None) -> None:
        if product_id and product_id not in seen_products:
            seen_products.append(product_id)

    for group in status_response.data or []:
        for item in group.lastTransactions or []:
            renewal: RenewalRecord | None = None
            if item.signedRenewalInfo:
                try:
                    renewal = decoder.decode_renewal_info(item.signedRenewalInfo)
                except AppStoreVerifierException:
                    raise
                except AppStoreException as err:
                    logger.warning(f"Skipping undecodable renewal info: {err.message}")

            try:
                transaction = decoder.decode_transaction(item.signedTransactionInfo)
            except AppStoreVerifierException:
                raise
            except AppStoreException as err:
                logger.warning(f"Skipping undecodable transaction: {err.message}")
                skipped += 1
                see(renewal.product_id if renewal else None)
                continue

            see(transaction.product_id)
            pairs.append(TransactionPair(transaction=transaction, renewal=renewal))

    return DecodedStatus(pairs=pairs, seen_products=seen_products, skipped=skipped)
