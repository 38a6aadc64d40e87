"""
Rules of the match consent lifecycle that do not touch the database.

A match links a supplier and a requester around one listing. Each party
owns one agreement flag; status is derived from the pair:

    pending --agree(supplier)--> pending      (requester not yet agreed)
                              --> both_agreed (requester already agreed)

and symmetrically for the requester. both_agreed is terminal.
"""

from typing import Optional, Tuple

SUPPLIER = "supplier"
REQUESTER = "requester"

STATUS_PENDING = "pending"
STATUS_BOTH_AGREED = "both_agreed"

LISTING_TYPES = ("part", "request")

# Status a listing must have to accept new matches
OPEN_LISTING_STATUS = {"part": "available", "request": "active"}


class SelfMatchError(ValueError):
    """The initiator owns the listing they tried to match against."""


class ListingClosedError(ValueError):
    """The listing no longer accepts new matches."""


def derive_status(supplier_agreed: bool, requester_agreed: bool) -> str:
    return STATUS_BOTH_AGREED if supplier_agreed and requester_agreed else STATUS_PENDING


def listing_owner_id(listing_type: str, listing) -> str:
    if listing_type == "part":
        return listing.supplier_id
    return listing.requester_id


def ensure_listing_open(listing_type: str, listing) -> None:
    """
    Raises:
        ListingClosedError: part not available or request not active
    """
    if listing.status != OPEN_LISTING_STATUS.get(listing_type):
        raise ListingClosedError("This listing is no longer available")


def resolve_parties(listing_type: str, owner_id: str, initiator_id: str) -> Tuple[str, str]:
    """
    Work out (supplier_id, requester_id) for a new match.

    Contacting a part's owner makes the initiator the requester; answering
    a part request makes the initiator the supplier.

    Raises:
        SelfMatchError: the initiator owns the listing
        ValueError: unknown listing type
    """
    if listing_type not in LISTING_TYPES:
        raise ValueError(f"unknown listing type: {listing_type}")
    if owner_id == initiator_id:
        raise SelfMatchError("You cannot create a match on your own listing")

    if listing_type == "part":
        return owner_id, initiator_id
    return initiator_id, owner_id


def participant_role(match, user_id: str) -> Optional[str]:
    """Role of user_id in match, or None if they are not a participant."""
    if match.supplier_id == user_id:
        return SUPPLIER
    if match.requester_id == user_id:
        return REQUESTER
    return None


def counterparty_id(match, user_id: str) -> str:
    """The other participant of match as seen from user_id."""
    return match.requester_id if match.supplier_id == user_id else match.supplier_id
