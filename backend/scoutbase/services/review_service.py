"""
Review Service
Manual adjudication of records the resolver could not place.
"""
from typing import List, Optional
import logging

from scoutbase.exceptions import AmbiguousIdentity, NotFoundError, ValidationError
from scoutbase.models import ReviewItem
from scoutbase.services.field_merger import FieldMerger
from scoutbase.services.repository import ScoutingRepository

logger = logging.getLogger(__name__)

# Items queued without a source-native id use this prefix
PLACEHOLDER_PREFIX = "player:"


class ReviewService:
    def __init__(self, repository: ScoutingRepository, merger: Optional[FieldMerger] = None):
        self.repository = repository
        self.merger = merger or FieldMerger(repository)

    def list_pending(self, limit: int = 100) -> List[ReviewItem]:
        return self.repository.list_review_items(status="pending", limit=limit)

    def _get_pending(self, item_id: int) -> ReviewItem:
        item = self.repository.get_review_item(item_id)
        if item is None:
            raise NotFoundError("ReviewItem", str(item_id))
        if item.status != "pending":
            raise ValidationError(
                f"Review item {item_id} is already {item.status}",
                details={"item_id": item_id, "status": item.status},
            )
        return item

    def resolve(
        self,
        item_id: int,
        player_id: Optional[int] = None,
        source_player_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> ReviewItem:
        """
        Link a queued record to a canonical player.

        The external identity is written with confidence 1.0. A profile
        carried in the item payload is merged into the player.

        Args:
            item_id: Review item id
            player_id: Canonical player chosen by the reviewer; defaults to
                the item's candidate when it has exactly one
            source_player_id: Source-native id to link; defaults to the
                item's own id and is required for placeholder items
            note: Optional reviewer note

        Raises:
            NotFoundError: If the item or player does not exist
            ValidationError: If the item is not pending or no id can be linked
            AmbiguousIdentity: If no player is given and the item has
                several candidates
        """
        item = self._get_pending(item_id)
        if player_id is None:
            player_id = self._single_candidate(item)
        if self.repository.get_player(player_id) is None:
            raise NotFoundError("Player", str(player_id))

        external_id = source_player_id or item.source_player_id
        if external_id.startswith(PLACEHOLDER_PREFIX):
            raise ValidationError(
                f"Review item {item_id} has no {item.source} id; pass source_player_id",
                details={"item_id": item_id},
            )

        self.repository.upsert_identity(player_id, item.source, external_id, 1.0)

        payload = item.payload or {}
        if payload.get("profile") and external_id == item.source_player_id:
            self.merger.merge_profile(
                player_id, item.source, external_id, payload["profile"], raw_profile=payload.get("raw")
            )

        resolved = self.repository.set_review_status(
            item_id, "resolved", resolved_player_id=player_id, note=note
        )
        logger.info(f"Review item {item_id} resolved to player {player_id} ({item.source}:{external_id})")
        return resolved

    def reject(self, item_id: int, note: Optional[str] = None) -> ReviewItem:
        self._get_pending(item_id)
        rejected = self.repository.set_review_status(item_id, "rejected", note=note)
        logger.info(f"Review item {item_id} rejected")
        return rejected

    def _single_candidate(self, item: ReviewItem) -> int:
        candidates = list(item.candidate_player_ids or [])
        if len(candidates) > 1:
            raise AmbiguousIdentity(item.source, item.source_player_id, candidates)
        if not candidates:
            raise ValidationError(
                f"Review item {item.id} has no candidates; pass player_id",
                details={"item_id": item.id},
            )
        return candidates[0]
