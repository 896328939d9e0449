"""Duplicate detection within one upload batch."""

from ..models.record import DuplicateGroup, Record


class DuplicateDetector:
    """Groups uploaded records of a batch by transaction id."""

    def detect(self, upload_records: list[Record]) -> dict[str, DuplicateGroup]:
        """
        Find duplicate groups in a batch.

        Only records passed in are compared, never system records or other
        batches. Groups keep first-appearance order, members keep input order.

        Args:
            upload_records: Uploaded records of a single batch

        Returns:
            Map of transaction id to group, for keys with two or more members
        """
        by_key: dict[str, list[str]] = {}
        for record in upload_records:
            by_key.setdefault(record.transaction_id, []).append(record.id)

        return {
            key: DuplicateGroup(key=key, record_ids=ids)
            for key, ids in by_key.items()
            if len(ids) > 1
        }

    @staticmethod
    def duplicate_ids(groups: dict[str, DuplicateGroup]) -> dict[str, str]:
        """Map each duplicate record id to its group key."""
        return {
            record_id: group.key
            for group in groups.values()
            for record_id in group.record_ids
        }
