"""Alias-based difference between two emote sets."""

from core.models import Collection, TransferPlan


def compute_pending(source: Collection, target: Collection,
                    target_name: str | None = None) -> TransferPlan:
    """
    Plan the items of source whose alias is missing from target.

    Source order is preserved; it is the processing order of the transfer.
    """
    target_aliases = {item.alias for item in target.items}
    pending = tuple(item for item in source.items if item.alias not in target_aliases)

    return TransferPlan(
        source_id=source.id,
        target_id=target.id,
        target_name=target.name if target_name is None else target_name,
        pending_items=pending,
        total=len(pending),
        skipped=len(source.items) - len(pending),
    )
