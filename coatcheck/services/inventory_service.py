from __future__ import annotations

from collections import defaultdict
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from coatcheck.models import InventoryItem, Job, JobInventoryItem


def list_inventory(db: Session) -> list[InventoryItem]:
    return db.execute(select(InventoryItem).order_by(InventoryItem.category.asc(), InventoryItem.name.asc())).scalars().all()


def get_inventory_item(db: Session, item_id: str) -> InventoryItem:
    item = db.get(InventoryItem, item_id)
    if not item:
        raise LookupError('Inventory item not found')
    return item


def create_inventory_item(db: Session, values: dict) -> InventoryItem:
    item = InventoryItem(**values)
    db.add(item)
    db.flush()
    return item


def update_inventory_item(db: Session, item_id: str, changes: dict) -> InventoryItem:
    item = get_inventory_item(db, item_id)
    for field_name in ('name', 'category', 'unit', 'quantity', 'price'):
        if changes.get(field_name) is not None:
            setattr(item, field_name, changes[field_name])
    if 'description' in changes:
        item.description = changes['description']
    db.flush()
    return item


def delete_inventory_item(db: Session, item_id: str) -> None:
    item = get_inventory_item(db, item_id)
    db.execute(
        update(JobInventoryItem).where(JobInventoryItem.inventory_item_id == item.id).values(inventory_item_id=None)
    )
    db.delete(item)
    db.flush()


def list_job_inventory(db: Session, job_ids: list[str]) -> dict[str, list[JobInventoryItem]]:
    grouped: dict[str, list[JobInventoryItem]] = defaultdict(list)
    if not job_ids:
        return grouped
    rows = db.execute(
        select(JobInventoryItem)
        .where(JobInventoryItem.job_id.in_(job_ids))
        .order_by(JobInventoryItem.created_at.asc(), JobInventoryItem.item_name.asc())
    ).scalars().all()
    for row in rows:
        grouped[row.job_id].append(row)
    return grouped


def _consume(item: InventoryItem, quantity: Decimal) -> None:
    if quantity > 0 and item.quantity < quantity:
        raise ValueError(f'Not enough {item.name} in stock ({item.quantity} {item.unit} left)')
    item.quantity = item.quantity - quantity


def sync_job_inventory(db: Session, job: Job, usages: list[tuple[str, Decimal]]) -> bool:
    """Make the job's consumed inventory match ``usages``.

    Stock is decremented for new or increased usage and restored for removed
    or reduced usage. Returns True when anything changed.
    """
    desired: dict[str, Decimal] = defaultdict(Decimal)
    for item_id, quantity in usages:
        desired[item_id] += quantity

    rows = db.execute(select(JobInventoryItem).where(JobInventoryItem.job_id == job.id)).scalars().all()
    existing: dict[str, JobInventoryItem] = {}
    changed = False

    for row in rows:
        item_id = row.inventory_item_id
        if item_id is not None and item_id in desired and item_id not in existing:
            existing[item_id] = row
            continue
        # rows for deleted items carry a null id and are always dropped
        if item_id is not None:
            item = db.get(InventoryItem, item_id)
            if item:
                item.quantity = item.quantity + row.quantity
        db.delete(row)
        changed = True

    for item_id, quantity in desired.items():
        item = get_inventory_item(db, item_id)
        row = existing.get(item_id)
        if row is None:
            _consume(item, quantity)
            db.add(JobInventoryItem(job_id=job.id, inventory_item_id=item.id, item_name=item.name, quantity=quantity))
            changed = True
        elif row.quantity != quantity:
            _consume(item, quantity - row.quantity)
            row.quantity = quantity
            changed = True

    db.flush()
    return changed
