from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import AuditLog


def log_audit(
    db: Session,
    *,
    actor: str | None,
    action: str,
    order_id: int | None,
    ip: str | None,
    metadata: dict | None = None,
) -> None:
    db.add(
        AuditLog(
            actor=actor,
            action=action,
            order_id=order_id,
            ip=ip,
            meta=metadata or {},
        )
    )


def list_order_audit(db: Session, *, order_id: int) -> list[AuditLog]:
    return db.execute(
        select(AuditLog).where(AuditLog.order_id == order_id).order_by(AuditLog.id.asc())
    ).scalars().all()
