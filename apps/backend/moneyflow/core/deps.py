from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from moneyflow.core.config import settings
from moneyflow.core.database import get_db
from moneyflow import models

DEMO_EMAIL = "demo@example.com"


def get_current_user(
    x_user_id: Optional[int] = Header(None, alias="X-User-Id"),
    db: Session = Depends(get_db),
) -> models.User:
    """Resolve the acting owner.

    Authentication happens upstream; the gateway forwards the authenticated
    user id in ``X-User-Id``. Without the header the dev environment falls
    back to a demo user (created on first use), other environments refuse.
    """
    if x_user_id is not None:
        user = db.get(models.User, x_user_id)
        if user is None or not user.is_active:
            raise HTTPException(status_code=401, detail="Unknown or inactive user")
        return user

    if settings.ENV != "dev":
        raise HTTPException(status_code=401, detail="X-User-Id header is required")

    user = db.query(models.User).filter(models.User.email == DEMO_EMAIL).first()
    if not user:
        user = models.User(email=DEMO_EMAIL, is_active=True)
        db.add(user)
        db.commit()
        db.refresh(user)
    return user
