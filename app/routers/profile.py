from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..database import get_db
from ..models import User
from ..schemas import ProfileUpdateIn, UserEnvelope, UserOut
from ..users import UserDirectory


router = APIRouter(prefix="/api/auth", tags=["profile"])


@router.get("/profile")
def get_profile(user: User = Depends(get_current_user)):
    data = UserEnvelope(user=UserOut.model_validate(user))
    return {"success": True, "data": data.model_dump(by_alias=True, mode="json")}


@router.put("/profile")
def update_profile(
    payload: ProfileUpdateIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    UserDirectory(db).update_profile(
        user,
        name=payload.name,
        email=payload.email or None,
        clear_email=payload.email == "",
    )
    db.commit()
    db.refresh(user)
    data = UserEnvelope(user=UserOut.model_validate(user))
    return {"success": True, "message": "Profile updated successfully", "data": data.model_dump(by_alias=True, mode="json")}
