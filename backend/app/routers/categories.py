from fastapi import APIRouter, Depends, HTTPException
from typing import List
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from ..schemas.category import CategoryCreate, CategoryUpdate, CategoryOut, CategoryStatsOut
from ..services import category_service
from ..db.database import get_db
from ..models.user_model import User
from ..models.category_model import Category
from ..security.auth import get_current_user

router = APIRouter()


def _owned_category(db: Session, category_id: int, user: User) -> Category:
    category = category_service.get_category(db, category_id)
    if category is None:
        raise HTTPException(status_code=404, detail="Category not found")
    if category.user_id != user.id:
        raise HTTPException(status_code=403, detail="Access denied")
    return category


@router.post("/", response_model=CategoryOut, status_code=201)
def create_category(payload: CategoryCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    if category_service.find_by_name(db, user.id, payload.name):
        raise HTTPException(status_code=409, detail="Category with this name already exists")
    try:
        return category_service.create_category(db, user.id, payload)
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Category with this name already exists")


@router.get("/", response_model=List[CategoryOut])
def list_categories(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return category_service.list_categories(db, user.id)


@router.get("/stats", response_model=List[CategoryStatsOut])
def category_stats(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return [
        CategoryStatsOut.model_validate(c).model_copy(update={"email_count": n})
        for c, n in category_service.category_stats(db, user.id)
    ]


@router.get("/{category_id}", response_model=CategoryOut)
def get_category(category_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _owned_category(db, category_id, user)


@router.put("/{category_id}", response_model=CategoryOut)
def update_category(category_id: int, payload: CategoryUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    category = _owned_category(db, category_id, user)
    new_name = (payload.name or '').strip()
    if new_name and new_name != category.name:
        clash = category_service.find_by_name(db, user.id, new_name)
        if clash is not None and clash.id != category.id:
            raise HTTPException(status_code=409, detail="Category with this name already exists")
    return category_service.update_category(db, category, payload)


@router.delete("/{category_id}")
def delete_category(category_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    category = _owned_category(db, category_id, user)
    detached = category_service.delete_category(db, category)
    return {"message": "Category deleted successfully", "uncategorized_emails": detached}
