from sqlalchemy.orm import Session
from sqlalchemy import func
from typing import List, Optional, Tuple
from ..models.category_model import Category, DEFAULT_COLOR
from ..models.email_model import Email
from ..schemas.category import CategoryCreate, CategoryUpdate


def list_categories(db: Session, user_id: int) -> List[Category]:
    return db.query(Category).filter(Category.user_id == user_id).order_by(Category.created_at.asc(), Category.id.asc()).all()


def get_category(db: Session, category_id: int) -> Optional[Category]:
    return db.query(Category).filter(Category.id == category_id).first()


def find_by_name(db: Session, user_id: int, name: str) -> Optional[Category]:
    return db.query(Category).filter(Category.user_id == user_id, Category.name == name).first()


def create_category(db: Session, user_id: int, payload: CategoryCreate) -> Category:
    category = Category(
        user_id=user_id,
        name=payload.name,
        description=payload.description,
        color=payload.color or DEFAULT_COLOR,
    )
    db.add(category)
    db.commit(); db.refresh(category)
    return category


def update_category(db: Session, category: Category, payload: CategoryUpdate) -> Category:
    for field, value in payload.model_dump(exclude_unset=True).items():
        if value is None:
            continue
        if isinstance(value, str):
            value = value.strip()
            if not value and field != 'color':
                continue
        setattr(category, field, value)
    db.commit(); db.refresh(category)
    return category


def delete_category(db: Session, category: Category) -> int:
    """Delete a category; its emails stay, uncategorized. Returns how many were detached."""
    detached = (
        db.query(Email)
        .filter(Email.category_id == category.id)
        .update({Email.category_id: None}, synchronize_session=False)
    )
    db.delete(category)
    db.commit()
    return detached


def category_stats(db: Session, user_id: int) -> List[Tuple[Category, int]]:
    counts = dict(
        db.query(Email.category_id, func.count(Email.id))
        .filter(Email.user_id == user_id, Email.category_id.isnot(None))
        .group_by(Email.category_id)
        .all()
    )
    return [(c, counts.get(c.id, 0)) for c in list_categories(db, user_id)]
