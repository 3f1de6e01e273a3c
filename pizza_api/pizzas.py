"""
Pizza resource. Reads are public; writes require an admin bearer token (OAuth2 or local login).
"""
import json
import logging

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from pizza_api.database import get_db
from pizza_api.errors import APIError
from pizza_api.middleware import RequireAdmin
from pizza_api.models import Pizza

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["pizzas"])


class PizzaIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str = ""
    ingredients: list[str] = Field(default_factory=list)
    price: float = Field(ge=0)


def _get_or_404(db: Session, pizza_id: int) -> Pizza:
    pizza = db.get(Pizza, pizza_id)
    if pizza is None:
        raise APIError(error="pizza_not_found", status_code=404)
    return pizza


@router.get("/public/pizzas")
def list_pizzas(db: Session = Depends(get_db)):
    return [p.to_dict() for p in db.query(Pizza).order_by(Pizza.id).all()]


@router.get("/public/pizzas/{pizza_id}")
def get_pizza(pizza_id: int, db: Session = Depends(get_db)):
    return _get_or_404(db, pizza_id).to_dict()


@router.post("/protected/admin/pizzas", status_code=201, dependencies=[RequireAdmin])
def create_pizza(body: PizzaIn, db: Session = Depends(get_db)):
    pizza = Pizza(
        name=body.name,
        description=body.description,
        ingredients=json.dumps(body.ingredients),
        price=body.price,
    )
    db.add(pizza)
    db.commit()
    db.refresh(pizza)
    logger.info("Pizza created: id=%s", pizza.id)
    return pizza.to_dict()


@router.put("/protected/admin/pizzas/{pizza_id}", dependencies=[RequireAdmin])
def update_pizza(pizza_id: int, body: PizzaIn, db: Session = Depends(get_db)):
    pizza = _get_or_404(db, pizza_id)
    pizza.name = body.name
    pizza.description = body.description
    pizza.ingredients = json.dumps(body.ingredients)
    pizza.price = body.price
    db.commit()
    db.refresh(pizza)
    return pizza.to_dict()


@router.delete("/protected/admin/pizzas/{pizza_id}", status_code=204, dependencies=[RequireAdmin])
def delete_pizza(pizza_id: int, db: Session = Depends(get_db)):
    pizza = _get_or_404(db, pizza_id)
    db.delete(pizza)
    db.commit()
    logger.info("Pizza deleted: id=%s", pizza_id)
    return Response(status_code=204)
