from dataclasses import dataclass
from typing import Optional, Union

from app.common.exceptions import InvalidClassification
from app.core.policy import SPHERE_MODE
from app.models.voucher import Sphere


@dataclass(frozen=True)
class SphereClassification:
    sphere: Sphere


@dataclass(frozen=True)
class CategoryClassification:
    category_id: Optional[int]


Classification = Union[SphereClassification, CategoryClassification]


def classify(mode: str, sphere: Optional[Sphere], category_id: Optional[int]) -> Classification:
    """Pick the classification scheme the ledger runs in; the other one must stay empty."""
    if mode == SPHERE_MODE:
        if category_id is not None:
            raise InvalidClassification(
                "Custom categories are disabled; classify the voucher by sphere",
                {"category_id": category_id},
            )
        if sphere is None:
            raise InvalidClassification("A sphere is required")
        return SphereClassification(Sphere(sphere))

    if sphere is not None:
        raise InvalidClassification(
            "Spheres are disabled; classify the voucher by custom category",
            {"sphere": str(sphere)},
        )
    return CategoryClassification(category_id)


def apply_classification(voucher, classification: Classification) -> None:
    if isinstance(classification, SphereClassification):
        voucher.sphere = classification.sphere
        voucher.category_id = None
    else:
        voucher.sphere = None
        voucher.category_id = classification.category_id
