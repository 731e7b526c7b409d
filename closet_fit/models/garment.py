"""Garment category and catalog item models."""

import logging
from enum import Enum

from pydantic import BaseModel, Field, computed_field, field_validator

logger = logging.getLogger(__name__)


class GarmentCategory(str, Enum):
    """Closed set of garment categories the placement engine understands."""

    TOP = "top"
    SHIRT = "shirt"
    KNIT = "knit"
    HOODIE = "hoodie"
    OUTERWEAR = "outerwear"
    COAT = "coat"
    DOWN_JACKET = "down_jacket"
    DRESS = "dress"
    PANTS = "pants"
    SHORTS = "shorts"
    SKIRT = "skirt"
    UNDERWEAR = "underwear"
    SOCKS = "socks"
    ACCESSORY = "accessory"
    BAG = "bag"
    OTHER = "other"

    @classmethod
    def parse(cls, value: "str | GarmentCategory | None") -> "GarmentCategory":
        """Map a free-text catalog category onto the closed set.

        Unknown or custom strings land in OTHER rather than failing.
        """
        if isinstance(value, GarmentCategory):
            return value
        if not value:
            return cls.OTHER
        key = value.strip().lower().replace("-", " ").replace("_", " ")
        key = " ".join(key.split())
        if key.replace(" ", "_") in cls._value2member_map_:
            return cls(key.replace(" ", "_"))
        category = CATEGORY_ALIASES.get(key) or CATEGORY_ALIASES.get(value.strip())
        if category is None:
            logger.debug(f"Unknown garment category {value!r}, using {cls.OTHER.value}")
            return cls.OTHER
        return category

    @property
    def is_upper_body(self) -> bool:
        return self in UPPER_BODY

    @property
    def is_lower_body(self) -> bool:
        return self in LOWER_BODY

    @property
    def z_order(self) -> int:
        return Z_ORDER[self]


UPPER_BODY = frozenset({
    GarmentCategory.TOP,
    GarmentCategory.SHIRT,
    GarmentCategory.KNIT,
    GarmentCategory.HOODIE,
    GarmentCategory.OUTERWEAR,
    GarmentCategory.COAT,
    GarmentCategory.DOWN_JACKET,
    GarmentCategory.DRESS,
})

LOWER_BODY = frozenset({
    GarmentCategory.PANTS,
    GarmentCategory.SHORTS,
    GarmentCategory.SKIRT,
})

# Back-to-front draw order: lower values are drawn first
Z_ORDER = {
    GarmentCategory.UNDERWEAR: 0,
    GarmentCategory.SOCKS: 1,
    GarmentCategory.TOP: 2,
    GarmentCategory.SHIRT: 2,
    GarmentCategory.KNIT: 2,
    GarmentCategory.HOODIE: 2,
    GarmentCategory.DRESS: 2,
    GarmentCategory.PANTS: 2,
    GarmentCategory.SHORTS: 2,
    GarmentCategory.SKIRT: 2,
    GarmentCategory.OTHER: 2,
    GarmentCategory.OUTERWEAR: 3,
    GarmentCategory.COAT: 3,
    GarmentCategory.DOWN_JACKET: 3,
    GarmentCategory.ACCESSORY: 4,
    GarmentCategory.BAG: 5,
}

CATEGORY_ALIASES = {
    # English
    "t shirt": GarmentCategory.TOP,
    "tshirt": GarmentCategory.TOP,
    "tee": GarmentCategory.TOP,
    "tank top": GarmentCategory.TOP,
    "blouse": GarmentCategory.SHIRT,
    "sweater": GarmentCategory.KNIT,
    "jumper": GarmentCategory.KNIT,
    "cardigan": GarmentCategory.KNIT,
    "knitwear": GarmentCategory.KNIT,
    "sweatshirt": GarmentCategory.HOODIE,
    "jacket": GarmentCategory.OUTERWEAR,
    "blazer": GarmentCategory.OUTERWEAR,
    "overcoat": GarmentCategory.COAT,
    "trench coat": GarmentCategory.COAT,
    "puffer": GarmentCategory.DOWN_JACKET,
    "down jacket": GarmentCategory.DOWN_JACKET,
    "bottom": GarmentCategory.PANTS,
    "bottoms": GarmentCategory.PANTS,
    "trousers": GarmentCategory.PANTS,
    "jeans": GarmentCategory.PANTS,
    "leggings": GarmentCategory.PANTS,
    "gown": GarmentCategory.DRESS,
    "lingerie": GarmentCategory.UNDERWEAR,
    "bra": GarmentCategory.UNDERWEAR,
    "sock": GarmentCategory.SOCKS,
    "accessories": GarmentCategory.ACCESSORY,
    "hat": GarmentCategory.ACCESSORY,
    "scarf": GarmentCategory.ACCESSORY,
    "handbag": GarmentCategory.BAG,
    "backpack": GarmentCategory.BAG,
    # Closet catalog labels
    "T恤": GarmentCategory.TOP,
    "t恤": GarmentCategory.TOP,
    "襯衫": GarmentCategory.SHIRT,
    "針織衫": GarmentCategory.KNIT,
    "連帽衫": GarmentCategory.HOODIE,
    "外套": GarmentCategory.OUTERWEAR,
    "大衣": GarmentCategory.COAT,
    "羽絨服": GarmentCategory.DOWN_JACKET,
    "褲子": GarmentCategory.PANTS,
    "短褲": GarmentCategory.SHORTS,
    "裙子": GarmentCategory.SKIRT,
    "洋裝": GarmentCategory.DRESS,
    "內衣": GarmentCategory.UNDERWEAR,
    "襪子": GarmentCategory.SOCKS,
    "配件": GarmentCategory.ACCESSORY,
    "包包": GarmentCategory.BAG,
    "其他": GarmentCategory.OTHER,
}


class GarmentItem(BaseModel):
    """A catalog garment as handed to the fitting core."""

    id: str
    category: GarmentCategory = Field(default=GarmentCategory.OTHER, description="Parsed from the catalog's free-text category")
    image_ref: str | None = Field(default=None, description="Resolvable reference to the background-removed art")

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value):
        return str(value)

    @field_validator("category", mode="before")
    @classmethod
    def _parse_category(cls, value):
        return GarmentCategory.parse(value)

    @computed_field
    @property
    def z_order(self) -> int:
        return self.category.z_order
