"""
Default uniform catalog: categories, product types with their attributes and
values, and item conditions. Every step is idempotent (matched by slug/name).
"""

from __future__ import annotations

from typing import Any

from app.spipuniform.modules.catalog.models import Attribute, AttributeValue, Condition, ProductCategory, ProductType

# (name, slug, description, sort_order)
CATEGORIES = [
    ("Shirts & Blouses", "shirts-blouses", "School shirts, polo shirts, blouses", 1),
    ("Trousers & Skirts", "trousers-skirts", "School trousers, skirts, shorts", 2),
    ("Knitwear", "knitwear", "School jumpers, cardigans, vests", 3),
    ("Outerwear", "outerwear", "School jackets, coats, blazers", 4),
    ("Footwear", "footwear", "School shoes, runners, boots", 5),
    ("Accessories", "accessories", "Ties, belts, hats, bags, socks", 6),
    ("PE & Sports", "pe-sports", "PE uniforms, sports gear, tracksuits", 7),
]

# (category slug, name, slug, description)
PRODUCT_TYPES = [
    ("shirts-blouses", "School Shirt", "school-shirt", "Standard school shirt"),
    ("shirts-blouses", "Polo Shirt", "polo-shirt", "School polo shirt"),
    ("shirts-blouses", "Blouse", "blouse", "School blouse for girls"),
    ("trousers-skirts", "School Trousers", "school-trousers", "Standard school trousers"),
    ("trousers-skirts", "School Skirt", "school-skirt", "School skirt for girls"),
    ("trousers-skirts", "School Shorts", "school-shorts", "School shorts"),
    ("knitwear", "School Jumper", "school-jumper", "School jumper/sweater"),
    ("knitwear", "School Cardigan", "school-cardigan", "School cardigan"),
]

CONDITIONS = [
    ("New", "Brand new with tags"),
    ("Excellent", "Like new, minimal wear"),
    ("Very Good", "Light wear, good condition"),
    ("Good", "Some wear but still good"),
    ("Fair", "Noticeable wear but usable"),
    ("Poor", "Heavy wear, may need repair"),
]

AGE_SIZES = ["Age 3-4", "Age 5-6", "Age 7-8", "Age 9-10", "Age 11-12", "Age 13", "Age 14", "Age 15-16"]
ALPHA_SIZES = ["XS", "S", "M", "L", "XL"]
WAIST_SIZES = ['26"', '28"', '30"', '32"', '34"', '36"']
COLORS = ["White", "Navy", "Grey", "Black", "Blue", "Green", "Maroon", "Red", "Yellow", "Other"]
GENDERS = ["Unisex", "Boys", "Girls"]


def _sizes_for(type_slug: str) -> tuple[str, list[str]]:
    if any(k in type_slug for k in ("trousers", "skirt", "shorts")):
        return "waist_inseam", AGE_SIZES + WAIST_SIZES
    return "alpha_sizes", AGE_SIZES + ALPHA_SIZES


def _attribute_specs(type_slug: str) -> list[dict[str, Any]]:
    size_input, sizes = _sizes_for(type_slug)
    return [
        {
            "name": "Size", "slug": "size", "input_type": size_input, "required": True, "order": 1,
            "placeholder": "Select size", "help_text": "Choose the appropriate size",
            "values": [(v, v) for v in sizes],
        },
        {
            "name": "Color", "slug": "color", "input_type": "color_select", "required": True, "order": 2,
            "placeholder": "Select color", "help_text": "Main color of the item",
            "values": [(c.lower(), c) for c in COLORS],
        },
        {
            "name": "Brand", "slug": "brand", "input_type": "text_input", "required": False, "order": 3,
            "placeholder": "e.g. M&S, Dunnes, Penneys", "help_text": "Brand or store where purchased",
            "values": [],
        },
        {
            "name": "Gender", "slug": "gender", "input_type": "gender_select", "required": False, "order": 4,
            "placeholder": "Select gender", "help_text": "Intended gender if specific",
            "values": [(g.lower(), g) for g in GENDERS],
        },
    ]


def seed_catalog(s) -> dict[str, int]:
    counts = {"categories": 0, "product_types": 0, "attributes": 0, "attribute_values": 0, "conditions": 0}

    categories: dict[str, ProductCategory] = {}
    for name, slug, description, sort_order in CATEGORIES:
        c = s.query(ProductCategory).filter(ProductCategory.slug == slug).one_or_none()
        if not c:
            c = ProductCategory(name=name, slug=slug, description=description, sort_order=sort_order, is_active=True)
            s.add(c)
            counts["categories"] += 1
        categories[slug] = c
    s.flush()

    for order, (name, description) in enumerate(CONDITIONS, start=1):
        if not s.query(Condition).filter(Condition.name == name).one_or_none():
            s.add(Condition(name=name, description=description, order=order, is_active=True))
            counts["conditions"] += 1
    s.flush()

    for cat_slug, name, slug, description in PRODUCT_TYPES:
        pt = s.query(ProductType).filter(ProductType.slug == slug).one_or_none()
        if not pt:
            pt = ProductType(category_id=categories[cat_slug].id, name=name, slug=slug, description=description, is_active=True)
            s.add(pt)
            s.flush()
            counts["product_types"] += 1

        for attr_def in _attribute_specs(slug):
            a = (
                s.query(Attribute)
                .filter(Attribute.product_type_id == pt.id, Attribute.slug == attr_def["slug"])
                .one_or_none()
            )
            if not a:
                a = Attribute(
                    product_type_id=pt.id,
                    name=attr_def["name"],
                    slug=attr_def["slug"],
                    input_type=attr_def["input_type"],
                    required=attr_def["required"],
                    order=attr_def["order"],
                    placeholder=attr_def["placeholder"],
                    help_text=attr_def["help_text"],
                )
                s.add(a)
                s.flush()
                counts["attributes"] += 1
            existing = {v for (v,) in s.query(AttributeValue.value).filter(AttributeValue.attribute_id == a.id).all()}
            for idx, (value, display) in enumerate(attr_def["values"], start=1):
                if value in existing:
                    continue
                s.add(AttributeValue(attribute_id=a.id, value=value, display_name=display, sort_order=idx, is_active=True))
                counts["attribute_values"] += 1
            s.flush()

    return counts
