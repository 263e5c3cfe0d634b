from __future__ import annotations

from flask import Blueprint, g, jsonify

from app.spipuniform.db import db_session
from app.spipuniform.errors import NotFound
from app.spipuniform.modules.catalog.models import Attribute, AttributeValue, Condition, ProductCategory, ProductType
from app.spipuniform.modules.catalog.service import (
    AttributePayload,
    AttributeValuePayload,
    CategoryPayload,
    ConditionPayload,
    ConditionReorderPayload,
    ProductTypePayload,
    attribute_to_dict,
    category_to_dict,
    condition_to_dict,
    create_attribute,
    create_attribute_value,
    create_category,
    create_condition,
    create_product_type,
    delete_attribute,
    delete_attribute_value,
    delete_category,
    delete_condition,
    delete_product_type,
    get_or_404,
    product_type_to_dict,
    public_tree,
    reorder_conditions,
    update_attribute,
    update_attribute_value,
    update_category,
    update_condition,
    update_product_type,
    value_to_dict,
)
from app.spipuniform.rbac import require_permission
from app.spipuniform.utils import arg_int
from app.spipuniform.validation import parse_json

bp = Blueprint("catalog", __name__)

ADMIN = "/admin/catalog"


# ---------- Public ----------
@bp.get("/product-categories")
def categories_tree():
    return jsonify({"success": True, "data": public_tree(db_session())})


@bp.get("/product-categories/<int:category_id>/types")
def category_types(category_id: int):
    s = db_session()
    c = s.get(ProductCategory, category_id)
    if not c or not c.is_active:
        raise NotFound("Category not found")
    types = [t for t in c.product_types if t.is_active]
    return jsonify({"success": True, "data": [product_type_to_dict(t) for t in types]})


@bp.get("/product-types/<int:product_type_id>/attributes")
def product_type_attributes(product_type_id: int):
    s = db_session()
    pt = s.get(ProductType, product_type_id)
    if not pt or not pt.is_active:
        raise NotFound("Product type not found")
    return jsonify({"success": True, "data": [attribute_to_dict(a, active_values_only=True) for a in pt.attributes]})


@bp.get("/conditions")
def conditions_public():
    s = db_session()
    rows = s.query(Condition).filter(Condition.is_active.is_(True)).order_by(Condition.order.asc()).all()
    return jsonify({"success": True, "data": [condition_to_dict(c) for c in rows]})


# ---------- Admin: categories ----------
@bp.get(f"{ADMIN}/categories")
@require_permission("viewProductCategories")
def admin_categories_list():
    s = db_session()
    rows = s.query(ProductCategory).order_by(ProductCategory.sort_order.asc(), ProductCategory.name.asc()).all()
    return jsonify({"success": True, "data": [category_to_dict(c) for c in rows]})


@bp.post(f"{ADMIN}/categories")
@require_permission("viewProductCategories")
def admin_categories_create():
    s = db_session()
    c = create_category(s, parse_json(CategoryPayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": category_to_dict(c)}), 201


@bp.get(f"{ADMIN}/categories/<int:category_id>")
@require_permission("viewProductCategories")
def admin_categories_detail(category_id: int):
    c = get_or_404(db_session(), ProductCategory, category_id, "Category")
    return jsonify({"success": True, "data": category_to_dict(c, with_types=True)})


@bp.put(f"{ADMIN}/categories/<int:category_id>")
@require_permission("viewProductCategories")
def admin_categories_update(category_id: int):
    s = db_session()
    c = get_or_404(s, ProductCategory, category_id, "Category")
    update_category(s, c, parse_json(CategoryPayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": category_to_dict(c)})


@bp.delete(f"{ADMIN}/categories/<int:category_id>")
@require_permission("viewProductCategories")
def admin_categories_delete(category_id: int):
    s = db_session()
    delete_category(s, get_or_404(s, ProductCategory, category_id, "Category"), g.current_user)
    s.commit()
    return jsonify({"success": True, "message": "Category deleted"})


# ---------- Admin: product types ----------
@bp.get(f"{ADMIN}/product-types")
@require_permission("viewProductTypes")
def admin_types_list():
    s = db_session()
    q = s.query(ProductType)
    category_id = arg_int("category_id")
    if category_id:
        q = q.filter(ProductType.category_id == category_id)
    rows = q.order_by(ProductType.name.asc()).all()
    return jsonify({"success": True, "data": [product_type_to_dict(t) for t in rows]})


@bp.post(f"{ADMIN}/product-types")
@require_permission("viewProductTypes")
def admin_types_create():
    s = db_session()
    pt = create_product_type(s, parse_json(ProductTypePayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": product_type_to_dict(pt)}), 201


@bp.get(f"{ADMIN}/product-types/<int:product_type_id>")
@require_permission("viewProductTypes")
def admin_types_detail(product_type_id: int):
    pt = get_or_404(db_session(), ProductType, product_type_id, "Product type")
    return jsonify({"success": True, "data": product_type_to_dict(pt, with_attributes=True)})


@bp.put(f"{ADMIN}/product-types/<int:product_type_id>")
@require_permission("viewProductTypes")
def admin_types_update(product_type_id: int):
    s = db_session()
    pt = get_or_404(s, ProductType, product_type_id, "Product type")
    update_product_type(s, pt, parse_json(ProductTypePayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": product_type_to_dict(pt)})


@bp.delete(f"{ADMIN}/product-types/<int:product_type_id>")
@require_permission("viewProductTypes")
def admin_types_delete(product_type_id: int):
    s = db_session()
    delete_product_type(s, get_or_404(s, ProductType, product_type_id, "Product type"), g.current_user)
    s.commit()
    return jsonify({"success": True, "message": "Product type deleted"})


# ---------- Admin: attributes ----------
@bp.get(f"{ADMIN}/attributes")
@require_permission("viewProductAttributes")
def admin_attributes_list():
    s = db_session()
    q = s.query(Attribute)
    product_type_id = arg_int("product_type_id")
    if product_type_id:
        q = q.filter(Attribute.product_type_id == product_type_id)
    rows = q.order_by(Attribute.product_type_id.asc(), Attribute.order.asc()).all()
    return jsonify({"success": True, "data": [attribute_to_dict(a) for a in rows]})


@bp.post(f"{ADMIN}/attributes")
@require_permission("viewProductAttributes")
def admin_attributes_create():
    s = db_session()
    a = create_attribute(s, parse_json(AttributePayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": attribute_to_dict(a)}), 201


@bp.put(f"{ADMIN}/attributes/<int:attribute_id>")
@require_permission("viewProductAttributes")
def admin_attributes_update(attribute_id: int):
    s = db_session()
    a = get_or_404(s, Attribute, attribute_id, "Attribute")
    update_attribute(s, a, parse_json(AttributePayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": attribute_to_dict(a)})


@bp.delete(f"{ADMIN}/attributes/<int:attribute_id>")
@require_permission("viewProductAttributes")
def admin_attributes_delete(attribute_id: int):
    s = db_session()
    delete_attribute(s, get_or_404(s, Attribute, attribute_id, "Attribute"), g.current_user)
    s.commit()
    return jsonify({"success": True, "message": "Attribute deleted"})


# ---------- Admin: attribute values ----------
@bp.post(f"{ADMIN}/attribute-values")
@require_permission("viewProductAttributes")
def admin_values_create():
    s = db_session()
    v = create_attribute_value(s, parse_json(AttributeValuePayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": value_to_dict(v)}), 201


@bp.put(f"{ADMIN}/attribute-values/<int:value_id>")
@require_permission("viewProductAttributes")
def admin_values_update(value_id: int):
    s = db_session()
    v = get_or_404(s, AttributeValue, value_id, "Attribute value")
    update_attribute_value(s, v, parse_json(AttributeValuePayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": value_to_dict(v)})


@bp.delete(f"{ADMIN}/attribute-values/<int:value_id>")
@require_permission("viewProductAttributes")
def admin_values_delete(value_id: int):
    s = db_session()
    delete_attribute_value(s, get_or_404(s, AttributeValue, value_id, "Attribute value"), g.current_user)
    s.commit()
    return jsonify({"success": True, "message": "Attribute value deleted"})


# ---------- Admin: conditions ----------
@bp.get(f"{ADMIN}/conditions")
@require_permission("viewProductConditions")
def admin_conditions_list():
    s = db_session()
    rows = s.query(Condition).order_by(Condition.order.asc(), Condition.id.asc()).all()
    return jsonify({"success": True, "data": [condition_to_dict(c) for c in rows]})


@bp.post(f"{ADMIN}/conditions")
@require_permission("viewProductConditions")
def admin_conditions_create():
    s = db_session()
    c = create_condition(s, parse_json(ConditionPayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": condition_to_dict(c)}), 201


@bp.put(f"{ADMIN}/conditions/<int:condition_id>")
@require_permission("viewProductConditions")
def admin_conditions_update(condition_id: int):
    s = db_session()
    c = get_or_404(s, Condition, condition_id, "Condition")
    update_condition(s, c, parse_json(ConditionPayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": condition_to_dict(c)})


@bp.delete(f"{ADMIN}/conditions/<int:condition_id>")
@require_permission("viewProductConditions")
def admin_conditions_delete(condition_id: int):
    s = db_session()
    delete_condition(s, get_or_404(s, Condition, condition_id, "Condition"), g.current_user)
    s.commit()
    return jsonify({"success": True, "message": "Condition deleted"})


@bp.post(f"{ADMIN}/conditions/reorder")
@require_permission("viewProductConditions")
def admin_conditions_reorder():
    s = db_session()
    payload = parse_json(ConditionReorderPayload)
    rows = reorder_conditions(s, payload.ids, g.current_user)
    s.commit()
    return jsonify({"success": True, "data": [condition_to_dict(c) for c in rows]})
