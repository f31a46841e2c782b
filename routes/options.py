"""Dynamic option directory: categories, departments, and sub-categories that drive the complaint form."""
from flask import Blueprint, abort, current_app, jsonify, request
from sqlalchemy.exc import IntegrityError
from wtforms import BooleanField, StringField
from wtforms.validators import Length, Optional as OptionalValue, Regexp

from extensions import db
from models import OPTION_TYPES, DynamicOption
from utils.api import ApiForm, first_form_error, json_error, strip_value
from utils.decorators import roles_required
from utils.tracking import DEPARTMENT_CODE_LENGTH, DEPARTMENT_CODE_PATTERN

options_bp = Blueprint("options", __name__, url_prefix="/api/dynamic-options")


class OptionVariantError(ValueError):
    """Raised when an option's fields do not fit its type tag."""


class OptionForm(ApiForm):
    type = StringField("Type", filters=[strip_value], validators=[OptionalValue()])
    value = StringField("Value", filters=[strip_value], validators=[OptionalValue(), Length(max=150)])
    code = StringField(
        "Code",
        filters=[lambda v: str(v).strip() if v is not None else v],
        validators=[OptionalValue(), Regexp(DEPARTMENT_CODE_PATTERN, message=f"Department code must be a {DEPARTMENT_CODE_LENGTH}-digit number")],
    )
    parent_category = StringField("Parent Category", name="parentCategory", filters=[strip_value], validators=[OptionalValue(), Length(max=150)])
    is_active = BooleanField("Active", name="isActive")

    def provided(self, field) -> bool:
        return bool(field.raw_data)


def validate_variant(option_type: str, value: str | None, code: str | None, parent_category: str | None) -> None:
    """Per-variant required and forbidden fields for the tagged option types."""
    if option_type not in OPTION_TYPES:
        raise OptionVariantError(f"Invalid option type. Allowed: {', '.join(OPTION_TYPES)}")
    if not value:
        raise OptionVariantError("Value is required")
    if option_type == "subCategory" and not parent_category:
        raise OptionVariantError("parentCategory is required for subCategory options")
    if option_type != "subCategory" and parent_category:
        raise OptionVariantError("parentCategory is only allowed for subCategory options")
    if option_type != "department" and code:
        raise OptionVariantError("code is only allowed for department options")


def _option_or_404(option_id: str) -> DynamicOption:
    option = db.session.get(DynamicOption, str(option_id))
    if not option:
        abort(404, description="Option not found")
    return option


@options_bp.route("", methods=["GET"])
def list_options():
    query = DynamicOption.query
    option_type = strip_value(request.args.get("type"))
    if option_type:
        query = query.filter(DynamicOption.type == option_type)
        parent = strip_value(request.args.get("parentCategory"))
        if option_type == "subCategory" and parent:
            query = query.filter(DynamicOption.parent_category == parent)
    if (request.args.get("active") or "").lower() == "true":
        query = query.filter(DynamicOption.is_active.is_(True))
    options = query.order_by(DynamicOption.type.asc(), DynamicOption.created_at.asc()).all()
    return jsonify([o.to_dict() for o in options])


@options_bp.route("", methods=["POST"])
@roles_required("Admin")
def create_option():
    form = OptionForm()
    if not form.validate_on_submit():
        return json_error(first_form_error(form), 400)

    try:
        validate_variant(form.type.data, form.value.data, form.code.data, form.parent_category.data)
    except OptionVariantError as exc:
        return json_error(str(exc), 400)

    option = DynamicOption(
        type=form.type.data,
        value=form.value.data,
        code=form.code.data or None,
        parent_category=form.parent_category.data or "",
        is_active=form.is_active.data if form.provided(form.is_active) else True,
    )
    try:
        db.session.add(option)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return json_error("Option already exists", 400)

    current_app.logger.info("Dynamic option created", extra={"option_id": option.id, "type": option.type})
    return jsonify(option.to_dict()), 201


@options_bp.route("/<string:option_id>", methods=["PUT"])
@roles_required("Admin")
def update_option(option_id):
    option = _option_or_404(option_id)
    form = OptionForm()
    if not form.validate_on_submit():
        return json_error(first_form_error(form), 400)

    # Only fields present in the body change; the merged result must still be a valid variant.
    option_type = form.type.data if form.provided(form.type) else option.type
    value = form.value.data if form.provided(form.value) else option.value
    code = form.code.data if form.provided(form.code) else option.code
    parent = form.parent_category.data if form.provided(form.parent_category) else option.parent_category
    if option_type != "department" and not form.provided(form.code):
        code = None
    if option_type != "subCategory" and not form.provided(form.parent_category):
        parent = ""

    try:
        validate_variant(option_type, value, code, parent)
    except OptionVariantError as exc:
        return json_error(str(exc), 400)

    option.type = option_type
    option.value = value
    option.code = code or None
    option.parent_category = parent or ""
    if form.provided(form.is_active):
        option.is_active = form.is_active.data
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return json_error("Option already exists", 400)

    current_app.logger.info("Dynamic option updated", extra={"option_id": option.id, "type": option.type})
    return jsonify(option.to_dict())


@options_bp.route("/<string:option_id>", methods=["DELETE"])
@roles_required("Admin")
def delete_option(option_id):
    option = _option_or_404(option_id)
    db.session.delete(option)
    db.session.commit()
    current_app.logger.info("Dynamic option deleted", extra={"option_id": option_id})
    return jsonify({"message": "Option deleted successfully"})
