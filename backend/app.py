import re
from datetime import datetime
from typing import Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_pymongo import PyMongo
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError
from werkzeug.exceptions import HTTPException

from . import dashboard
from .access import (
    DEACTIVATED_ACCOUNT_MESSAGE,
    admin_required,
    auth_required,
    current_identity,
    register_account_status,
)
from .config import build_config
from .credentials import build_claims, hash_password, issue_token, verify_password
from .errors import (
    ApiError,
    DuplicateResourceError,
    Forbidden,
    InternalError,
    NotFound,
    Unauthorized,
    ValidationError,
)
from .search import build_search_query, parse_search_params, run_search
from .serializers import serialize_product, serialize_review, serialize_user
from .validation import (
    LOGIN_RULES,
    PRODUCT_CREATE_RULES,
    PRODUCT_RENAME_RULES,
    PRODUCT_UPDATE_RULES,
    REGISTRATION_RULES,
    USER_ADMIN_UPDATE_RULES,
    require_valid,
)

INCORRECT_CREDENTIALS_MESSAGE = "Email or password is incorrect"


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def to_object_id(value) -> Optional[ObjectId]:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def ensure_indexes(app: Flask, db) -> None:
    # The duplicate checks in the routes are not atomic; uniqueness lives here.
    try:
        db.users.create_index("email", unique=True)
    except PyMongoError as exc:
        app.logger.warning("Unable to ensure unique index on users.email: %s", exc)
    try:
        db.products.create_index("product_name", unique=True)
        db.products.create_index([("created_at", -1)])
    except PyMongoError as exc:
        app.logger.warning("Unable to ensure indexes for products: %s", exc)


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def handle_api_error(error: ApiError):
        body, status = error.to_response()
        return jsonify(body), status

    @app.errorhandler(DuplicateKeyError)
    def handle_duplicate_key(error: DuplicateKeyError):
        app.logger.warning("Rejected write violating a unique index: %s", error)
        body, status = DuplicateResourceError().to_response()
        return jsonify(body), status

    @app.errorhandler(PyMongoError)
    def handle_persistence_error(error: PyMongoError):
        app.logger.exception("Persistence failure on %s %s", request.method, request.path)
        body, status = InternalError().to_response()
        return jsonify(body), status

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        return jsonify({"message": error.description}), error.code


def create_app(test_config: Optional[Dict] = None, database=None) -> Flask:
    """Create and configure the Flask application.

    ``database`` is the document store handle every route talks to; when it is
    omitted one is opened from ``MONGO_URI``.
    """
    app = Flask(__name__)
    app.config.update(build_config(test_config))
    app.logger.setLevel(app.config["LOG_LEVEL"])

    CORS(app, origins=app.config["CORS_ALLOWED_ORIGINS"])
    JWTManager(app)

    if database is None:
        database = PyMongo(app).db
    db = database

    ensure_indexes(app, db)
    register_error_handlers(app)

    # --- Helpers ---

    def read_json_payload():
        payload = request.get_json(silent=True)
        return {} if payload is None else payload

    def fetch_product(product_id: str):
        object_id = to_object_id(product_id)
        product_document = (
            db.products.find_one({"_id": object_id}) if object_id else None
        )
        if not product_document:
            raise NotFound("No product has been found.")
        return product_document

    def ensure_product_name_available(
        product_name: str, exclude_id: Optional[ObjectId] = None
    ) -> None:
        query: Dict = {"product_name": product_name}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        if db.products.find_one(query):
            raise DuplicateResourceError("This product already exists.")

    def update_product_document(product_document, changes: Dict):
        changes = dict(changes)
        changes["updated_at"] = datetime.utcnow()
        updated = db.products.find_one_and_update(
            {"_id": product_document["_id"]},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise NotFound("No product has been found.")
        return updated

    def load_reviews(product_document) -> List[Dict]:
        review_ids = [
            object_id
            for object_id in (
                to_object_id(value) for value in product_document.get("reviews") or []
            )
            if object_id is not None
        ]
        if not review_ids:
            return []

        review_documents = {
            review["_id"]: review
            for review in db.reviews.find({"_id": {"$in": review_ids}})
        }
        author_ids = list(
            {review.get("user") for review in review_documents.values() if review.get("user")}
        )
        authors = {}
        if author_ids:
            authors = {
                user["_id"]: user
                for user in db.users.find({"_id": {"$in": author_ids}}, {"password": 0})
            }

        return [
            serialize_review(review_documents[review_id], authors)
            for review_id in review_ids
            if review_id in review_documents
        ]

    def load_current_user():
        identity = current_identity()
        object_id = to_object_id(identity.get("id"))
        if object_id is None:
            raise Unauthorized("Invalid token.")
        user_document = db.users.find_one({"_id": object_id}, {"password": 0})
        if not user_document:
            raise NotFound("User not found.")
        return user_document

    def stored_account_active(user_id) -> bool:
        object_id = to_object_id(user_id)
        if object_id is None:
            return True
        user_document = db.users.find_one({"_id": object_id}, {"isActive": 1})
        return not user_document or user_document.get("isActive") is not False

    register_account_status(app, stored_account_active)

    # --- Users ---

    @app.route("/users/register", methods=["POST"])
    def register():
        payload = require_valid(read_json_payload(), REGISTRATION_RULES)
        email = normalize_email(payload["email"])

        if db.users.find_one({"email": email}):
            raise DuplicateResourceError(
                "A user with this email already exists, please log in instead."
            )

        now = datetime.utcnow()
        user_document = {
            "email": email,
            "password": hash_password(payload["password"]),
            "profile": payload["profile"],
            "role": payload["role"],
            "isActive": True,
            "lastLogin": None,
            "created_at": now,
            "updated_at": now,
        }
        result = db.users.insert_one(user_document)

        token = issue_token(
            result.inserted_id,
            build_claims(user_document),
            ttl=app.config["REGISTRATION_TOKEN_EXPIRES"],
        )
        app.logger.info(
            "Registered user %s with role %s", result.inserted_id, user_document["role"]
        )
        return jsonify({"token": token}), 201

    @app.route("/users/login", methods=["POST"])
    def login():
        payload = require_valid(read_json_payload(), LOGIN_RULES)
        email = normalize_email(payload["email"])

        user_document = db.users.find_one({"email": email})
        if not user_document or not verify_password(
            payload["password"], user_document.get("password")
        ):
            app.logger.warning("Rejected login attempt for %s", email)
            raise ValidationError(INCORRECT_CREDENTIALS_MESSAGE)

        if user_document.get("isActive") is False:
            raise Forbidden(DEACTIVATED_ACCOUNT_MESSAGE)

        last_login = datetime.utcnow()
        db.users.update_one(
            {"_id": user_document["_id"]}, {"$set": {"lastLogin": last_login}}
        )
        user_document["lastLogin"] = last_login

        token = issue_token(user_document["_id"], build_claims(user_document))
        app.logger.info("User %s signed in", user_document["_id"])
        return jsonify({"token": token})

    @app.route("/users", methods=["GET"])
    @admin_required
    def list_users():
        users = [serialize_user(user) for user in db.users.find({}, {"password": 0})]
        return jsonify(users)

    @app.route("/users/me", methods=["GET"])
    @auth_required
    def get_current_user():
        return jsonify(serialize_user(load_current_user()))

    @app.route("/users/<user_id>", methods=["PATCH"])
    @admin_required
    def update_user(user_id: str):
        payload = require_valid(read_json_payload(), USER_ADMIN_UPDATE_RULES)
        object_id = to_object_id(user_id)
        if object_id is None:
            raise NotFound("User not found.")

        changes = {key: value for key, value in payload.items() if value is not None}
        changes["updated_at"] = datetime.utcnow()
        updated = db.users.find_one_and_update(
            {"_id": object_id},
            {"$set": changes},
            projection={"password": 0},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise NotFound("User not found.")

        app.logger.info(
            "User %s updated by admin %s: %s",
            user_id,
            current_identity().get("id"),
            sorted(key for key in changes if key != "updated_at"),
        )
        return jsonify(serialize_user(updated))

    # --- Products ---

    @app.route("/products", methods=["POST"])
    @admin_required
    def create_product():
        payload = require_valid(read_json_payload(), PRODUCT_CREATE_RULES)
        ensure_product_name_available(payload["product_name"])

        now = datetime.utcnow()
        product_document = {
            "description": "",
            "discount": 0,
            "sales": {"isSale": False},
            "reviews": [],
        }
        product_document.update(
            {key: value for key, value in payload.items() if value is not None}
        )
        product_document["created_at"] = now
        product_document["updated_at"] = now

        result = db.products.insert_one(product_document)
        app.logger.info("Created product %s", result.inserted_id)
        return (
            jsonify(
                {
                    "message": "Product added successfully.",
                    "product": serialize_product(product_document),
                }
            ),
            201,
        )

    @app.route("/products/search", methods=["GET"])
    def search_products():
        search_filter = parse_search_params(
            request.args, default_limit=app.config["SEARCH_DEFAULT_LIMIT"]
        )
        products = run_search(db.products, build_search_query(search_filter))
        app.logger.debug("Product search matched %s documents", len(products))
        return jsonify([serialize_product(product) for product in products])

    @app.route("/products", methods=["GET"])
    def list_products():
        product_documents = list(db.products.find().sort([("created_at", -1), ("_id", -1)]))
        if not product_documents:
            raise NotFound("No products have been found.")
        return jsonify([serialize_product(product) for product in product_documents])

    @app.route("/products/<product_id>", methods=["GET"])
    def get_product(product_id: str):
        product_document = fetch_product(product_id)
        return jsonify(
            serialize_product(product_document, reviews=load_reviews(product_document))
        )

    @app.route("/products/category/<category>", methods=["GET"])
    def list_products_by_category(category: str):
        pattern = f"^{re.escape(category.strip())}$"
        product_documents = list(
            db.products.find({"category": {"$regex": pattern, "$options": "i"}})
        )
        if not product_documents:
            raise NotFound("No products found in this category.")
        return jsonify([serialize_product(product) for product in product_documents])

    @app.route("/products/<product_id>", methods=["PUT"])
    @admin_required
    def update_product(product_id: str):
        payload = require_valid(read_json_payload(), PRODUCT_UPDATE_RULES)
        product_document = fetch_product(product_id)

        changes = {key: value for key, value in payload.items() if value is not None}
        if "product_name" in changes:
            ensure_product_name_available(
                changes["product_name"], exclude_id=product_document["_id"]
            )

        updated = update_product_document(product_document, changes)
        app.logger.info("Updated product %s", product_id)
        return jsonify(serialize_product(updated))

    @app.route("/products/<product_id>", methods=["PATCH"])
    @admin_required
    def rename_product(product_id: str):
        payload = require_valid(read_json_payload(), PRODUCT_RENAME_RULES)
        product_document = fetch_product(product_id)
        ensure_product_name_available(
            payload["product_name"], exclude_id=product_document["_id"]
        )

        updated = update_product_document(
            product_document, {"product_name": payload["product_name"]}
        )
        app.logger.info("Renamed product %s", product_id)
        return jsonify(serialize_product(updated))

    @app.route("/products/<product_id>", methods=["DELETE"])
    @admin_required
    def delete_product(product_id: str):
        object_id = to_object_id(product_id)
        result = db.products.delete_one({"_id": object_id}) if object_id else None
        if result is None or result.deleted_count == 0:
            raise NotFound("No product has been found.")

        app.logger.info("Deleted product %s", product_id)
        return jsonify({"message": "Product has been deleted successfully."})

    # --- Dashboard ---

    @app.route("/dashboard/stats", methods=["GET"])
    @auth_required
    def dashboard_stats():
        return jsonify({"success": True, "stats": dashboard.build_stats(db)})

    @app.route("/dashboard/new-customers", methods=["GET"])
    def dashboard_new_customers():
        months = dashboard.parse_months(request.args.get("months"))
        return jsonify(
            {"success": True, "data": dashboard.new_customers_by_month(db, months)}
        )

    @app.route("/dashboard/current", methods=["GET"])
    @auth_required
    def dashboard_current_user():
        return jsonify(serialize_user(load_current_user()))

    @app.route("/dashboard/revenue", methods=["GET"])
    @auth_required
    def dashboard_revenue():
        months = dashboard.parse_months(request.args.get("months"))
        return jsonify({"success": True, "data": dashboard.revenue_by_month(db, months)})

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    return app
