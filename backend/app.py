import os
from datetime import timedelta

import click
from dotenv import load_dotenv
from flask import Flask, jsonify, request, send_from_directory
from flask_cors import CORS
from flask_pymongo import PyMongo

from .auth import admin_required, authenticate_admin, create_admin_account, init_jwt
from .errors import (
    ApiError,
    NotFound,
    Unauthorized,
    ValidationError,
    register_error_handlers,
)
from .media import UPLOAD_URL_PREFIX, build_media_storage
from .products import (
    ProductRepository,
    normalize_product_fields,
    parse_limit,
    serialize_product,
)

load_dotenv()


def create_app(test_config=None, db=None, media_storage=None) -> Flask:
    """Create and configure the Flask application.

    ``db`` and ``media_storage`` can be passed in to replace the MongoDB
    database and the image backend that would otherwise be built from the
    environment.
    """
    app = Flask(__name__)

    # --- Configuration ---
    app.config["JWT_SECRET_KEY"] = (
        os.getenv("JWT_SECRET_KEY")
        or os.getenv("SECRET_KEY")
        or "change-me-in-production"
    )
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = timedelta(days=1)
    app.config["JWT_HEADER_TYPE"] = "Bearer"
    app.config["MONGO_URI"] = os.getenv(
        "MONGO_URI", "mongodb://localhost:27017/dreamhouse"
    )
    max_upload_mb = int(os.getenv("MAX_UPLOAD_SIZE_MB", "10"))
    app.config["MAX_CONTENT_LENGTH"] = max_upload_mb * 1024 * 1024
    app.config["UPLOAD_FOLDER"] = os.getenv(
        "UPLOAD_FOLDER", os.path.join(app.root_path, "uploads")
    )
    app.config["CLOUDINARY_CLOUD_NAME"] = os.getenv("CLOUDINARY_CLOUD_NAME", "")
    app.config["CLOUDINARY_API_KEY"] = os.getenv("CLOUDINARY_API_KEY", "")
    app.config["CLOUDINARY_API_SECRET"] = os.getenv("CLOUDINARY_API_SECRET", "")
    app.config["LOG_LEVEL"] = os.getenv("LOG_LEVEL", "INFO").upper()

    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(app.config["LOG_LEVEL"])

    # --- Initialize extensions ---
    allowed_origins = [
        origin.strip()
        for origin in os.getenv("CORS_ALLOWED_ORIGINS", "").split(",")
        if origin.strip()
    ]
    CORS(app, origins=allowed_origins or "*")

    init_jwt(app)
    register_error_handlers(app)

    if db is None:
        mongo = PyMongo(app, serverSelectionTimeoutMS=5000)
        db = mongo.db

    if media_storage is None:
        media_storage = build_media_storage(app.config)
    app.logger.info("Product images are stored with the %s backend", media_storage.name)

    app.extensions["media_storage"] = media_storage
    products = ProductRepository(db.products)

    try:
        db.users.create_index("email", unique=True)
    except Exception as exc:
        app.logger.warning("Unable to ensure unique index on admin emails: %s", exc)

    # --- Helpers ---

    def read_json_object():
        payload = request.get_json(silent=True) or {}
        if not isinstance(payload, dict):
            raise ValidationError("Request body must be a JSON object.", code="InvalidBody")
        return payload

    def read_product_payload():
        payload = request.form.to_dict() if request.form else {}
        if not payload:
            payload = read_json_object()
        return payload

    def read_image_file():
        image_file = request.files.get("image")
        if not image_file or not image_file.filename:
            return None
        return image_file

    # --- ROUTES ---

    @app.route(f"{UPLOAD_URL_PREFIX}/<path:filename>")
    def serve_uploaded_file(filename: str):
        return send_from_directory(app.config["UPLOAD_FOLDER"], filename)

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    # Login
    @app.route("/api/login", methods=["POST"])
    def login():
        payload = read_json_object()
        try:
            token, user = authenticate_admin(
                db.users, payload.get("email"), payload.get("password")
            )
        except (NotFound, Unauthorized) as exc:
            app.logger.info("Rejected login for %r: %s", payload.get("email"), exc.code)
            raise

        app.logger.info("Admin %s signed in", user["email"])
        return jsonify({"token": token, "user": user})

    # Products
    @app.route("/api/products", methods=["GET"])
    def list_products():
        limit = parse_limit(request.args.get("limit"))
        product_docs = products.list(limit)
        return jsonify([serialize_product(document) for document in product_docs])

    @app.route("/api/products", methods=["POST"])
    @admin_required
    def create_product():
        fields = normalize_product_fields(read_product_payload())

        image_file = read_image_file()
        stored_image = media_storage.store(image_file) if image_file else None

        try:
            created_product = products.create(fields, stored_image)
        except Exception:
            if stored_image:
                media_storage.release(stored_image.key)
            raise

        app.logger.info("Created product %s", created_product["_id"])
        return (
            jsonify(
                {
                    "message": "Product added successfully.",
                    "product": serialize_product(created_product),
                }
            ),
            201,
        )

    @app.route("/api/products/<product_id>", methods=["PUT"])
    @admin_required
    def update_product(product_id: str):
        product_document = products.get(product_id)
        fields = normalize_product_fields(read_product_payload())

        image_file = read_image_file()
        stored_image = media_storage.store(image_file) if image_file else None

        try:
            updated_product = products.update(product_id, fields, stored_image)
        except Exception:
            if stored_image:
                media_storage.release(stored_image.key)
            raise

        previous_key = product_document.get("mediaKey")
        if stored_image and previous_key and previous_key != stored_image.key:
            media_storage.release(previous_key)

        app.logger.info("Updated product %s", product_id)
        return jsonify(serialize_product(updated_product))

    @app.route("/api/products/<product_id>", methods=["PATCH"])
    @admin_required
    def toggle_featured(product_id: str):
        payload = read_json_object()
        updated_product = products.set_featured(product_id, payload.get("featured"))

        app.logger.info(
            "Set featured=%s on product %s", updated_product["featured"], product_id
        )
        return jsonify(serialize_product(updated_product))

    @app.route("/api/products/<product_id>", methods=["DELETE"])
    @admin_required
    def delete_product(product_id: str):
        product_document = products.get(product_id)

        media_storage.release(product_document.get("mediaKey"))
        products.delete(product_document["_id"])

        app.logger.info("Deleted product %s", product_id)
        return jsonify({"message": "Product deleted successfully."})

    # --- CLI ---

    @app.cli.command("create-admin")
    @click.argument("email")
    @click.password_option()
    def create_admin_command(email: str, password: str):
        """Create an admin account that can sign in to the dashboard."""
        try:
            account = create_admin_account(db.users, email, password)
        except ApiError as exc:
            raise click.ClickException(exc.message)
        click.echo(f"Created admin {account['email']} ({account['_id']})")

    return app


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    create_app().run(host="0.0.0.0", port=port)
