from app.api.booking.bookings import bookings_bp
from app.api.flash_deals.flash_deals import flash_deals_bp
from app.api.loyalty.loyalty import loyalty_bp
from app.api.maintenance.sweeps import maintenance_bp
from app.api.payments.settlements import settlements_bp
from app.api.promos.promo_codes import promos_bp
from app.api.vendors.vendors import vendors_bp
from flask import Flask
from flask_cors import CORS
from dotenv import load_dotenv
from flasgger import Swagger
from swagger__config import SWAGGER_CONFIG, SWAGGER_TEMPLATE
import logging
import os

load_dotenv()
from app.config import Config  # noqa: E402
from app.errors import register_error_handlers  # noqa: E402
from app.extensions import db  # noqa: E402


def create_app(config_overrides=None):
    print("Starting create_app()")
    app = Flask(__name__)
    try:
        app.config.from_object(Config)
        if config_overrides:
            app.config.update(config_overrides)
        print(f"Config loaded: {len(app.config)} items")

        app.logger.setLevel(getattr(logging, str(app.config["LOG_LEVEL"]).upper(), logging.INFO))

        CORS(app)
        db.init_app(app)
        print("Database initialized")

        # Determine host based on environment
        host = os.environ.get("API_HOST", "127.0.0.1:5000")
        swagger_template = SWAGGER_TEMPLATE.copy()
        swagger_template["host"] = host

        Swagger(app, config=SWAGGER_CONFIG, template=swagger_template)
        print("Swagger initialized - Access at /api/docs")

        register_error_handlers(app)

        blueprints = [
            vendors_bp,
            bookings_bp,
            promos_bp,
            loyalty_bp,
            settlements_bp,
            flash_deals_bp,
            maintenance_bp,
        ]

        for bp in blueprints:
            app.register_blueprint(bp)
            print(f"  ✓ {bp.name} registered")

        @app.route("/")
        def home():
            """
            Root endpoint - API status
            ---
            tags:
              - Utility
            responses:
              200:
                description: API is running
                schema:
                  type: object
                  properties:
                    status:
                      type: string
                    message:
                      type: string
                    docs_url:
                      type: string
            """
            return {
                "status": "ok",
                "message": "Booking engine is running!",
                "docs_url": "/api/docs",
            }, 200

        if app.config.get("ENABLE_SCHEDULER") and not app.config.get("TESTING"):
            from app.scheduler import init_scheduler

            init_scheduler(app)

        print(f"Total routes registered: {len(list(app.url_map.iter_rules()))}")

    except Exception as e:
        print(f"Error during app creation: {e}")
        import traceback

        print(f"Full traceback: {traceback.format_exc()}")
        raise

    print("create_app() completed successfully")
    return app


app = create_app()
print(f"App created: {app.name}")

# Port diagnostics
expected_port = os.environ.get("PORT", "NOT SET")
print(f"PORT environment variable: {expected_port}")


if __name__ == "__main__":
    # Create a .env containing:
    #       DATABASE_URL=mysql+pymysql://<USER>:<PASSWORD>@<HOST>:<PORT>/wellness
    #       SECRET_KEY=<shared with the identity provider>
    port = int(os.environ.get("PORT", 5000))
    app.run(
        host="0.0.0.0", port=port, debug=os.environ.get("FLASK_ENV") != "production"
    )
