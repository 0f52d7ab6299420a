from aura.api.booking.appointments import appointments_bp
from aura.api.booking.flow import booking_bp
from aura.api.payments.webhooks import webhooks_bp
from aura.api.salons.details import salon_details_bp
from aura.routes.auth import auth_bp
from flask import Flask
from flask_cors import CORS
from dotenv import load_dotenv
from flasgger import Swagger
from swagger__config import SWAGGER_CONFIG, SWAGGER_TEMPLATE
import os

load_dotenv()
from aura.config import Config  # noqa: E402
from aura.extensions import db  # noqa: E402


def create_app(overrides=None):
    print("Starting create_app()")
    app = Flask(__name__)
    print(f"Flask app created: {app}")
    try:
        print("Loading config...")
        app.config.from_object(Config)
        if overrides:
            app.config.update(overrides)
        print("Config loaded successfully")
        print(f"Config items: {len(app.config)} items loaded")

        print("Initializing CORS...")
        # the booking draft rides in the session cookie
        CORS(app, supports_credentials=True)
        print("CORS initialized")

        print("Initializing database...")
        db.init_app(app)
        print("Database initialized")
        print("Initializing Swagger/OpenAPI documentation...")
        # Determine host based on environment
        host = os.environ.get("API_HOST", "127.0.0.1:5000")
        swagger_template = SWAGGER_TEMPLATE.copy()
        swagger_template["host"] = host

        Swagger(app, config=SWAGGER_CONFIG, template=swagger_template)
        print("Swagger initialized - Access at /api/docs")
        print("Registering blueprints...")

        blueprints = [
            auth_bp,
            salon_details_bp,
            booking_bp,
            appointments_bp,
            webhooks_bp,
        ]

        for bp in blueprints:
            app.register_blueprint(bp)
            print(f"  ✓ {bp.name} registered")

        print("All blueprints registered successfully")

        if app.config.get("AUTO_COMPLETE_ENABLED") and not app.config.get("TESTING"):
            from aura.scheduler import init_scheduler

            init_scheduler(app)

        print("Adding root route...")

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
            """
            return {"status": "ok", "message": "Booking engine is running!"}, 200

        print("Root route added")

        print("Checking registered routes:")
        route_count = 0
        for rule in app.url_map.iter_rules():
            route_count += 1
            print(
                f"   Route {route_count}: {rule.endpoint} -> {rule.rule} [{list(rule.methods)}]"
            )  # noqa: E501
        print(f"Total routes registered: {route_count}")

    except Exception as e:
        print(f"Error during app creation: {e}")
        print(f"Error type: {type(e)}")
        import traceback

        print(f"Full traceback: {traceback.format_exc()}")
        raise

    print("create_app() completed successfully")
    return app


app = create_app()

# Port diagnostics
expected_port = os.environ.get("PORT", "NOT SET")
print(f"PORT environment variable: {expected_port}")


if __name__ == "__main__":
    # Create a .env containing:
    #       DATABASE_URL=mysql+pymysql://<USER>:<PASSWORD>@<HOST>:<PORT>/aura
    #       SECRET_KEY=<random string>
    port = int(os.environ.get("PORT", 5000))
    app.run(
        host="0.0.0.0", port=port, debug=os.environ.get("FLASK_ENV") != "production"
    )
